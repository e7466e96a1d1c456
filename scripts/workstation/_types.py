"""Shared type definitions to avoid circular imports."""

from __future__ import annotations

import sys
from datetime import datetime
from pathlib import Path


class Console:
    """Simple console output with quiet mode support.

    When ``log_path`` is set every line is also appended to that file with a
    timestamp, mirroring ``exec > >(tee -a "$LOG_FILE")`` in a startup script.
    """

    quiet: bool
    log_path: Path | None

    def __init__(self, log_path: Path | None = None) -> None:
        self.quiet = False
        self.log_path = log_path

    def info(self, value: str) -> None:
        if not self.quiet:
            print(value)
        self._append(value)

    def always(self, value: str) -> None:
        print(value)
        self._append(value)

    def warn(self, value: str) -> None:
        self.always(f"WARNING: {value}")

    def error(self, value: str) -> None:
        message = f"ERROR: {value}"
        print(message, file=sys.stderr)
        self._append(message)

    def _append(self, value: str) -> None:
        if self.log_path is None:
            return
        stamp = datetime.now().strftime("%H:%M:%S")
        try:
            with open(self.log_path, "a", encoding="utf-8") as f:
                for line in value.splitlines() or [""]:
                    f.write(f"[{stamp}] {line}\n")
        except OSError:
            # Stop copying to the file after the first write failure.
            self.log_path = None


class TimingsCollector:
    """Collects timing information for hooks and display stages."""

    def __init__(self) -> None:
        self._entries: list[tuple[str, float]] = []

    def add(self, label: str, duration: float) -> None:
        self._entries.append((label, duration))

    def summary(self) -> list[str]:
        if not self._entries:
            return []

        lines: list[str] = []
        hook_timings: list[tuple[str, float]] = []
        stage_timings: list[tuple[str, float]] = []
        layer_timings: list[tuple[float, list[str]]] = []

        for label, duration in self._entries:
            if label.startswith("hook:"):
                hook_timings.append((label[5:], duration))
            elif label.startswith("stage:"):
                stage_timings.append((label[6:], duration))
            elif label.startswith("layer:"):
                layer_timings.append((duration, label[6:].split("+")))

        if hook_timings:
            lines.append("Startup Hooks:")
            for name, duration in hook_timings:
                lines.append(f"  ├─ {name}: {duration:.2f}s")

        if layer_timings:
            stage_lookup = dict(stage_timings)
            lines.append("Display Stack Layers:")
            for layer_duration, stages in layer_timings:
                lines.append(f"\n  Layer (wall time: {layer_duration:.2f}s):")
                for stage_name in sorted(stages):
                    stage_duration = stage_lookup.get(stage_name, 0.0)
                    lines.append(f"    ├─ {stage_name}: {stage_duration:.2f}s")

        total = sum(d for _, d in hook_timings) + sum(d for d, _ in layer_timings)
        lines.append(f"\nTotal wall time: {total:.2f}s")
        return lines
