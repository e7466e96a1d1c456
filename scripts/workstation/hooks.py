"""
Boot-time hook runner.

Every executable file in the hook directory runs once, in ascending byte
order of its filename. The comparison is on raw bytes: ``-`` (0x2D) sorts
before ``_`` (0x5F), so ``120-x`` runs before ``120_y`` even though many file
managers show them the other way round. Name hooks so the separator itself
keeps the order you want.

A failing hook is reported and the pass continues; one broken hook must not
keep the desktop hook behind it from starting. A hook is done when it
exits; output from background processes it leaves running is read for at
most OUTPUT_DRAIN_TIMEOUT seconds after that.
"""

from __future__ import annotations

import asyncio
import os
import stat
import time
import typing as t

from dataclasses import dataclass
from pathlib import Path

from ._types import Console, TimingsCollector

OUTPUT_CHUNK_SIZE = 8192
OUTPUT_LINE_LIMIT = 1024 * 1024
OUTPUT_DRAIN_TIMEOUT = 1.0


@dataclass(slots=True, frozen=True)
class HookScript:
    sort_key: bytes
    path: Path
    executable: bool

    @property
    def name(self) -> str:
        return self.path.name


@dataclass(slots=True, frozen=True)
class HookResult:
    hook: HookScript
    exit_code: int | None
    output: str
    duration: float

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


def discover_hooks(directory: Path, *, console: Console | None = None) -> list[HookScript]:
    """List the regular files in ``directory`` sorted by filename bytes."""
    try:
        entries = list(os.scandir(directory))
    except FileNotFoundError:
        if console is not None:
            console.warn(f"hook directory {directory} does not exist; nothing to run")
        return []
    except OSError as exc:
        if console is not None:
            console.warn(f"cannot read hook directory {directory}: {exc}; nothing to run")
        return []

    hooks: list[HookScript] = []
    for entry in entries:
        try:
            if not stat.S_ISREG(entry.stat().st_mode):
                continue
        except OSError:
            continue
        hooks.append(
            HookScript(
                sort_key=os.fsencode(entry.name),
                path=Path(entry.path),
                executable=os.access(entry.path, os.X_OK),
            )
        )
    hooks.sort(key=lambda hook: hook.sort_key)
    return hooks


class _LineRelay:
    """Splits raw output chunks into lines for the console and the hook log."""

    def __init__(self, hook_name: str, console: Console, sink: t.TextIO) -> None:
        self.hook_name = hook_name
        self.console = console
        self.sink = sink
        self.lines: list[str] = []
        self._partial = b""

    def feed(self, chunk: bytes) -> None:
        self._partial += chunk
        *complete, self._partial = self._partial.split(b"\n")
        for raw in complete:
            self._emit(raw)
        # Unterminated output is cut into OUTPUT_LINE_LIMIT pieces.
        while len(self._partial) >= OUTPUT_LINE_LIMIT:
            self._emit(self._partial[:OUTPUT_LINE_LIMIT])
            self._partial = self._partial[OUTPUT_LINE_LIMIT:]

    def flush(self) -> None:
        if self._partial:
            self._emit(self._partial)
            self._partial = b""

    def _emit(self, raw: bytes) -> None:
        line = raw.decode("utf-8", errors="replace").rstrip("\r")
        self.lines.append(line)
        self.sink.write(f"{line}\n")
        self.sink.flush()
        self.console.info(f"[{self.hook_name}] {line}")


async def _pump(reader: asyncio.StreamReader, relay: _LineRelay) -> None:
    while chunk := await reader.read(OUTPUT_CHUNK_SIZE):
        relay.feed(chunk)
    relay.flush()


async def _run_hook(hook: HookScript, console: Console, log_path: Path) -> tuple[int | None, str]:
    try:
        sink = open(log_path, "a", encoding="utf-8")
    except OSError as exc:
        console.warn(f"[{hook.name}] cannot write {log_path} ({exc}); output goes to console only")
        sink = open(os.devnull, "w", encoding="utf-8")

    with sink:
        sink.write(f"=== {hook.name} started at {time.strftime('%Y-%m-%d %H:%M:%S')} ===\n")
        # Our own pipe, not PIPE: process.wait() must track the hook's exit,
        # not the lifetime of whatever inherited its stdout.
        read_fd, write_fd = os.pipe()
        try:
            process = await asyncio.create_subprocess_exec(
                str(hook.path),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=write_fd,
                stderr=asyncio.subprocess.STDOUT,
            )
        except OSError as exc:
            os.close(read_fd)
            sink.write(f"failed to launch: {exc}\n")
            console.warn(f"[{hook.name}] could not be launched: {exc}")
            return None, str(exc)
        finally:
            os.close(write_fd)

        relay = _LineRelay(hook.name, console, sink)
        reader = asyncio.StreamReader()
        transport, _ = await asyncio.get_running_loop().connect_read_pipe(
            lambda: asyncio.StreamReaderProtocol(reader),
            os.fdopen(read_fd, "rb", buffering=0),
        )
        pump = asyncio.create_task(_pump(reader, relay))
        try:
            exit_code = await process.wait()
            done, _ = await asyncio.wait({pump}, timeout=OUTPUT_DRAIN_TIMEOUT)
            if done:
                pump.result()
            else:
                pump.cancel()
                await asyncio.gather(pump, return_exceptions=True)
                relay.flush()
                console.warn(
                    f"[{hook.name}] output still held open by a background process; no longer relayed"
                )
        finally:
            transport.close()
        sink.write(f"=== {hook.name} exited with {exit_code} ===\n")
    return exit_code, "\n".join(relay.lines)


async def run_hooks(
    hooks: list[HookScript],
    *,
    console: Console,
    log_dir: Path,
    timings: TimingsCollector | None = None,
) -> list[HookResult]:
    """Run every executable hook once, in order, never stopping early."""
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        console.warn(f"cannot create hook log directory {log_dir}: {exc}")
    results: list[HookResult] = []

    for hook in hooks:
        if not hook.executable:
            console.info(f"skipping {hook.name}: not executable")
            continue

        console.info(f"→ running hook {hook.name}")
        start = time.perf_counter()
        try:
            exit_code, output = await _run_hook(hook, console, log_dir / f"{hook.name}.log")
        except Exception as exc:
            console.error(f"[{hook.name}] runner error: {exc!r}")
            exit_code, output = None, repr(exc)
        duration = time.perf_counter() - start
        if timings is not None:
            timings.add(f"hook:{hook.name}", duration)

        if exit_code == 0:
            console.info(f"✓ {hook.name} completed in {duration:.2f}s")
        else:
            console.warn(
                f"{hook.name} failed with exit code {exit_code} after {duration:.2f}s; continuing"
            )
        results.append(HookResult(hook=hook, exit_code=exit_code, output=output, duration=duration))

    return results


async def run_hook_directory(
    directory: Path,
    *,
    console: Console,
    log_dir: Path,
    timings: TimingsCollector | None = None,
) -> list[HookResult]:
    hooks = discover_hooks(directory, console=console)
    console.info(f"Discovered {len(hooks)} hook(s) in {directory}")
    results = await run_hooks(hooks, console=console, log_dir=log_dir, timings=timings)
    failed = [result.hook.name for result in results if not result.ok]
    if failed:
        console.warn(f"{len(failed)} hook(s) failed: {', '.join(failed)}")
    console.info(f"Startup hooks finished ({len(results)} run)")
    return results
