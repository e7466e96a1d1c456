"""
Bounded polling shared by every component that waits on a dependency.

A gate answers one question: does ``predicate`` become true within
``attempts`` tries, sleeping ``interval`` seconds between tries? Retrying an
install command and waiting for a port are the same loop.
"""

from __future__ import annotations

import asyncio
import os
import time
import typing as t

from dataclasses import dataclass
from pathlib import Path

from ._types import Console

Predicate = t.Callable[[], t.Awaitable[bool]]
AttemptHook = t.Callable[[int, bool], None]


class ReadinessTimeout(RuntimeError):
    def __init__(self, label: str, attempts: int, elapsed: float) -> None:
        super().__init__(f"{label} not ready after {attempts} attempts ({elapsed:.1f}s)")
        self.label = label
        self.attempts = attempts
        self.elapsed = elapsed


@dataclass(slots=True, frozen=True)
class GateOutcome:
    ready: bool
    attempts: int
    elapsed: float


@dataclass(slots=True, frozen=True)
class ReadinessGate:
    label: str
    attempts: int
    interval: float

    def __post_init__(self) -> None:
        if self.attempts < 1:
            raise ValueError(f"{self.label}: attempts must be >= 1, got {self.attempts}")
        if self.interval < 0:
            raise ValueError(f"{self.label}: interval must be >= 0, got {self.interval}")

    async def wait(
        self,
        predicate: Predicate,
        *,
        console: Console | None = None,
        on_attempt: AttemptHook | None = None,
    ) -> GateOutcome:
        """Poll ``predicate`` until it holds or the attempt ceiling is reached.

        There is no sleep after the final attempt. ``on_attempt`` is called with
        the attempt number and its result after every try.
        """
        start = time.perf_counter()
        for attempt in range(1, self.attempts + 1):
            ok = await predicate()
            if on_attempt is not None:
                on_attempt(attempt, ok)
            if ok:
                return GateOutcome(True, attempt, time.perf_counter() - start)
            if attempt == self.attempts:
                break
            if console is not None:
                console.info(
                    f"[{self.label}] not ready (attempt {attempt}/{self.attempts}), retrying in {self.interval:g}s"
                )
            await asyncio.sleep(self.interval)
        return GateOutcome(False, self.attempts, time.perf_counter() - start)

    async def wait_or_raise(
        self,
        predicate: Predicate,
        *,
        console: Console | None = None,
    ) -> GateOutcome:
        outcome = await self.wait(predicate, console=console)
        if not outcome.ready:
            raise ReadinessTimeout(self.label, outcome.attempts, outcome.elapsed)
        return outcome


# ---------------------------------------------------------------------------
# Predicates
# ---------------------------------------------------------------------------


def port_accepting(host: str, port: int, *, timeout: float = 1.0) -> Predicate:
    """True once something accepts TCP connections on ``host:port``."""

    async def check() -> bool:
        try:
            _, writer = await asyncio.wait_for(
                asyncio.open_connection(host, port), timeout=timeout
            )
        except (OSError, asyncio.TimeoutError):
            return False
        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass
        return True

    return check


def path_exists(path: Path) -> Predicate:
    async def check() -> bool:
        return os.path.exists(path)

    return check


def process_alive(process: asyncio.subprocess.Process) -> Predicate:
    async def check() -> bool:
        return process.returncode is None

    return check
