"""
Stage execution context and process launching helpers.
"""

from __future__ import annotations

import asyncio
import os
import pwd
import shlex
import shutil
import typing as t

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from ._types import Console, TimingsCollector
from .config import StartupConfig
from .process import ROLE_REQUIRES, ManagedProcess, ProcessRole, ProcessState


class StageFailed(RuntimeError):
    def __init__(self, role: ProcessRole, reason: str) -> None:
        super().__init__(f"{role.value}: {reason}")
        self.role = role
        self.reason = reason


def current_user() -> str:
    try:
        return pwd.getpwuid(os.geteuid()).pw_name
    except KeyError:
        return str(os.geteuid())


def needs_user_switch(config: StartupConfig) -> bool:
    return current_user() != config.user


def as_user(argv: Sequence[str], config: StartupConfig) -> list[str]:
    """Wrap ``argv`` so it runs as the workstation account on the display."""
    if not needs_user_switch(config):
        return list(argv)
    script = f"export DISPLAY={shlex.quote(config.display)} && exec {shlex.join(argv)}"
    return ["su", "-", config.user, "-c", script]


def prepare_log(path: Path, config: StartupConfig) -> None:
    """Create ``path`` (append-only log) and hand it to the workstation account."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.touch(exist_ok=True)
    if needs_user_switch(config) and os.geteuid() == 0:
        shutil.chown(path, config.user, config.user)


class Launcher(t.Protocol):
    async def __call__(
        self,
        argv: Sequence[str],
        *,
        env: dict[str, str],
        log_path: Path,
    ) -> asyncio.subprocess.Process: ...


async def launch_process(
    argv: Sequence[str],
    *,
    env: dict[str, str],
    log_path: Path,
) -> asyncio.subprocess.Process:
    """Start a detached background process writing to ``log_path``."""
    with open(log_path, "ab") as log:
        return await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=log,
            stderr=asyncio.subprocess.STDOUT,
            env=env,
            start_new_session=True,
        )


@dataclass
class StackContext:
    """Execution context passed to every display stage.

    Owns the ManagedProcess table; stages go through ``launch`` and
    ``mark`` rather than touching entries directly.
    """

    config: StartupConfig
    console: Console
    timings: TimingsCollector = field(default_factory=TimingsCollector)
    launcher: Launcher = launch_process
    processes: dict[ProcessRole, ManagedProcess] = field(default_factory=dict)
    launch_order: list[ProcessRole] = field(default_factory=list)

    def __post_init__(self) -> None:
        for role in ProcessRole:
            self.processes.setdefault(role, ManagedProcess(role))

    def state(self, role: ProcessRole) -> ProcessState:
        return self.processes[role].state

    def mark(self, role: ProcessRole, state: ProcessState) -> None:
        managed = self.processes[role]
        if managed.state is state:
            return
        managed.transition(state)
        self.console.info(f"[{role.value}] {state.value}")

    def require_ready(self, role: ProcessRole) -> None:
        missing = [dep for dep in ROLE_REQUIRES[role] if self.state(dep) is not ProcessState.READY]
        if missing:
            names = ", ".join(dep.value for dep in missing)
            raise StageFailed(role, f"dependencies not ready: {names}")

    async def launch(
        self,
        role: ProcessRole,
        argv: Sequence[str],
        *,
        log_name: str,
        run_as_user: bool = True,
    ) -> asyncio.subprocess.Process:
        """Launch one OS process for ``role``; the role enters Starting."""
        self.require_ready(role)
        command = as_user(argv, self.config) if run_as_user else list(argv)
        log_path = self.config.log_path(log_name)
        try:
            prepare_log(log_path, self.config)
        except (OSError, LookupError) as exc:
            self.console.warn(f"cannot prepare {log_path}: {exc}")

        if self.state(role) is ProcessState.NOT_STARTED:
            self.mark(role, ProcessState.STARTING)
            self.launch_order.append(role)
        self.console.info(f"[{role.value}] starting: {shlex.join(command)}")
        try:
            process = await self.launcher(command, env=self.config.session_env(), log_path=log_path)
        except OSError as exc:
            raise StageFailed(role, f"failed to launch {argv[0]}: {exc}") from exc
        self.processes[role].attach(process)
        self.console.info(f"[{role.value}] started (PID: {process.pid})")
        return process

    async def shutdown(self, roles: Iterable[ProcessRole] | None = None) -> None:
        """Stop launched processes, most recent first."""
        targets = list(roles) if roles is not None else list(reversed(self.launch_order))
        for role in targets:
            managed = self.processes[role]
            if managed.state in (ProcessState.NOT_STARTED, ProcessState.STOPPED):
                continue
            await managed.stop()
            self.console.info(f"[{role.value}] stopped")
