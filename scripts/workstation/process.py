"""Process roles of the desktop stack and the per-process state machine."""

from __future__ import annotations

import asyncio
import enum
import os
import signal

from dataclasses import dataclass, field


class ProcessRole(enum.Enum):
    VIRTUAL_DISPLAY = "virtual-display"
    WINDOW_MANAGER = "window-manager"
    REMOTE_FRAMEBUFFER = "remote-framebuffer"
    CLIPBOARD_BRIDGE = "clipboard-bridge"
    TARGET_APPLICATION = "target-application"
    PROXY = "proxy"


# Roles that must be Ready before a role may start.
ROLE_REQUIRES: dict[ProcessRole, tuple[ProcessRole, ...]] = {
    ProcessRole.VIRTUAL_DISPLAY: (),
    ProcessRole.WINDOW_MANAGER: (ProcessRole.VIRTUAL_DISPLAY,),
    ProcessRole.REMOTE_FRAMEBUFFER: (ProcessRole.VIRTUAL_DISPLAY,),
    ProcessRole.CLIPBOARD_BRIDGE: (ProcessRole.REMOTE_FRAMEBUFFER,),
    ProcessRole.TARGET_APPLICATION: (ProcessRole.REMOTE_FRAMEBUFFER,),
    ProcessRole.PROXY: (ProcessRole.REMOTE_FRAMEBUFFER,),
}

# Roles that only have to be settled (Ready or Failed) first.
ROLE_AFTER: dict[ProcessRole, tuple[ProcessRole, ...]] = {
    ProcessRole.REMOTE_FRAMEBUFFER: (ProcessRole.WINDOW_MANAGER,),
    ProcessRole.PROXY: (ProcessRole.CLIPBOARD_BRIDGE, ProcessRole.TARGET_APPLICATION),
}


class ProcessState(enum.Enum):
    NOT_STARTED = "not-started"
    STARTING = "starting"
    READY = "ready"
    FAILED = "failed"
    STOPPED = "stopped"


_TRANSITIONS: dict[ProcessState, frozenset[ProcessState]] = {
    ProcessState.NOT_STARTED: frozenset({ProcessState.STARTING, ProcessState.FAILED}),
    ProcessState.STARTING: frozenset({ProcessState.READY, ProcessState.FAILED, ProcessState.STOPPED}),
    ProcessState.READY: frozenset({ProcessState.FAILED, ProcessState.STOPPED}),
    ProcessState.FAILED: frozenset({ProcessState.STOPPED}),
    ProcessState.STOPPED: frozenset(),
}


class InvalidTransition(RuntimeError):
    pass


@dataclass(slots=True)
class ManagedProcess:
    """One launched OS process plus where it is in its lifecycle.

    A role may own several OS processes (the clipboard bridge runs two
    selection watchers); ``pid`` is the first one.
    """

    role: ProcessRole
    state: ProcessState = ProcessState.NOT_STARTED
    processes: list[asyncio.subprocess.Process] = field(default_factory=list)
    history: list[ProcessState] = field(default_factory=list)

    @property
    def pid(self) -> int | None:
        return self.processes[0].pid if self.processes else None

    @property
    def alive(self) -> bool:
        return bool(self.processes) and all(p.returncode is None for p in self.processes)

    def transition(self, state: ProcessState) -> None:
        if state not in _TRANSITIONS[self.state]:
            raise InvalidTransition(f"{self.role.value}: {self.state.value} -> {state.value}")
        self.history.append(self.state)
        self.state = state

    def attach(self, process: asyncio.subprocess.Process) -> None:
        self.processes.append(process)

    async def stop(self, *, timeout: float = 5.0) -> None:
        for process in self.processes:
            if process.returncode is not None:
                continue
            _signal_group(process, signal.SIGTERM)
            try:
                await asyncio.wait_for(process.wait(), timeout=timeout)
            except asyncio.TimeoutError:
                _signal_group(process, signal.SIGKILL)
                await process.wait()
        if self.state is not ProcessState.STOPPED:
            self.transition(ProcessState.STOPPED)


def _signal_group(process: asyncio.subprocess.Process, sig: signal.Signals) -> None:
    # Launched with start_new_session, so the group also covers children of `su`.
    try:
        os.killpg(process.pid, sig)
    except (ProcessLookupError, PermissionError):
        try:
            process.send_signal(sig)
        except ProcessLookupError:
            pass
