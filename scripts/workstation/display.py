"""
Desktop stack bootstrap: virtual display, window manager, VNC server,
clipboard bridge, editor and the browser-facing proxy.

Stage order and readiness:

    virtual-display (fatal)      Xvfb, settle delay, liveness check
    window-manager               fluxbox, settle delay only (optimistic)
    remote-framebuffer (fatal)   x11vnc, ready when the port accepts
    clipboard-bridge             autocutsel x2, degraded on failure
    target-application           the editor, best effort
    proxy (fatal, terminal)      websockify; the supervisor waits on it

The VNC server runs without a password. Adding authentication is a
separate feature, not something this module does implicitly.
"""

from __future__ import annotations

import asyncio
import json
import os
import shutil

from .clipboard import ClipboardBridge
from .client_page import write_page
from .config import StartupConfig
from .context import StackContext, StageFailed, needs_user_switch
from .engine import BootstrapError, StageRegistry, format_dependency_graph, run_stage_graph
from .fluxbox import write_config
from .process import ROLE_AFTER, ROLE_REQUIRES, ProcessRole, ProcessState
from .readiness import ReadinessGate, port_accepting

EDITOR_SETTINGS = {
    "telemetry.telemetryLevel": "off",
    "workbench.colorTheme": "Default Dark Modern",
    "editor.fontSize": 14,
    "editor.tabSize": 2,
    "editor.formatOnSave": True,
    "files.autoSave": "afterDelay",
    "files.autoSaveDelay": 1000,
    "window.titleBarStyle": "custom",
    "window.menuBarVisibility": "classic",
    "window.zoomLevel": 0,
    "window.newWindowDimensions": "maximized",
    "editor.selectionClipboard": True,
}

registry = StageRegistry()


def _deps(role: ProcessRole) -> tuple[ProcessRole, ...]:
    return ROLE_REQUIRES[role] + ROLE_AFTER.get(role, ())


def _chown_tree(ctx: StackContext, path: os.PathLike[str] | str) -> None:
    if not needs_user_switch(ctx.config) or os.geteuid() != 0:
        return
    try:
        shutil.chown(path, ctx.config.user, ctx.config.user)
        for dirpath, dirnames, filenames in os.walk(path):
            for name in dirnames + filenames:
                shutil.chown(os.path.join(dirpath, name), ctx.config.user, ctx.config.user)
    except (OSError, LookupError) as exc:
        ctx.console.warn(f"chown {path}: {exc}")


# ---------------------------------------------------------------------------
# Stages
# ---------------------------------------------------------------------------


def clear_stale_locks(config: StartupConfig) -> list[str]:
    """Remove X lock artifacts a crashed server may have left behind."""
    removed: list[str] = []
    for path in (config.x_lock_file, config.x_socket):
        if os.path.lexists(path):
            os.unlink(path)
            removed.append(str(path))
    return removed


@registry.stage(
    ProcessRole.VIRTUAL_DISPLAY,
    deps=_deps(ProcessRole.VIRTUAL_DISPLAY),
    fatal=True,
    description="Xvfb virtual framebuffer",
)
async def stage_virtual_display(ctx: StackContext) -> None:
    config = ctx.config
    role = ProcessRole.VIRTUAL_DISPLAY

    ctx.console.info("Cleaning up stale X locks...")
    try:
        for path in clear_stale_locks(config):
            ctx.console.info(f"  removed {path}")
    except OSError as exc:
        ctx.console.warn(f"could not remove stale X lock: {exc}")

    ctx.console.info(f"Starting Xvfb on display {config.display} ({config.resolution})...")
    argv = [
        config.xvfb_command,
        config.display,
        "-screen", "0", config.resolution,
        "-dpi", str(config.dpi),
        "-ac",
        "+extension", "GLX",
        "+render",
        "-noreset",
    ]
    await ctx.launch(role, argv, log_name="xvfb", run_as_user=False)
    await asyncio.sleep(config.display_settle)

    if not ctx.processes[role].alive:
        raise StageFailed(role, "Xvfb failed to start")
    ctx.mark(role, ProcessState.READY)


@registry.stage(
    ProcessRole.WINDOW_MANAGER,
    deps=_deps(ProcessRole.WINDOW_MANAGER),
    description="fluxbox, optimistic readiness",
)
async def stage_window_manager(ctx: StackContext) -> None:
    config = ctx.config
    role = ProcessRole.WINDOW_MANAGER

    ctx.console.info("Configuring fluxbox...")
    try:
        config_dir = write_config(config)
    except OSError as exc:
        ctx.console.warn(f"could not write fluxbox config: {exc}")
    else:
        _chown_tree(ctx, config_dir)

    await ctx.launch(role, [config.window_manager_command, "-no-toolbar"], log_name="fluxbox")
    await asyncio.sleep(config.window_manager_settle)

    # TODO: replace the settle delay with a probe of the window manager's
    # own IPC once fluxbox-remote is available in the image.
    if not ctx.processes[role].alive:
        raise StageFailed(role, "fluxbox exited during startup; windows will be unmanaged")
    ctx.mark(role, ProcessState.READY)


@registry.stage(
    ProcessRole.REMOTE_FRAMEBUFFER,
    deps=_deps(ProcessRole.REMOTE_FRAMEBUFFER),
    fatal=True,
    description="x11vnc, ready when its port accepts connections",
)
async def stage_remote_framebuffer(ctx: StackContext) -> None:
    config = ctx.config
    role = ProcessRole.REMOTE_FRAMEBUFFER

    ctx.console.info(f"Starting x11vnc on port {config.vnc_port}...")
    argv = [
        config.vnc_command,
        "-display", config.display,
        "-forever",
        "-shared",
        "-rfbport", str(config.vnc_port),
        "-nopw",
        "-xkb",
        "-noxdamage",
        "-cursor", "arrow",
    ]
    await ctx.launch(role, argv, log_name="x11vnc")

    gate = ReadinessGate(f"x11vnc:{config.vnc_port}", config.vnc_attempts, config.vnc_interval)
    outcome = await gate.wait(port_accepting("127.0.0.1", config.vnc_port), console=ctx.console)
    if not outcome.ready:
        raise StageFailed(
            role,
            f"port {config.vnc_port} not accepting after {outcome.attempts} attempts",
        )
    ctx.mark(role, ProcessState.READY)


@registry.stage(
    ProcessRole.CLIPBOARD_BRIDGE,
    deps=_deps(ProcessRole.CLIPBOARD_BRIDGE),
    description="autocutsel selection sync",
)
async def stage_clipboard_bridge(ctx: StackContext) -> None:
    await ClipboardBridge(ctx).start()


def write_editor_settings(config: StartupConfig) -> str:
    settings_dir = config.home / ".config" / "VSCodium" / "User"
    settings_dir.mkdir(parents=True, exist_ok=True)
    path = settings_dir / "settings.json"
    path.write_text(json.dumps(EDITOR_SETTINGS, indent=4) + "\n", encoding="utf-8")
    return str(config.home / ".config" / "VSCodium")


@registry.stage(
    ProcessRole.TARGET_APPLICATION,
    deps=_deps(ProcessRole.TARGET_APPLICATION),
    description="the editor, best effort",
)
async def stage_target_application(ctx: StackContext) -> None:
    config = ctx.config
    role = ProcessRole.TARGET_APPLICATION

    ctx.console.info("Configuring VSCodium settings...")
    try:
        _chown_tree(ctx, write_editor_settings(config))
    except OSError as exc:
        ctx.console.warn(f"could not write editor settings: {exc}")

    ctx.console.info("Starting VSCodium...")
    argv = [config.editor_command, "--no-sandbox", "--disable-gpu-sandbox", str(config.home)]
    await ctx.launch(role, argv, log_name="vscodium")
    await asyncio.sleep(config.companion_settle)
    if not ctx.processes[role].alive:
        raise StageFailed(role, "editor exited during startup; desktop remains usable for recovery")
    ctx.mark(role, ProcessState.READY)


@registry.stage(
    ProcessRole.PROXY,
    deps=_deps(ProcessRole.PROXY),
    fatal=True,
    description="websockify + client page, terminal",
)
async def stage_proxy(ctx: StackContext) -> None:
    config = ctx.config
    role = ProcessRole.PROXY
    ctx.require_ready(role)

    try:
        page = write_page(config)
        ctx.console.info(f"Client page written to {page}")
    except OSError as exc:
        ctx.console.warn(f"could not write client page, serving stock noVNC: {exc}")

    ctx.console.info(f"Starting websockify on port {config.http_port}...")
    argv = [
        config.proxy_command,
        f"--web={config.novnc_dir}",
        str(config.http_port),
        f"localhost:{config.vnc_port}",
    ]
    await ctx.launch(role, argv, log_name="websockify", run_as_user=False)
    ctx.mark(role, ProcessState.READY)


# ---------------------------------------------------------------------------
# Supervisor
# ---------------------------------------------------------------------------


class DisplayStackSupervisor:
    """Brings the stack up in order, then lives as long as the proxy does."""

    def __init__(self, ctx: StackContext, stages: StageRegistry | None = None) -> None:
        self.ctx = ctx
        self.stages = stages or registry

    async def start(self) -> None:
        """Run every stage; raises BootstrapError on a fatal failure."""
        await run_stage_graph(self.stages, self.ctx)

    async def wait(self) -> int:
        proxy = self.ctx.processes[ProcessRole.PROXY]
        if not proxy.processes:
            raise RuntimeError("proxy was never launched")
        exit_code = await proxy.processes[0].wait()
        self.ctx.console.always(f"websockify exited with code {exit_code}")
        if proxy.state is ProcessState.READY:
            self.ctx.mark(ProcessRole.PROXY, ProcessState.FAILED if exit_code else ProcessState.STOPPED)
        return exit_code

    async def run(self) -> int:
        console = self.ctx.console
        console.always(f"=== Starting desktop stack on display {self.ctx.config.display} ===")
        try:
            try:
                await self.start()
            except BootstrapError as exc:
                console.error(str(exc))
                return 1
            for line in self.ctx.timings.summary():
                console.info(line)
            console.always("Startup complete")
            return await self.wait()
        finally:
            await self.shutdown()

    async def shutdown(self) -> None:
        await asyncio.shield(self.ctx.shutdown())

    def describe(self) -> str:
        return format_dependency_graph(self.stages)

