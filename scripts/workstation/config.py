"""Startup configuration assembled from ``WORKSTATION_*`` environment variables."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DEFAULT_HOOKS_DIR = Path("/etc/workstation-startup.d")
DEFAULT_LOG_DIR = Path("/var/log")
DEFAULT_NOVNC_DIR = Path("/usr/share/novnc")

VNC_PORT = 5900
HTTP_PORT = 80
DISPLAY_NUMBER = 99

DEFAULT_EXTENSIONS: tuple[str, ...] = ("kilocode.kilo-code",)

# Directories the editor and its extension host expect under $HOME.
EDITOR_SKELETON_DIRS: tuple[str, ...] = (
    ".vscode-oss/extensions",
    ".config/VSCodium/User",
)
EXTENSIONS_MANIFEST = ".vscode-oss/extensions/extensions.json"


def parse_resolution(value: str) -> tuple[int, int, int]:
    parts = value.lower().split("x")
    if len(parts) not in (2, 3):
        raise ValueError(f"Invalid resolution {value!r}; expected WIDTHxHEIGHT[xDEPTH]")
    width, height = int(parts[0]), int(parts[1])
    depth = int(parts[2]) if len(parts) == 3 else 24
    return width, height, depth


def _split_list(value: str) -> tuple[str, ...]:
    return tuple(item for item in value.replace(",", " ").split() if item)


@dataclass(slots=True)
class StartupConfig:
    """Everything the hooks, installer and display supervisor need to know."""

    user: str = "user"
    home: Path = Path("/home/user")
    display_number: int = DISPLAY_NUMBER
    width: int = 1600
    height: int = 900
    depth: int = 24
    dpi: int = 96
    vnc_port: int = VNC_PORT
    http_port: int = HTTP_PORT
    hooks_dir: Path = DEFAULT_HOOKS_DIR
    log_dir: Path = DEFAULT_LOG_DIR
    novnc_dir: Path = DEFAULT_NOVNC_DIR
    x11_tmp_dir: Path = Path("/tmp")

    xvfb_command: str = "Xvfb"
    window_manager_command: str = "fluxbox"
    vnc_command: str = "x11vnc"
    clipboard_command: str = "autocutsel"
    editor_command: str = "codium"
    proxy_command: str = "websockify"

    extensions: tuple[str, ...] = DEFAULT_EXTENSIONS
    install_backoff: float = 10.0
    wait_for_display: bool = True

    display_settle: float = 3.0
    window_manager_settle: float = 2.0
    companion_settle: float = 1.0
    vnc_attempts: int = 30
    vnc_interval: float = 1.0

    page_title: str = "VSCodium"
    reconnect_delay_ms: int = 2000
    extra_env: dict[str, str] = field(default_factory=dict)

    @property
    def display(self) -> str:
        return f":{self.display_number}"

    @property
    def resolution(self) -> str:
        return f"{self.width}x{self.height}x{self.depth}"

    @property
    def hooks_log_dir(self) -> Path:
        return self.log_dir / "workstation-startup"

    @property
    def x_lock_file(self) -> Path:
        return self.x11_tmp_dir / f".X{self.display_number}-lock"

    @property
    def x_socket(self) -> Path:
        return self.x11_tmp_dir / ".X11-unix" / f"X{self.display_number}"

    def log_path(self, name: str) -> Path:
        return self.log_dir / f"{name}.log"

    def session_env(self) -> dict[str, str]:
        """Environment for processes that talk to the virtual display."""
        env = dict(os.environ)
        env.update(
            {
                "HOME": str(self.home),
                "USER": self.user,
                "DISPLAY": self.display,
            }
        )
        env.update(self.extra_env)
        return env

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> StartupConfig:
        env = os.environ if environ is None else environ
        config = cls()

        if user := env.get("WORKSTATION_USER"):
            config.user = user
            config.home = Path(f"/home/{user}")
        if home := env.get("WORKSTATION_HOME"):
            config.home = Path(home)
        if display := env.get("WORKSTATION_DISPLAY"):
            config.display_number = int(display.lstrip(":"))
        if resolution := env.get("WORKSTATION_RESOLUTION"):
            config.width, config.height, config.depth = parse_resolution(resolution)
        if vnc_port := env.get("WORKSTATION_VNC_PORT"):
            config.vnc_port = int(vnc_port)
        if http_port := env.get("WORKSTATION_HTTP_PORT"):
            config.http_port = int(http_port)
        if hooks_dir := env.get("WORKSTATION_HOOKS_DIR"):
            config.hooks_dir = Path(hooks_dir)
        if log_dir := env.get("WORKSTATION_LOG_DIR"):
            config.log_dir = Path(log_dir)
        if novnc_dir := env.get("WORKSTATION_NOVNC_DIR"):
            config.novnc_dir = Path(novnc_dir)
        if editor := env.get("WORKSTATION_EDITOR"):
            config.editor_command = editor
        if extensions := env.get("WORKSTATION_EXTENSIONS"):
            config.extensions = _split_list(extensions)
        if backoff := env.get("WORKSTATION_INSTALL_BACKOFF"):
            config.install_backoff = float(backoff)
        if title := env.get("WORKSTATION_PAGE_TITLE"):
            config.page_title = title
        return config
