"""Minimal fluxbox configuration for a single full-screen application."""

from __future__ import annotations

import os
import textwrap

from pathlib import Path

from .config import StartupConfig

TARGET_APP_NAME = "codium"
TARGET_APP_CLASS = "VSCodium"


def render_init(config_dir: Path) -> str:
    return textwrap.dedent(
        f"""\
        session.screen0.toolbar.visible: false
        session.screen0.defaultDeco: NONE
        session.screen0.workspaces: 1
        session.screen0.workspacewarping: false
        session.screen0.strftimeFormat: %H:%M
        session.menuFile: {config_dir / "menu"}
        session.styleFile: /usr/share/fluxbox/styles/Makro
        session.configVersion: 13
        """
    )


def render_menu() -> str:
    return "[begin] (fluxbox)\n[end]\n"


def _app_rule(name: str, klass: str, width: int, height: int, *, layer: int | None) -> str:
    lines = [
        f"[app] (name={name}) (class={klass})",
        f"  [Dimensions]  {{{width} {height}}}",
        "  [Position]    (UPPERLEFT)   {0 0}",
        "  [Maximized]   {yes}",
        "  [Deco]        {NONE}",
    ]
    if layer is not None:
        lines.append(f"  [Layer]       {{{layer}}}")
    lines.append("[end]")
    return "\n".join(lines)


def render_apps(width: int, height: int) -> str:
    """Pin the target application, and everything else, to the full screen."""
    rules = [
        _app_rule(TARGET_APP_NAME, TARGET_APP_CLASS, width, height, layer=2),
        _app_rule(".*", ".*", width, height, layer=None),
    ]
    return "\n".join(rules) + "\n"


def render_overlay() -> str:
    return "background: none\nbackground.pixmap:\n"


def render_startup() -> str:
    return "#!/bin/bash\nexec fluxbox\n"


def write_config(config: StartupConfig) -> Path:
    """Write ~/.fluxbox and return its path; ownership is left to the caller."""
    config_dir = config.home / ".fluxbox"
    config_dir.mkdir(parents=True, exist_ok=True)
    files = {
        "init": render_init(config_dir),
        "menu": render_menu(),
        "apps": render_apps(config.width, config.height),
        "overlay": render_overlay(),
        "startup": render_startup(),
    }
    for name, content in files.items():
        (config_dir / name).write_text(content, encoding="utf-8")
    os.chmod(config_dir / "startup", 0o755)
    return config_dir
