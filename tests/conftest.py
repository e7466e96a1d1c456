"""Shared fixtures for workstation startup tests."""

from __future__ import annotations

import os
import stat
from pathlib import Path

import pytest

from workstation._types import Console
from workstation.config import StartupConfig
from workstation.context import current_user


def write_script(path: Path, body: str, *, executable: bool = True) -> Path:
    """Write a /bin/sh script and optionally mark it executable."""
    path.write_text("#!/bin/sh\n" + body + "\n", encoding="utf-8")
    if executable:
        path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


@pytest.fixture
def console() -> Console:
    quiet = Console()
    quiet.quiet = True
    return quiet


@pytest.fixture
def config(tmp_path: Path) -> StartupConfig:
    """Config pointing every path into tmp_path, owned by whoever runs the tests."""
    home = tmp_path / "home"
    home.mkdir()
    log_dir = tmp_path / "log"
    log_dir.mkdir()
    x11_tmp = tmp_path / "x11"
    (x11_tmp / ".X11-unix").mkdir(parents=True)
    return StartupConfig(
        user=current_user(),
        home=home,
        hooks_dir=tmp_path / "hooks",
        log_dir=log_dir,
        novnc_dir=tmp_path / "novnc",
        x11_tmp_dir=x11_tmp,
        install_backoff=0.0,
        wait_for_display=False,
        display_settle=0.2,
        window_manager_settle=0.0,
        companion_settle=0.1,
        vnc_attempts=3,
        vnc_interval=0.05,
        extra_env={"PATH": os.environ.get("PATH", "/usr/bin:/bin")},
    )


@pytest.fixture
def make_script():
    return write_script
