"""Tests for the browser client page, clipboard fragments and fluxbox config."""

from __future__ import annotations

import os
import stat

from workstation.clipboard import (
    BROWSER_TO_REMOTE_JS,
    REMOTE_TO_BROWSER_JS,
    ClipboardDirection,
    ClipboardMessage,
    browser_script,
)
from workstation.client_page import render_page, write_page
from workstation.fluxbox import render_apps, write_config


def test_page_never_resizes_the_session(config) -> None:
    page = render_page(config)

    assert "resizeSession: false" in page
    assert "scaleViewport: true" in page
    assert "'/' + \"websockify\"" in page


def test_page_reconnects_after_configured_delay(config) -> None:
    config.reconnect_delay_ms = 3500

    page = render_page(config)

    assert page.count("setTimeout(connect, 3500)") == 2


def test_page_clipboard_is_asymmetric(config) -> None:
    page = render_page(config)

    assert "navigator.clipboard.writeText" in page
    assert "rfb.clipboardPasteFrom(text)" in page
    assert "sendBtn.addEventListener('click', sendClipboard)" in page
    assert "navigator.clipboard.readText" not in page


def test_page_title_is_escaped(config) -> None:
    config.page_title = "<Editor & Co>"

    page = render_page(config)

    assert "<title>&lt;Editor &amp; Co&gt;</title>" in page
    assert "$" not in page


def test_write_page_replaces_index(config) -> None:
    config.novnc_dir.mkdir()
    (config.novnc_dir / "index.html").write_text("stock noVNC page")

    target = write_page(config)

    assert target == config.novnc_dir / "index.html"
    assert "resizeSession: false" in target.read_text()
    assert stat.S_IMODE(target.stat().st_mode) == 0o644
    assert os.listdir(config.novnc_dir) == ["index.html"]


def test_clipboard_directions() -> None:
    assert ClipboardDirection.REMOTE_TO_BROWSER.automatic
    assert not ClipboardDirection.BROWSER_TO_REMOTE.automatic
    assert not ClipboardMessage(ClipboardDirection.BROWSER_TO_REMOTE, "text").automatic
    assert browser_script(ClipboardDirection.REMOTE_TO_BROWSER) == REMOTE_TO_BROWSER_JS
    assert browser_script(ClipboardDirection.BROWSER_TO_REMOTE) == BROWSER_TO_REMOTE_JS


def test_apps_pin_editor_above_catch_all() -> None:
    apps = render_apps(1280, 720)

    rules = apps.strip().split("[end]")
    assert rules[0].startswith("[app] (name=codium) (class=VSCodium)")
    assert "[Layer]       {2}" in rules[0]
    assert "(name=.*) (class=.*)" in rules[1]
    assert "[Layer]" not in rules[1]
    assert apps.count("[Dimensions]  {1280 720}") == 2


def test_write_fluxbox_config(config) -> None:
    config_dir = write_config(config)

    assert config_dir == config.home / ".fluxbox"
    assert sorted(os.listdir(config_dir)) == ["apps", "init", "menu", "overlay", "startup"]
    assert os.access(config_dir / "startup", os.X_OK)
    init = (config_dir / "init").read_text()
    assert "session.screen0.toolbar.visible: false" in init
    assert f"session.menuFile: {config_dir / 'menu'}" in init
