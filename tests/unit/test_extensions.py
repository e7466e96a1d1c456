"""Tests for extension installation with one bounded retry."""

from __future__ import annotations

import asyncio
from pathlib import Path

import httpx
import pytest

from workstation import extensions
from workstation.config import EXTENSIONS_MANIFEST, StartupConfig
from workstation.extensions import ExtensionInstaller, InstallOutcome, is_vsix_url


def _fake_editor(tmp_path: Path, make_script, *, fail_times: int) -> Path:
    """Editor that fails the first ``fail_times`` installs, logging every call."""
    calls = tmp_path / "editor-calls"
    counter = tmp_path / "editor-count"
    body = f"""
echo "$@" >> "{calls}"
if [ "$1" = "--list-extensions" ]; then
  echo kilocode.kilo-code
  exit 0
fi
n=$(cat "{counter}" 2>/dev/null || echo 0)
n=$((n + 1))
echo "$n" > "{counter}"
if [ "$n" -le {fail_times} ]; then
  echo "install failed ($n)"
  exit 1
fi
echo "installed $2"
"""
    return make_script(tmp_path / "fake-codium", body)


def _installer(config: StartupConfig, editor: Path, console) -> ExtensionInstaller:
    config.editor_command = str(editor)
    return ExtensionInstaller(config, console=console)


def test_success_on_first_attempt(config, tmp_path: Path, make_script, console) -> None:
    installer = _installer(config, _fake_editor(tmp_path, make_script, fail_times=0), console)

    attempt = asyncio.run(installer.install("kilocode.kilo-code"))

    assert attempt.outcome is InstallOutcome.SUCCESS
    assert attempt.attempt_number == 1


def test_failure_then_success_records_second_attempt(config, tmp_path: Path, make_script, console) -> None:
    installer = _installer(config, _fake_editor(tmp_path, make_script, fail_times=1), console)

    attempt = asyncio.run(installer.install("kilocode.kilo-code"))

    assert attempt.outcome is InstallOutcome.SUCCESS
    assert attempt.attempt_number == 2
    assert [(a.attempt_number, a.outcome) for a in installer.history] == [
        (1, InstallOutcome.RETRYING),
        (2, InstallOutcome.SUCCESS),
    ]


def test_always_failing_gives_up_after_two_attempts(config, tmp_path: Path, make_script, console) -> None:
    installer = _installer(config, _fake_editor(tmp_path, make_script, fail_times=99), console)

    results = asyncio.run(installer.install_all(["broken.ext", "kilocode.kilo-code"]))

    assert [(r.extension_id, r.attempt_number, r.outcome) for r in results] == [
        ("broken.ext", 2, InstallOutcome.GAVE_UP),
        ("kilocode.kilo-code", 2, InstallOutcome.GAVE_UP),
    ]
    calls = (tmp_path / "editor-calls").read_text().splitlines()
    assert calls.count("--install-extension broken.ext --force") == 2
    assert calls[-1] == "--list-extensions"


def test_retry_waits_the_backoff(config, tmp_path: Path, make_script, console, monkeypatch) -> None:
    sleeps: list[float] = []
    real_sleep = asyncio.sleep

    async def fake_sleep(delay: float) -> None:
        sleeps.append(delay)
        await real_sleep(0)

    monkeypatch.setattr(asyncio, "sleep", fake_sleep)
    config.install_backoff = 10.0
    installer = _installer(config, _fake_editor(tmp_path, make_script, fail_times=1), console)

    asyncio.run(installer.install("kilocode.kilo-code"))

    assert 10.0 in sleeps


def test_missing_editor_gives_up_without_raising(config, tmp_path: Path, console) -> None:
    installer = _installer(config, tmp_path / "not-installed", console)

    results = asyncio.run(installer.install_all(["kilocode.kilo-code"]))

    assert results[0].outcome is InstallOutcome.GAVE_UP


def test_reconciles_before_each_install(config, tmp_path: Path, make_script, console) -> None:
    installer = _installer(config, _fake_editor(tmp_path, make_script, fail_times=0), console)

    asyncio.run(installer.install("kilocode.kilo-code"))

    assert (config.home / EXTENSIONS_MANIFEST).read_text() == "[]"


def test_list_installed_parses_output(config, tmp_path: Path, make_script, console) -> None:
    installer = _installer(config, _fake_editor(tmp_path, make_script, fail_times=0), console)

    assert asyncio.run(installer.list_installed()) == ["kilocode.kilo-code"]


@pytest.mark.parametrize(
    "value, expected",
    [
        ("kilocode.kilo-code", False),
        ("https://example.com/pkg.vsix", True),
        ("http://example.com/pkg.vsix", True),
    ],
)
def test_is_vsix_url(value: str, expected: bool) -> None:
    assert is_vsix_url(value) is expected


def test_vsix_url_is_downloaded_then_installed(config, tmp_path: Path, make_script, console, monkeypatch) -> None:
    payload = b"PK\x03\x04fake-vsix"
    transport = httpx.MockTransport(lambda request: httpx.Response(200, content=payload))
    real_client = httpx.AsyncClient
    monkeypatch.setattr(
        extensions.httpx,
        "AsyncClient",
        lambda **kwargs: real_client(transport=transport, **kwargs),
    )
    editor = make_script(
        tmp_path / "fake-codium",
        f'echo "$@" >> "{tmp_path / "calls"}"\n[ "$1" = "--install-extension" ] && cp "$2" "{tmp_path / "seen.vsix"}"\nexit 0',
    )
    installer = _installer(config, editor, console)

    attempt = asyncio.run(installer.install("https://example.com/downloads/tool.vsix"))

    assert attempt.outcome is InstallOutcome.SUCCESS
    assert (tmp_path / "seen.vsix").read_bytes() == payload
    assert "tool.vsix --force" in (tmp_path / "calls").read_text()


def test_vsix_download_failure_counts_as_failed_attempt(config, tmp_path: Path, make_script, console, monkeypatch) -> None:
    transport = httpx.MockTransport(lambda request: httpx.Response(404))
    real_client = httpx.AsyncClient
    monkeypatch.setattr(
        extensions.httpx,
        "AsyncClient",
        lambda **kwargs: real_client(transport=transport, **kwargs),
    )
    installer = _installer(config, _fake_editor(tmp_path, make_script, fail_times=0), console)

    attempt = asyncio.run(installer.install("https://example.com/missing.vsix"))

    assert attempt.outcome is InstallOutcome.GAVE_UP
    assert attempt.attempt_number == 2
    assert not (tmp_path / "editor-calls").exists()
