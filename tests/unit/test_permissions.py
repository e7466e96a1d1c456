"""Tests for ownership/skeleton reconciliation."""

from __future__ import annotations

import json
import os
from pathlib import Path
from types import SimpleNamespace

from workstation import permissions
from workstation.config import EDITOR_SKELETON_DIRS, EXTENSIONS_MANIFEST
from workstation.context import current_user
from workstation.permissions import PermissionReconciler


def _reconciler(root: Path, console, user: str | None = None) -> PermissionReconciler:
    return PermissionReconciler(
        root,
        user or current_user(),
        directories=EDITOR_SKELETON_DIRS,
        manifests=(EXTENSIONS_MANIFEST,),
        console=console,
    )


def test_creates_missing_skeleton(tmp_path: Path, console) -> None:
    report = _reconciler(tmp_path, console).reconcile()

    for relative in EDITOR_SKELETON_DIRS:
        assert (tmp_path / relative).is_dir()
    manifest = tmp_path / EXTENSIONS_MANIFEST
    assert json.loads(manifest.read_text()) == []
    assert manifest in report.created
    assert not report.ownership_changed
    assert report.errors == []


def test_second_run_is_a_noop(tmp_path: Path, console) -> None:
    reconciler = _reconciler(tmp_path, console)
    reconciler.reconcile()
    manifest = tmp_path / EXTENSIONS_MANIFEST
    before = {path: path.stat().st_mtime_ns for path in [tmp_path, manifest, manifest.parent]}

    report = reconciler.reconcile()

    assert report.noop
    assert {path: path.stat().st_mtime_ns for path in before} == before


def test_existing_manifest_is_preserved(tmp_path: Path, console) -> None:
    manifest = tmp_path / EXTENSIONS_MANIFEST
    manifest.parent.mkdir(parents=True)
    manifest.write_text('[{"identifier": {"id": "kilocode.kilo-code"}}]')

    _reconciler(tmp_path, console).reconcile()

    assert "kilocode" in manifest.read_text()


def test_wrong_owner_triggers_recursive_chown(tmp_path: Path, console, monkeypatch) -> None:
    (tmp_path / "nested" / "deeper").mkdir(parents=True)
    (tmp_path / "nested" / "file.txt").write_text("x")
    other = SimpleNamespace(pw_uid=os.getuid() + 4242, pw_gid=os.getgid() + 4242)
    monkeypatch.setattr(permissions.pwd, "getpwnam", lambda name: other)
    chowned: list[Path] = []
    monkeypatch.setattr(
        permissions.os,
        "chown",
        lambda path, uid, gid, follow_symlinks=True: chowned.append(Path(path)),
    )
    reconciler = PermissionReconciler(tmp_path, "someone", console=console)

    report = reconciler.reconcile()

    assert report.ownership_changed
    assert set(chowned) >= {
        tmp_path,
        tmp_path / "nested",
        tmp_path / "nested" / "deeper",
        tmp_path / "nested" / "file.txt",
    }


def test_chown_errors_are_swallowed(tmp_path: Path, console, monkeypatch) -> None:
    other = SimpleNamespace(pw_uid=os.getuid() + 1, pw_gid=os.getgid() + 1)
    monkeypatch.setattr(permissions.pwd, "getpwnam", lambda name: other)

    def deny(path, uid, gid, follow_symlinks=True):
        raise PermissionError(1, "Operation not permitted", str(path))

    monkeypatch.setattr(permissions.os, "chown", deny)

    report = PermissionReconciler(tmp_path, "someone", console=console).reconcile()

    assert report.ownership_changed
    assert report.errors
    assert all("Operation not permitted" in error for error in report.errors)


def test_unknown_account_still_builds_skeleton(tmp_path: Path, console) -> None:
    report = _reconciler(tmp_path, console, user="no-such-user-for-tests").reconcile()

    assert any("unknown account" in error for error in report.errors)
    assert (tmp_path / EXTENSIONS_MANIFEST).is_file()
