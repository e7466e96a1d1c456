"""Idempotent ownership and skeleton reconciliation for the workstation home."""

from __future__ import annotations

import json
import os
import pwd

from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path

from ._types import Console


@dataclass(slots=True)
class ReconcileReport:
    ownership_changed: bool = False
    created: list[Path] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def noop(self) -> bool:
        return not self.ownership_changed and not self.created and not self.errors


class PermissionReconciler:
    """Bring ``root`` to its target state: owned by ``user``, skeleton present.

    Safe to call any number of times. Nothing here raises; a failure is
    recorded in the report and logged, and the next run tries again.
    """

    def __init__(
        self,
        root: Path,
        user: str,
        *,
        directories: Iterable[str] = (),
        manifests: Iterable[str] = (),
        console: Console,
    ) -> None:
        self.root = root
        self.user = user
        self.directories = tuple(directories)
        self.manifests = tuple(manifests)
        self.console = console

    def reconcile(self) -> ReconcileReport:
        report = ReconcileReport()
        try:
            account = pwd.getpwnam(self.user)
        except KeyError:
            self._fail(report, f"unknown account {self.user!r}; skipping ownership fix")
            account = None

        if account is not None:
            self._reconcile_ownership(account.pw_uid, account.pw_gid, report)

        for relative in self.directories:
            self._ensure_directory(self.root / relative, account, report)
        for relative in self.manifests:
            self._ensure_manifest(self.root / relative, account, report)
        return report

    # -----------------------------------------------------------------------

    def _fail(self, report: ReconcileReport, message: str) -> None:
        report.errors.append(message)
        self.console.warn(message)

    def _reconcile_ownership(self, uid: int, gid: int, report: ReconcileReport) -> None:
        try:
            st = os.stat(self.root)
        except OSError as exc:
            self._fail(report, f"cannot stat {self.root}: {exc}")
            return
        if (st.st_uid, st.st_gid) == (uid, gid):
            return

        self.console.info(f"Fixing {self.root} ownership ({st.st_uid}:{st.st_gid} -> {uid}:{gid})...")
        report.ownership_changed = True
        for path in self._walk(self.root):
            try:
                os.chown(path, uid, gid, follow_symlinks=False)
            except OSError as exc:
                self._fail(report, f"chown {path}: {exc}")

    def _walk(self, root: Path) -> Iterable[Path]:
        yield root
        for dirpath, dirnames, filenames in os.walk(root):
            for name in dirnames + filenames:
                yield Path(dirpath) / name

    def _hand_over(self, path: Path, account: pwd.struct_passwd | None, report: ReconcileReport) -> None:
        if account is None:
            return
        try:
            st = os.stat(path, follow_symlinks=False)
            if (st.st_uid, st.st_gid) != (account.pw_uid, account.pw_gid):
                os.chown(path, account.pw_uid, account.pw_gid, follow_symlinks=False)
        except OSError as exc:
            self._fail(report, f"chown {path}: {exc}")

    def _ensure_directory(self, path: Path, account: pwd.struct_passwd | None, report: ReconcileReport) -> None:
        if path.is_dir():
            return
        self.console.info(f"Creating {path}...")
        missing = [path, *(parent for parent in path.parents if not parent.exists())]
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            self._fail(report, f"mkdir {path}: {exc}")
            return
        report.created.append(path)
        for created in reversed(missing):
            self._hand_over(created, account, report)

    def _ensure_manifest(self, path: Path, account: pwd.struct_passwd | None, report: ReconcileReport) -> None:
        if path.is_file():
            return
        self._ensure_directory(path.parent, account, report)
        self.console.info(f"Creating {path}...")
        try:
            # "x" so a manifest written concurrently by the editor is never clobbered.
            with open(path, "x", encoding="utf-8") as f:
                json.dump([], f)
        except FileExistsError:
            return
        except OSError as exc:
            self._fail(report, f"write {path}: {exc}")
            return
        report.created.append(path)
        self._hand_over(path, account, report)
