"""
Editor extension installation with one bounded retry per extension.

Nothing in here fails the boot sequence: an extension that cannot be
installed is reported as given up and the next one is tried.
"""

from __future__ import annotations

import asyncio
import enum
import os
import shlex
import shutil
import tempfile

from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

import httpx
from tqdm import tqdm

from ._types import Console
from .config import EDITOR_SKELETON_DIRS, EXTENSIONS_MANIFEST, StartupConfig
from .context import as_user, needs_user_switch
from .permissions import PermissionReconciler
from .readiness import ReadinessGate, path_exists

MAX_INSTALL_ATTEMPTS = 2
DISPLAY_WAIT_ATTEMPTS = 30
DOWNLOAD_TIMEOUT = httpx.Timeout(120.0, connect=15.0)


class InstallOutcome(enum.Enum):
    SUCCESS = "success"
    RETRYING = "retrying"
    GAVE_UP = "gave-up"


@dataclass(slots=True, frozen=True)
class InstallAttempt:
    extension_id: str
    attempt_number: int
    outcome: InstallOutcome


def is_vsix_url(extension_id: str) -> bool:
    return extension_id.startswith(("http://", "https://"))


def _vsix_name(url: str) -> str:
    name = url.rstrip("/").rsplit("/", 1)[-1] or "extension"
    return name if name.endswith(".vsix") else f"{name}.vsix"


class ExtensionInstaller:
    def __init__(
        self,
        config: StartupConfig,
        *,
        console: Console,
        reconciler: PermissionReconciler | None = None,
    ) -> None:
        self.config = config
        self.console = console
        self.reconciler = reconciler or PermissionReconciler(
            config.home,
            config.user,
            directories=EDITOR_SKELETON_DIRS,
            manifests=(EXTENSIONS_MANIFEST,),
            console=console,
        )
        self.history: list[InstallAttempt] = []

    # -----------------------------------------------------------------------
    # Command execution
    # -----------------------------------------------------------------------

    def _editor_argv(self, *args: str) -> list[str]:
        return as_user([self.config.editor_command, *args], self.config)

    async def _run_editor(self, *args: str) -> tuple[int | None, str]:
        argv = self._editor_argv(*args)
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                env=self.config.session_env(),
            )
        except OSError as exc:
            return None, f"failed to run {shlex.join(argv)}: {exc}"
        stdout, _ = await process.communicate()
        return process.returncode, stdout.decode("utf-8", errors="replace")

    async def _download_vsix(self, url: str, destination: Path) -> bool:
        self.console.info(f"Downloading {url}...")
        try:
            async with httpx.AsyncClient(timeout=DOWNLOAD_TIMEOUT, follow_redirects=True) as client:
                async with client.stream("GET", url) as response:
                    response.raise_for_status()
                    total = int(response.headers.get("content-length", 0)) or None
                    with open(destination, "wb") as f, tqdm(
                        total=total,
                        desc=destination.name,
                        unit="B",
                        unit_scale=True,
                        disable=self.console.quiet,
                    ) as pbar:
                        async for chunk in response.aiter_bytes():
                            f.write(chunk)
                            pbar.update(len(chunk))
        except (httpx.HTTPError, OSError) as exc:
            self.console.warn(f"download of {url} failed: {exc}")
            return False
        if needs_user_switch(self.config):
            try:
                shutil.chown(destination, self.config.user, self.config.user)
            except (OSError, LookupError) as exc:
                self.console.warn(f"chown {destination}: {exc}")
        return True

    async def _install_once(self, extension_id: str, workdir: Path) -> bool:
        target = extension_id
        if is_vsix_url(extension_id):
            vsix = workdir / _vsix_name(extension_id)
            if not await self._download_vsix(extension_id, vsix):
                return False
            target = str(vsix)

        exit_code, output = await self._run_editor("--install-extension", target, "--force")
        for line in output.splitlines():
            self.console.info(f"[{extension_id}] {line}")
        return exit_code == 0

    # -----------------------------------------------------------------------
    # Public API
    # -----------------------------------------------------------------------

    async def wait_for_display(self) -> bool:
        """Some extensions need a live X display during install; wait for it."""
        gate = ReadinessGate(f"display {self.config.display}", DISPLAY_WAIT_ATTEMPTS, 1.0)
        self.console.info(f"Waiting for display {self.config.display} to be available...")
        outcome = await gate.wait(path_exists(self.config.x_socket))
        if outcome.ready:
            self.console.info(f"Display {self.config.display} is available")
        else:
            self.console.warn(f"display {self.config.display} not available; installing anyway")
        return outcome.ready

    async def install(self, extension_id: str) -> InstallAttempt:
        self.reconciler.reconcile()
        self.console.info(f"Installing {extension_id}...")

        final: InstallAttempt | None = None

        def record(attempt: int, ok: bool) -> None:
            nonlocal final
            if ok:
                outcome = InstallOutcome.SUCCESS
            elif attempt < MAX_INSTALL_ATTEMPTS:
                outcome = InstallOutcome.RETRYING
                self.console.info(
                    f"Attempt {attempt} for {extension_id} failed, retrying in {self.config.install_backoff:g} seconds..."
                )
            else:
                outcome = InstallOutcome.GAVE_UP
            final = InstallAttempt(extension_id, attempt, outcome)
            self.history.append(final)

        gate = ReadinessGate(f"install {extension_id}", MAX_INSTALL_ATTEMPTS, self.config.install_backoff)
        with tempfile.TemporaryDirectory(prefix="vsix-") as tmp:
            workdir = Path(tmp)
            if is_vsix_url(extension_id) and needs_user_switch(self.config):
                os.chmod(workdir, 0o755)
            await gate.wait(lambda: self._install_once(extension_id, workdir), on_attempt=record)

        assert final is not None
        if final.outcome is InstallOutcome.SUCCESS:
            suffix = " (retry)" if final.attempt_number > 1 else ""
            self.console.info(f"Successfully installed {extension_id}{suffix}")
        else:
            self.console.warn(f"Failed to install {extension_id} extension")
            self.console.always(
                "You can install it manually in the editor:\n"
                "  1. Open Extensions (Ctrl+Shift+X)\n"
                f"  2. Search for '{extension_id}'\n"
                "  3. Click Install"
            )
        return final

    async def list_installed(self) -> list[str] | None:
        exit_code, output = await self._run_editor("--list-extensions")
        if exit_code != 0:
            self.console.warn("could not list extensions")
            return None
        return [line.strip() for line in output.splitlines() if line.strip()]

    async def install_all(self, extension_ids: Sequence[str]) -> list[InstallAttempt]:
        self.console.info("=== Starting extension installation ===")
        if self.config.wait_for_display:
            await self.wait_for_display()

        results = [await self.install(extension_id) for extension_id in extension_ids]

        self.console.info("=== Extension installation complete ===")
        installed = await self.list_installed()
        if installed is not None:
            self.console.info("Installed extensions:")
            for name in installed:
                self.console.info(f"  {name}")
        return results
