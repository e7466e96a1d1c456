"""
Container boot-time entry points.

Usage:
    workstation-startup run-hooks                   # run /etc/workstation-startup.d
    workstation-startup install-extensions [ID...]  # defaults to WORKSTATION_EXTENSIONS
    workstation-startup start-desktop               # blocks for the container's lifetime
    workstation-startup print-stack                 # show the desktop stage graph
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path

import dotenv

from ._types import Console, TimingsCollector
from .config import DEFAULT_HOOKS_DIR, StartupConfig, parse_resolution
from .context import StackContext
from .display import DisplayStackSupervisor
from .extensions import ExtensionInstaller
from .hooks import run_hook_directory


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Workstation container startup orchestrator")
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose library logging.",
    )
    parser.add_argument(
        "--quiet",
        action="store_true",
        help="Only print warnings, errors and summaries.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    hooks = subparsers.add_parser("run-hooks", help="Run every executable startup hook in byte order")
    hooks.add_argument(
        "--hooks-dir",
        type=Path,
        help=f"Hook directory (default: {DEFAULT_HOOKS_DIR})",
    )

    install = subparsers.add_parser("install-extensions", help="Install editor extensions")
    install.add_argument(
        "extensions",
        nargs="*",
        help="Extension ids or VSIX URLs (default: WORKSTATION_EXTENSIONS)",
    )
    install.add_argument(
        "--backoff",
        type=float,
        help="Seconds to wait before the single retry (default: 10)",
    )
    install.add_argument(
        "--no-wait-display",
        action="store_true",
        help="Do not wait for the X display before installing",
    )

    desktop = subparsers.add_parser("start-desktop", help="Start the remote desktop stack")
    desktop.add_argument(
        "--resolution",
        help="WIDTHxHEIGHT[xDEPTH] of the virtual display",
    )

    subparsers.add_parser("print-stack", help="Print the desktop stage dependency graph")
    return parser.parse_args(argv)


def _console(args: argparse.Namespace, log_path: Path | None) -> Console:
    console = Console(log_path)
    console.quiet = args.quiet
    return console


async def run_hooks_command(args: argparse.Namespace, config: StartupConfig) -> int:
    if args.hooks_dir is not None:
        config.hooks_dir = args.hooks_dir
    log_dir = config.hooks_log_dir
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
    except OSError:
        pass
    console = _console(args, log_dir / "scheduler.log")
    timings = TimingsCollector()
    await run_hook_directory(config.hooks_dir, console=console, log_dir=log_dir, timings=timings)
    for line in timings.summary():
        console.always(line)
    # Hook failures are isolated and never fail the pass.
    return 0


async def install_extensions_command(args: argparse.Namespace, config: StartupConfig) -> int:
    if args.backoff is not None:
        config.install_backoff = args.backoff
    if args.no_wait_display:
        config.wait_for_display = False
    console = _console(args, config.log_path("editor-extensions"))
    installer = ExtensionInstaller(config, console=console)
    await installer.install_all(args.extensions or list(config.extensions))
    return 0


async def start_desktop_command(args: argparse.Namespace, config: StartupConfig) -> int:
    if args.resolution:
        config.width, config.height, config.depth = parse_resolution(args.resolution)
    console = _console(args, config.log_path("desktop-startup"))
    supervisor = DisplayStackSupervisor(StackContext(config=config, console=console))

    task = asyncio.current_task()
    loop = asyncio.get_running_loop()
    assert task is not None
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, task.cancel)
    try:
        return await supervisor.run()
    except asyncio.CancelledError:
        console.always("Received termination signal, desktop stack stopped")
        return 143


def print_stack_command(args: argparse.Namespace, config: StartupConfig) -> int:
    supervisor = DisplayStackSupervisor(StackContext(config=config, console=Console()))
    print(supervisor.describe())
    return 0


def main(argv: list[str] | None = None) -> int:
    dotenv.load_dotenv()
    args = parse_args(argv)

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(message)s",
    )

    config = StartupConfig.from_env()

    if args.command == "print-stack":
        return print_stack_command(args, config)

    commands = {
        "run-hooks": run_hooks_command,
        "install-extensions": install_extensions_command,
        "start-desktop": start_desktop_command,
    }
    try:
        return asyncio.run(commands[args.command](args, config))
    except KeyboardInterrupt:
        print()
        return 130


if __name__ == "__main__":
    sys.exit(main())
