"""
Workstation startup - boot-time hooks, editor extensions and the remote
desktop stack for a workstation container.
"""

from .engine import (
    BootstrapError,
    StageRegistry,
    StageDefinition,
    StageFunc,
    run_stage_graph,
    format_dependency_graph,
)
from .context import (
    StackContext,
    StageFailed,
    launch_process,
)
from ._types import (
    Console,
    TimingsCollector,
)
from .config import StartupConfig
from .readiness import (
    GateOutcome,
    ReadinessGate,
    ReadinessTimeout,
)
from .hooks import (
    HookResult,
    HookScript,
    discover_hooks,
    run_hooks,
)
from .permissions import PermissionReconciler, ReconcileReport
from .extensions import (
    ExtensionInstaller,
    InstallAttempt,
    InstallOutcome,
)
from .process import (
    ManagedProcess,
    ProcessRole,
    ProcessState,
)
from .clipboard import (
    ClipboardBridge,
    ClipboardDirection,
    ClipboardMessage,
)
from .display import DisplayStackSupervisor

__version__ = "0.1.0"

__all__ = [
    # Engine
    "BootstrapError",
    "StageRegistry",
    "StageDefinition",
    "StageFunc",
    "run_stage_graph",
    "format_dependency_graph",
    # Context
    "StackContext",
    "StageFailed",
    "launch_process",
    # Types
    "Console",
    "TimingsCollector",
    "StartupConfig",
    # Readiness
    "GateOutcome",
    "ReadinessGate",
    "ReadinessTimeout",
    # Hooks
    "HookResult",
    "HookScript",
    "discover_hooks",
    "run_hooks",
    # Extensions
    "PermissionReconciler",
    "ReconcileReport",
    "ExtensionInstaller",
    "InstallAttempt",
    "InstallOutcome",
    # Desktop stack
    "ManagedProcess",
    "ProcessRole",
    "ProcessState",
    "ClipboardBridge",
    "ClipboardDirection",
    "ClipboardMessage",
    "DisplayStackSupervisor",
]
