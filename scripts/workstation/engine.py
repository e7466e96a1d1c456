"""
Stage registry and layered execution engine.

Stages whose dependencies have settled run together in one layer; a fatal
stage failure stops the graph, a non-fatal one is logged and its dependents
still run.
"""

from __future__ import annotations

import asyncio
import time
import typing as t

from dataclasses import dataclass

from collections.abc import Awaitable, Iterable

from .context import StackContext, StageFailed
from .process import ProcessRole, ProcessState

StageFunc = t.Callable[[StackContext], Awaitable[None]]


class BootstrapError(RuntimeError):
    def __init__(self, failure: StageFailed) -> None:
        super().__init__(f"desktop bootstrap aborted: {failure}")
        self.failure = failure


@dataclass(frozen=True)
class StageDefinition:
    role: ProcessRole
    func: StageFunc
    dependencies: tuple[ProcessRole, ...]
    fatal: bool = False
    description: str | None = None

    @property
    def name(self) -> str:
        return self.role.value


class StageRegistry:
    def __init__(self) -> None:
        self._stages: dict[ProcessRole, StageDefinition] = {}

    def stage(
        self,
        role: ProcessRole,
        *,
        deps: Iterable[ProcessRole] = (),
        fatal: bool = False,
        description: str | None = None,
    ) -> t.Callable[[StageFunc], StageFunc]:
        def decorator(func: StageFunc) -> StageFunc:
            if role in self._stages:
                raise ValueError(f"Stage '{role.value}' already registered")
            self._stages[role] = StageDefinition(
                role=role,
                func=func,
                dependencies=tuple(deps),
                fatal=fatal,
                description=description,
            )
            return func

        return decorator

    @property
    def stages(self) -> dict[ProcessRole, StageDefinition]:
        return dict(self._stages)


async def _run_stage_with_timing(ctx: StackContext, stage: StageDefinition) -> None:
    start = time.perf_counter()
    try:
        await stage.func(ctx)
    except StageFailed:
        managed = ctx.processes[stage.role]
        if managed.state in (ProcessState.NOT_STARTED, ProcessState.STARTING, ProcessState.READY):
            ctx.mark(stage.role, ProcessState.FAILED)
        raise
    finally:
        ctx.timings.add(f"stage:{stage.name}", time.perf_counter() - start)
    duration = time.perf_counter() - start
    ctx.console.info(f"✓ {stage.name} settled in {duration:.2f}s")


async def run_stage_graph(registry: StageRegistry, ctx: StackContext) -> None:
    """Execute all stages in the registry respecting dependencies.

    Raises BootstrapError on the first fatal stage failure; later layers are
    never started.
    """
    remaining = registry.stages
    settled: set[ProcessRole] = set()

    while remaining:
        ready = [
            role
            for role, stage in remaining.items()
            if all(dep in settled for dep in stage.dependencies)
        ]
        if not ready:
            unresolved = ", ".join(role.value for role in remaining)
            raise RuntimeError(f"Dependency cycle detected: {unresolved}")

        stages_to_run = [remaining[role] for role in ready]
        for stage in stages_to_run:
            ctx.console.info(f"→ starting stage {stage.name}")

        start = time.perf_counter()
        results = await asyncio.gather(
            *(_run_stage_with_timing(ctx, stage) for stage in stages_to_run),
            return_exceptions=True,
        )
        duration = time.perf_counter() - start
        ctx.timings.add(f"layer:{'+'.join(stage.name for stage in stages_to_run)}", duration)

        for stage, result in zip(stages_to_run, results):
            if isinstance(result, StageFailed):
                if stage.fatal:
                    ctx.console.error(f"{stage.name} failed: {result.reason}")
                    raise BootstrapError(result)
                ctx.console.warn(f"{stage.name} degraded: {result.reason}")
            elif isinstance(result, BaseException):
                raise result

        for stage in stages_to_run:
            settled.add(stage.role)
            remaining.pop(stage.role, None)


def format_dependency_graph(registry: StageRegistry) -> str:
    """Format the stage dependency graph as a tree string."""
    stages = {role.value: stage for role, stage in registry.stages.items()}
    if not stages:
        return ""

    children: dict[str, list[str]] = {name: [] for name in stages}
    for stage in stages.values():
        for dependency in stage.dependencies:
            children.setdefault(dependency.value, []).append(stage.name)
    for child_list in children.values():
        child_list.sort()

    roots = sorted(name for name, definition in stages.items() if not definition.dependencies)

    lines: list[str] = []

    def label(name: str) -> str:
        stage = stages.get(name)
        return f"{name} (fatal)" if stage is not None and stage.fatal else name

    def render_node(
        node: str,
        prefix: str,
        is_last: bool,
        path: set[str],
    ) -> None:
        connector = "└─" if is_last else "├─"
        lines.append(f"{prefix}{connector} {label(node)}")
        if node in path:
            lines.append(f"{prefix}   ↻ cycle")
            return
        descendants = children.get(node, [])
        if not descendants:
            return
        next_prefix = f"{prefix}   " if is_last else f"{prefix}│  "
        next_path = set(path)
        next_path.add(node)
        for index, child in enumerate(descendants):
            render_node(child, next_prefix, index == len(descendants) - 1, next_path)

    for root_index, root in enumerate(roots):
        if root_index:
            lines.append("")
        lines.append(label(root))
        descendants = children.get(root, [])
        for index, child in enumerate(descendants):
            render_node(child, "", index == len(descendants) - 1, {root})

    return "\n".join(lines)
