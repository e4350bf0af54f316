from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable

from .errors import PlanStepError
from .fsx import remove_file_if_exists, resolve_project_path, safe_write
from .models import ApplyStepResult, EngineState, PlanResult, PlanStep, PlanStepKind
from .state_store import fold_snapshot

logger = logging.getLogger(__name__)

StepObserver = Callable[[PlanStep, ApplyStepResult], None]


def _target(project_dir: Path, relative_path: str, step: PlanStep, state: EngineState) -> Path:
    try:
        return resolve_project_path(project_dir, relative_path)
    except ValueError as exc:
        raise PlanStepError(f"Cannot apply step {step.node.id}: {exc}", step=step, state=state) from exc


def _apply_write(step: PlanStep, project_dir: Path, state: EngineState) -> tuple[ApplyStepResult, EngineState]:
    target_path = step.node.target_path
    if not target_path:
        raise PlanStepError(f"Cannot apply step {step.node.id} without a target path", step=step, state=state)
    content = step.node.content
    if content is None:
        raise PlanStepError(f"Node {step.node.id} has no content to write", step=step, state=state)

    written = safe_write(_target(project_dir, target_path, step, state), content)
    action = "create" if step.kind is PlanStepKind.CREATE else "update"
    return (
        ApplyStepResult(kind=step.kind, path=target_path, changed=written.changed),
        fold_snapshot(state, step.node, action),
    )


def _apply_delete(step: PlanStep, project_dir: Path, state: EngineState) -> tuple[ApplyStepResult, EngineState]:
    path = step.node.target_path or (step.previous.target_path if step.previous else None)
    if not path:
        raise PlanStepError(f"Cannot delete node {step.node.id} without an associated path", step=step, state=state)

    remove_file_if_exists(_target(project_dir, path, step, state))
    return (
        ApplyStepResult(kind=step.kind, path=path, changed=True),
        fold_snapshot(state, step.node, "delete"),
    )


def apply_plan(
    plan: PlanResult,
    state: EngineState,
    *,
    project_dir: Path,
    on_step: StepObserver | None = None,
) -> EngineState:
    """Execute *plan* against *project_dir* and return the folded engine state.

    Steps run strictly in plan order. Each step's snapshot is folded right
    after its own I/O, so a ``PlanStepError`` carries the state of every step
    that completed before it. Filesystem errors propagate unchanged.
    """
    current = state
    for step in plan.steps:
        if step.kind is PlanStepKind.CREATE or step.kind is PlanStepKind.UPDATE:
            result, current = _apply_write(step, project_dir, current)
        elif step.kind is PlanStepKind.DELETE:
            result, current = _apply_delete(step, project_dir, current)
        elif step.kind is PlanStepKind.NOOP:
            result = ApplyStepResult(kind=step.kind, path=step.node.target_path, changed=False)
        else:
            raise PlanStepError(f"Unhandled plan step kind: {step.kind!r}", step=step, state=current)

        logger.debug("%s %s (changed=%s)", step.kind.value, result.path or step.node.id, result.changed)
        if on_step is not None:
            on_step(step, result)
    return current
