from __future__ import annotations

import logging
from collections import Counter
from typing import Iterable

from .graph import Graph
from .models import ARTIFACT_KINDS, ArtifactNode, EngineState, PlanResult, PlanStep, PlanStepKind, PlanSummary, SnapshotRecord

logger = logging.getLogger(__name__)


def _node_from_snapshot(snapshot: SnapshotRecord) -> ArtifactNode:
    return ArtifactNode(
        id=snapshot.id,
        kind=snapshot.kind,
        label=snapshot.label or snapshot.id,
        hash=snapshot.hash,
        source_path=snapshot.source_path,
        target_path=snapshot.target_path,
    )


def plan_graph(graph: Graph, state: EngineState, *, include_unchanged: bool = False) -> PlanResult:
    """Diff the output nodes of *graph* against the snapshots in *state*.

    Output nodes missing from *state* are created, nodes whose hash moved are
    updated, and snapshots no longer produced by any node are deleted. Steps
    are sorted by target path (falling back to source path, then id), with a
    delete ordered before any write to the same path.
    """
    steps: list[PlanStep] = []
    seen: set[str] = set()

    for node in graph.outputs():
        seen.add(node.id)
        previous = state.snapshots.get(node.id)
        if previous is None:
            steps.append(PlanStep(kind=PlanStepKind.CREATE, node=node))
        elif previous.hash != node.hash:
            steps.append(PlanStep(kind=PlanStepKind.UPDATE, node=node, previous=previous))
        elif include_unchanged:
            steps.append(PlanStep(kind=PlanStepKind.NOOP, node=node, previous=previous))

    for snapshot_id, snapshot in state.snapshots.items():
        if snapshot_id in seen or snapshot.kind not in ARTIFACT_KINDS:
            continue
        steps.append(PlanStep(kind=PlanStepKind.DELETE, node=_node_from_snapshot(snapshot), previous=snapshot))

    steps.sort(key=lambda step: step.sort_key)
    summary = summarize_steps(steps)
    logger.info(
        "Plan: %d create, %d update, %d delete, %d noop",
        summary.create,
        summary.update,
        summary.delete,
        summary.noop,
    )
    return PlanResult(steps=tuple(steps), summary=summary)


def summarize_steps(steps: Iterable[PlanStep]) -> PlanSummary:
    counts = Counter(step.kind for step in steps)
    create = counts[PlanStepKind.CREATE]
    update = counts[PlanStepKind.UPDATE]
    delete = counts[PlanStepKind.DELETE]
    noop = counts[PlanStepKind.NOOP]
    return PlanSummary(
        create=create,
        update=update,
        delete=delete,
        noop=noop,
        total=create + update + delete + noop,
        changed=create + update + delete > 0,
    )
