from __future__ import annotations

from coherence_engine import (
    ArtifactDescriptor,
    EngineState,
    EntityInput,
    NodeKind,
    PlanStepKind,
    SnapshotRecord,
    build_graph,
    empty_state,
    fold_snapshots,
    plan_graph,
)


def _user(schema: str = "export const UserSchema = {};", *, with_migration: bool = True) -> EntityInput:
    artifacts = [ArtifactDescriptor(kind=NodeKind.SCHEMA, path="schemas/user.ts", content=schema)]
    if with_migration:
        artifacts.append(
            ArtifactDescriptor(kind=NodeKind.MIGRATION, path="drizzle/0001_user.sql", content="CREATE TABLE users();")
        )
    return EntityInput(entity_name="User", source_path="domain/User.entity.ts", artifacts=artifacts)


def _applied(graph) -> EngineState:
    return fold_snapshots(empty_state(), ((node, "create") for node in graph.outputs()))


def test_plan_creates_every_output_for_empty_state() -> None:
    graph = build_graph([_user()], tool_version="1.0")
    plan = plan_graph(graph, empty_state())

    assert [step.kind for step in plan.steps] == [PlanStepKind.CREATE, PlanStepKind.CREATE]
    assert plan.summary.as_dict() == {
        "create": 2,
        "update": 0,
        "delete": 0,
        "noop": 0,
        "total": 2,
        "changed": True,
    }
    assert all(step.node.kind != NodeKind.ENTITY for step in plan.steps)


def test_plan_is_empty_once_state_matches() -> None:
    graph = build_graph([_user()], tool_version="1.0")
    plan = plan_graph(graph, _applied(graph))

    assert plan.steps == ()
    assert plan.summary.changed is False
    assert plan.summary.total == 0

    full = plan_graph(graph, _applied(graph), include_unchanged=True)
    assert [step.kind for step in full.steps] == [PlanStepKind.NOOP, PlanStepKind.NOOP]
    assert full.summary.changed is False


def test_plan_updates_changed_content_and_reports_noops_on_request() -> None:
    before = build_graph([_user()], tool_version="1.0")
    state = _applied(before)
    after = build_graph([_user(schema="export const UserSchema = { v: 2 };")], tool_version="1.0")

    plan = plan_graph(after, state)
    assert [(step.kind, step.node.target_path) for step in plan.steps] == [(PlanStepKind.UPDATE, "schemas/user.ts")]
    update = plan.steps[0]
    assert update.previous is not None
    assert update.previous.hash == state.snapshots[update.node.id].hash
    assert update.node.hash != update.previous.hash

    full = plan_graph(after, state, include_unchanged=True)
    assert [step.kind for step in full.steps] == [PlanStepKind.NOOP, PlanStepKind.UPDATE]
    assert full.summary.noop == 1
    assert full.summary.changed is True


def test_plan_deletes_outputs_no_longer_produced() -> None:
    before = build_graph([_user()], tool_version="1.0")
    after = build_graph([_user(with_migration=False)], tool_version="1.0")

    plan = plan_graph(after, _applied(before))
    assert len(plan.steps) == 1
    step = plan.steps[0]
    assert step.kind is PlanStepKind.DELETE
    assert step.node.target_path == "drizzle/0001_user.sql"
    assert step.previous is not None
    assert plan.summary.delete == 1


def test_plan_updates_everything_when_tool_version_changes() -> None:
    state = _applied(build_graph([_user()], tool_version="1.0"))
    plan = plan_graph(build_graph([_user()], tool_version="1.1"), state)
    assert [step.kind for step in plan.steps] == [PlanStepKind.UPDATE, PlanStepKind.UPDATE]


def test_plan_steps_are_sorted_by_target_path() -> None:
    post = EntityInput(
        entity_name="Post",
        source_path="domain/Post.entity.ts",
        artifacts=[
            ArtifactDescriptor(kind=NodeKind.DOC, path="docs/post.md", content="# Post"),
            ArtifactDescriptor(kind=NodeKind.TEST, path="tests/post.test.ts", content="test()"),
            ArtifactDescriptor(kind=NodeKind.OPENAPI, path="api/openapi.json", content="{}"),
        ],
    )
    stale = SnapshotRecord(id="doc:post:aaa/old.md", kind=NodeKind.DOC, hash="stale", target_path="aaa/old.md")
    plan = plan_graph(
        build_graph([post, _user()], tool_version="1.0"),
        EngineState(snapshots={stale.id: stale}),
    )
    paths = [step.node.target_path for step in plan.steps]
    assert paths == sorted(paths)
    assert paths[0] == "aaa/old.md"
    assert plan.steps[0].kind is PlanStepKind.DELETE


def test_plan_ignores_entity_snapshots() -> None:
    entity_snapshot = SnapshotRecord(id="entity:Ghost", kind=NodeKind.ENTITY, hash="x")
    graph = build_graph([_user()], tool_version="1.0")
    state = _applied(graph).model_copy(
        update={"snapshots": {**_applied(graph).snapshots, entity_snapshot.id: entity_snapshot}}
    )
    plan = plan_graph(graph, state)
    assert plan.steps == ()


def test_plan_is_deterministic() -> None:
    graph = build_graph([_user()], tool_version="1.0")
    first = plan_graph(graph, empty_state())
    second = plan_graph(build_graph([_user()], tool_version="1.0"), empty_state())
    assert [(step.kind, step.node.id, step.node.hash) for step in first.steps] == [
        (step.kind, step.node.id, step.node.hash) for step in second.steps
    ]


def test_plan_deletes_before_writing_when_node_id_changes_at_same_path() -> None:
    as_schema = EntityInput(
        entity_name="User",
        source_path="domain/User.entity.ts",
        artifacts=[ArtifactDescriptor(kind=NodeKind.SCHEMA, path="generated/user.ts", content="x")],
    )
    as_openapi = as_schema.model_copy(
        update={"artifacts": [ArtifactDescriptor(kind=NodeKind.OPENAPI, path="generated/user.ts", content="x")]}
    )
    renamed = as_schema.model_copy(update={"entity_name": "Account"})
    state = _applied(build_graph([as_schema], tool_version="1.0"))

    kind_change = plan_graph(build_graph([as_openapi], tool_version="1.0"), state)
    assert [(step.kind, step.node.id) for step in kind_change.steps] == [
        (PlanStepKind.DELETE, "schema:user:generated/user.ts"),
        (PlanStepKind.CREATE, "openapi:user:generated/user.ts"),
    ]

    rename = plan_graph(build_graph([renamed], tool_version="1.0"), state)
    assert [(step.kind, step.node.id) for step in rename.steps] == [
        (PlanStepKind.DELETE, "schema:user:generated/user.ts"),
        (PlanStepKind.CREATE, "schema:account:generated/user.ts"),
    ]
