from __future__ import annotations

import json
from pathlib import Path

import pytest

from coherence_engine import (
    ArtifactDescriptor,
    EntityInput,
    NodeKind,
    StateStore,
    build_graph,
    empty_state,
    fold_snapshot,
    fold_snapshots,
    snapshot_from_node,
)


def _graph(tool_version: str = "1.0"):
    entity = EntityInput(
        entity_name="User",
        source_path="domain/User.entity.ts",
        definition={"fields": {"id": "string"}},
        artifacts=[
            ArtifactDescriptor(kind=NodeKind.SCHEMA, path="schemas/user.ts", content="export const UserSchema = {};"),
            ArtifactDescriptor(kind=NodeKind.DRIZZLE_SCHEMA, path="drizzle/user.ts", content="export const users = {};"),
        ],
    )
    return build_graph([entity], tool_version=tool_version)


def _state(graph):
    return fold_snapshots(empty_state(), ((node, "create") for node in graph.outputs()))


def test_read_state_without_manifest_is_empty(tmp_path: Path) -> None:
    store = StateStore(tmp_path)
    assert store.read_state() == empty_state()
    assert not store.manifest_path.exists()


def test_state_roundtrip(tmp_path: Path) -> None:
    store = StateStore(tmp_path)
    state = _state(_graph())

    result = store.write_state(state)

    assert result.changed is True
    assert store.manifest_path == tmp_path / ".tsera" / "manifest.json"
    assert store.read_state() == state


def test_manifest_document_uses_camel_case_keys(tmp_path: Path) -> None:
    store = StateStore(tmp_path)
    store.write_state(_state(_graph()))

    document = json.loads(store.manifest_path.read_text(encoding="utf-8"))
    assert document["version"] == 1
    snapshot = document["snapshots"]["schema:user:schemas/user.ts"]
    assert snapshot["targetPath"] == "schemas/user.ts"
    assert snapshot["sourcePath"] == "domain/User.entity.ts"
    assert snapshot["kind"] == "schema"
    assert "target_path" not in snapshot
    assert store.manifest_path.read_text(encoding="utf-8").endswith("\n")


def test_write_state_is_a_noop_when_unchanged(tmp_path: Path) -> None:
    store = StateStore(tmp_path)
    state = _state(_graph())
    store.write_state(state)
    mtime = store.manifest_path.stat().st_mtime_ns

    assert store.write_state(state).changed is False
    assert store.manifest_path.stat().st_mtime_ns == mtime


def test_write_graph_document(tmp_path: Path) -> None:
    store = StateStore(tmp_path)
    assert store.write_graph(_graph()).changed is True
    assert store.write_graph(_graph()).changed is False

    document = store.read_graph()
    assert document["version"] == 1
    assert [node["id"] for node in document["nodes"]] == sorted(node["id"] for node in document["nodes"])
    assert {"from": "entity:User", "to": "schema:user:schemas/user.ts"} in document["edges"]
    assert all("content" not in node for node in document["nodes"])


def test_read_state_rejects_corrupt_manifest(tmp_path: Path) -> None:
    store = StateStore(tmp_path)
    store.manifest_path.parent.mkdir(parents=True)

    store.manifest_path.write_text("{not json", encoding="utf-8")
    with pytest.raises(ValueError, match="not valid JSON"):
        store.read_state()

    store.manifest_path.write_text("[]", encoding="utf-8")
    with pytest.raises(ValueError, match="JSON object"):
        store.read_state()

    store.manifest_path.write_text("", encoding="utf-8")
    with pytest.raises(ValueError, match="empty"):
        store.read_state()


def test_read_state_rejects_unknown_version(tmp_path: Path) -> None:
    store = StateStore(tmp_path)
    store.manifest_path.parent.mkdir(parents=True)
    store.manifest_path.write_text(json.dumps({"version": 2, "snapshots": {}}), encoding="utf-8")
    with pytest.raises(ValueError, match="unsupported version"):
        store.read_state()


def test_read_state_rejects_invalid_snapshots(tmp_path: Path) -> None:
    store = StateStore(tmp_path)
    store.manifest_path.parent.mkdir(parents=True)
    payload = {"version": 1, "snapshots": {"x": {"id": "x", "kind": "spreadsheet", "hash": "h"}}}
    store.manifest_path.write_text(json.dumps(payload), encoding="utf-8")
    with pytest.raises(ValueError, match="failed validation"):
        store.read_state()


def test_custom_state_dir(tmp_path: Path) -> None:
    store = StateStore(tmp_path, state_dir=".cache/coherence")
    store.write_state(empty_state())
    assert (tmp_path / ".cache" / "coherence" / "manifest.json").is_file()

    with pytest.raises(ValueError):
        StateStore(tmp_path, state_dir="../elsewhere")


def test_fold_snapshot_is_pure() -> None:
    node = _graph().outputs()[0]
    start = empty_state()

    created = fold_snapshot(start, node, "create")
    assert start.snapshots == {}
    assert created.snapshots[node.id] == snapshot_from_node(node)

    deleted = fold_snapshot(created, node, "delete")
    assert deleted.snapshots == {}
    assert node.id in created.snapshots
    assert fold_snapshot(start, node, "delete") == start
