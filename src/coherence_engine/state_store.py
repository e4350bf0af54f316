from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Iterable, Literal

from pydantic import ValidationError

from .fsx import WriteResult, resolve_project_path, safe_write_json
from .graph import Graph, serialize_graph
from .models import EngineState, GraphNode, SnapshotRecord

logger = logging.getLogger(__name__)

STATE_DIR = ".tsera"
MANIFEST_FILENAME = "manifest.json"
GRAPH_FILENAME = "graph.json"
MANIFEST_VERSION = 1
GRAPH_VERSION = 1

SnapshotAction = Literal["create", "update", "delete"]


# ---------------------------------------------------------------------------
# Pure state helpers
# ---------------------------------------------------------------------------


def empty_state() -> EngineState:
    return EngineState(snapshots={})


def snapshot_from_node(node: GraphNode) -> SnapshotRecord:
    return SnapshotRecord(
        id=node.id,
        kind=node.kind,
        hash=node.hash,
        target_path=node.target_path,
        source_path=node.source_path,
        label=node.label,
    )


def fold_snapshot(state: EngineState, node: GraphNode, action: SnapshotAction) -> EngineState:
    """Return a new state with one executed step folded in; *state* is not mutated."""
    snapshots = dict(state.snapshots)
    if action == "delete":
        snapshots.pop(node.id, None)
    else:
        snapshots[node.id] = snapshot_from_node(node)
    return EngineState(snapshots=snapshots)


def fold_snapshots(state: EngineState, updates: Iterable[tuple[GraphNode, SnapshotAction]]) -> EngineState:
    for node, action in updates:
        state = fold_snapshot(state, node, action)
    return state


# ---------------------------------------------------------------------------
# Filesystem helpers
# ---------------------------------------------------------------------------


def _safe_read_json(path: Path, label: str) -> dict[str, Any]:
    """Read a JSON object from *path*, raising a clear error if it is unreadable.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If the file is empty, not UTF-8, not JSON or not an object.
    """
    if not path.is_file():
        raise FileNotFoundError(f"{label} not found: {path}")
    try:
        text = path.read_text(encoding="utf-8")
    except UnicodeDecodeError as exc:
        raise ValueError(f"{label} at {path} contains invalid UTF-8 data") from exc
    if not text.strip():
        raise ValueError(f"{label} at {path} is empty")
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ValueError(f"{label} at {path} is not valid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise ValueError(f"{label} at {path} must contain a JSON object")
    return payload


# ---------------------------------------------------------------------------
# StateStore
# ---------------------------------------------------------------------------


class StateStore:
    """Persists the last-applied snapshots and the graph under the reserved state directory.

    ``manifest.json`` is the only document read back for planning.
    ``graph.json`` is written for inspection and debugging. Both writes only
    touch the file when its content would change.
    """

    def __init__(self, project_dir: Path, *, state_dir: str = STATE_DIR) -> None:
        self.project_dir = project_dir
        self.state_dir = resolve_project_path(project_dir, state_dir)

    @property
    def manifest_path(self) -> Path:
        return self.state_dir / MANIFEST_FILENAME

    @property
    def graph_path(self) -> Path:
        return self.state_dir / GRAPH_FILENAME

    def read_state(self) -> EngineState:
        """Read the manifest; a missing manifest yields an empty state.

        Raises:
            ValueError: If the manifest is corrupt, has an unsupported version,
                or fails validation.
        """
        if not self.manifest_path.exists():
            logger.debug("No manifest at %s, starting from an empty state", self.manifest_path)
            return empty_state()
        payload = _safe_read_json(self.manifest_path, "manifest")
        version = payload.get("version")
        if version != MANIFEST_VERSION:
            raise ValueError(
                f"manifest at {self.manifest_path} has unsupported version {version!r}, expected {MANIFEST_VERSION}"
            )
        try:
            return EngineState.model_validate({"snapshots": payload.get("snapshots", {})})
        except ValidationError as exc:
            raise ValueError(f"manifest at {self.manifest_path} failed validation: {exc}") from exc

    def write_state(self, state: EngineState) -> WriteResult:
        snapshots = {
            snapshot_id: snapshot.model_dump(mode="json", by_alias=True, exclude_none=True)
            for snapshot_id, snapshot in state.snapshots.items()
        }
        result = safe_write_json(self.manifest_path, {"version": MANIFEST_VERSION, "snapshots": snapshots})
        logger.debug("Manifest %s (%d snapshots, changed=%s)", self.manifest_path, len(snapshots), result.changed)
        return result

    def write_graph(self, graph: Graph) -> WriteResult:
        document = {"version": GRAPH_VERSION, **serialize_graph(graph)}
        result = safe_write_json(self.graph_path, document)
        logger.debug("Graph document %s (changed=%s)", self.graph_path, result.changed)
        return result

    def read_graph(self) -> dict[str, Any]:
        """Return the raw graph document for inspection tooling."""
        return _safe_read_json(self.graph_path, "graph document")
