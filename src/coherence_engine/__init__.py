from .applier import apply_plan
from .canonical import MISSING, to_canonical_json
from .discovery import chain_artifact_stages, load_discovery_file, sort_entity_inputs
from .engine import CoherenceEngine, CycleQueue, CycleReport, WatchSession
from .errors import CoherenceError, GraphError, PlanStepError
from .graph import Graph, artifact_node_id, build_graph, entity_node_id, serialize_graph, topological_order
from .hashing import hash_bytes, hash_text, hash_value
from .models import (
    ApplyStepResult,
    ArtifactDescriptor,
    ArtifactNode,
    EngineState,
    EntityInput,
    EntityNode,
    GraphEdge,
    GraphNode,
    NodeKind,
    NodeMode,
    PlanResult,
    PlanStep,
    PlanStepKind,
    PlanSummary,
    SnapshotRecord,
)
from .planner import plan_graph
from .settings import EngineSettings, get_version
from .state_store import StateStore, empty_state, fold_snapshot, fold_snapshots, snapshot_from_node
from .watch import WatchEvent, Watcher, WatcherState, watch_project

__all__ = [
    "ApplyStepResult",
    "ArtifactDescriptor",
    "ArtifactNode",
    "CoherenceEngine",
    "CoherenceError",
    "CycleQueue",
    "CycleReport",
    "EngineSettings",
    "EngineState",
    "EntityInput",
    "EntityNode",
    "Graph",
    "GraphEdge",
    "GraphError",
    "GraphNode",
    "MISSING",
    "NodeKind",
    "NodeMode",
    "PlanResult",
    "PlanStep",
    "PlanStepError",
    "PlanStepKind",
    "PlanSummary",
    "SnapshotRecord",
    "StateStore",
    "WatchEvent",
    "WatchSession",
    "Watcher",
    "WatcherState",
    "apply_plan",
    "artifact_node_id",
    "build_graph",
    "chain_artifact_stages",
    "empty_state",
    "entity_node_id",
    "fold_snapshot",
    "fold_snapshots",
    "get_version",
    "hash_bytes",
    "hash_text",
    "hash_value",
    "load_discovery_file",
    "plan_graph",
    "serialize_graph",
    "snapshot_from_node",
    "sort_entity_inputs",
    "to_canonical_json",
    "topological_order",
    "watch_project",
]
