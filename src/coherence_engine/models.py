from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class NodeKind(str, Enum):
    ENTITY = "entity"
    SCHEMA = "schema"
    OPENAPI = "openapi"
    MIGRATION = "migration"
    TEST = "test"
    DOC = "doc"
    DRIZZLE_SCHEMA = "drizzle-schema"


ARTIFACT_KINDS: frozenset[NodeKind] = frozenset(kind for kind in NodeKind if kind is not NodeKind.ENTITY)


class NodeMode(str, Enum):
    INPUT = "input"
    OUTPUT = "output"


class PlanStepKind(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    NOOP = "noop"


def _require_artifact_kind(value: NodeKind) -> NodeKind:
    if value not in ARTIFACT_KINDS:
        raise ValueError(f"{value.value!r} is not an artifact kind")
    return value


class _Document(BaseModel):
    """On-disk documents use camelCase keys; Python code uses snake_case."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


# ---------------------------------------------------------------------------
# Discovery input
# ---------------------------------------------------------------------------


class ArtifactDescriptor(_Document):
    """One generated output declared for an entity."""

    kind: NodeKind
    path: str
    content: str | bytes
    depends_on: list[str] | None = None
    label: str | None = None
    data: dict[str, Any] | None = None

    @field_validator("kind")
    @classmethod
    def _artifact_kind(cls, value: NodeKind) -> NodeKind:
        return _require_artifact_kind(value)

    @field_validator("path")
    @classmethod
    def _non_empty_path(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("artifact path must be non-empty")
        return value


class EntityInput(_Document):
    """Pre-resolved entity declaration handed over by the discovery collaborator."""

    entity_name: str
    source_path: str
    definition: dict[str, Any] = Field(default_factory=dict)
    artifacts: list[ArtifactDescriptor] = Field(default_factory=list)

    @field_validator("entity_name")
    @classmethod
    def _non_empty_name(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("entity_name must be non-empty")
        return value


# ---------------------------------------------------------------------------
# Graph
# ---------------------------------------------------------------------------


class _NodeBase(_Document):
    id: str
    label: str
    hash: str
    source_path: str | None = None
    target_path: str | None = None
    content: str | bytes | None = None
    data: dict[str, Any] | None = None


class EntityNode(_NodeBase):
    """Input node anchoring the edges of one entity. Never planned or snapshotted."""

    kind: Literal[NodeKind.ENTITY] = NodeKind.ENTITY
    mode: Literal[NodeMode.INPUT] = NodeMode.INPUT


class ArtifactNode(_NodeBase):
    """Output node for one generated artifact."""

    kind: NodeKind
    mode: Literal[NodeMode.OUTPUT] = NodeMode.OUTPUT

    @field_validator("kind")
    @classmethod
    def _artifact_kind(cls, value: NodeKind) -> NodeKind:
        return _require_artifact_kind(value)


GraphNode = Annotated[Union[EntityNode, ArtifactNode], Field(discriminator="mode")]


class GraphEdge(_Document):
    from_: str = Field(alias="from")
    to: str


# ---------------------------------------------------------------------------
# Persisted state
# ---------------------------------------------------------------------------


class SnapshotRecord(_Document):
    id: str
    kind: NodeKind
    hash: str
    target_path: str | None = None
    source_path: str | None = None
    label: str | None = None


class EngineState(_Document):
    """Map of node id to the snapshot of what was last written for it."""

    snapshots: dict[str, SnapshotRecord] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Plans
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PlanStep:
    kind: PlanStepKind
    node: ArtifactNode
    previous: SnapshotRecord | None = None

    @property
    def sort_key(self) -> tuple[str, bool]:
        # A delete sharing a path with a write must run first or it removes the new file.
        path = self.node.target_path or self.node.source_path or self.node.id
        return path, self.kind is not PlanStepKind.DELETE


@dataclass(frozen=True)
class PlanSummary:
    create: int
    update: int
    delete: int
    noop: int
    total: int
    changed: bool

    def as_dict(self) -> dict[str, int | bool]:
        return {
            "create": self.create,
            "update": self.update,
            "delete": self.delete,
            "noop": self.noop,
            "total": self.total,
            "changed": self.changed,
        }


@dataclass(frozen=True)
class PlanResult:
    steps: tuple[PlanStep, ...]
    summary: PlanSummary


@dataclass(frozen=True)
class ApplyStepResult:
    kind: PlanStepKind
    path: str | None
    changed: bool
