from __future__ import annotations

import logging
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Sequence

from .errors import GraphError
from .hashing import hash_value
from .models import ArtifactDescriptor, ArtifactNode, EntityInput, EntityNode, GraphEdge, GraphNode, NodeKind, NodeMode
from .utils import entity_slug

logger = logging.getLogger(__name__)

ENTITY_HASH_SALT = "entity"


@dataclass(frozen=True)
class Graph:
    """Entity and artifact nodes plus a topologically valid ordering.

    ``nodes`` keeps insertion order; ``order`` is the Kahn ordering used for
    planning. Both are rebuilt from scratch every cycle.
    """

    nodes: Mapping[str, GraphNode]
    edges: tuple[GraphEdge, ...]
    order: tuple[GraphNode, ...]

    def outputs(self) -> list[ArtifactNode]:
        return [node for node in self.order if node.mode == NodeMode.OUTPUT]


def entity_node_id(entity_name: str) -> str:
    return f"entity:{entity_name}"


def artifact_node_id(kind: NodeKind | str, entity_name: str, path: str) -> str:
    kind_value = kind.value if isinstance(kind, NodeKind) else kind
    return f"{kind_value}:{entity_slug(entity_name)}:{path}"


def _entity_node(entity: EntityInput, *, tool_version: str) -> EntityNode:
    fingerprint = hash_value(
        {"entity": entity.definition, "sourcePath": entity.source_path},
        version=tool_version,
        salt=ENTITY_HASH_SALT,
    )
    return EntityNode(
        id=entity_node_id(entity.entity_name),
        label=entity.entity_name,
        hash=fingerprint,
        source_path=entity.source_path,
        data=entity.definition or None,
    )


def _artifact_node(entity: EntityInput, artifact: ArtifactDescriptor, *, tool_version: str) -> ArtifactNode:
    fingerprint = hash_value(
        {"path": artifact.path, "content": artifact.content, "entityName": entity.entity_name},
        version=tool_version,
        salt=artifact.kind.value,
    )
    return ArtifactNode(
        id=artifact_node_id(artifact.kind, entity.entity_name, artifact.path),
        kind=artifact.kind,
        label=artifact.label or f"{entity.entity_name} {artifact.kind.value}",
        hash=fingerprint,
        source_path=entity.source_path,
        target_path=artifact.path,
        content=artifact.content,
        data=artifact.data,
    )


def _add_node(nodes: dict[str, GraphNode], node: GraphNode) -> None:
    if node.id in nodes:
        raise GraphError(f"Duplicate node id in graph: {node.id}")
    nodes[node.id] = node


def build_graph(inputs: Sequence[EntityInput], *, tool_version: str) -> Graph:
    """Build the entity/artifact graph for one cycle.

    Raises:
        GraphError: On duplicate node ids, edges referencing unknown nodes,
            or a dependency cycle. No partial graph is returned.
    """
    nodes: dict[str, GraphNode] = {}
    edges: list[GraphEdge] = []

    for entity in inputs:
        entity_node = _entity_node(entity, tool_version=tool_version)
        _add_node(nodes, entity_node)
        for artifact in entity.artifacts:
            node = _artifact_node(entity, artifact, tool_version=tool_version)
            _add_node(nodes, node)
            edges.append(GraphEdge(from_=entity_node.id, to=node.id))
            for dependency in artifact.depends_on or []:
                edges.append(GraphEdge(from_=dependency, to=node.id))

    validate_edges(nodes, edges)
    order = topological_order(nodes, edges)
    logger.debug("Built graph with %d nodes and %d edges", len(nodes), len(edges))
    return Graph(nodes=nodes, edges=tuple(edges), order=tuple(order))


def validate_edges(nodes: Mapping[str, GraphNode], edges: Iterable[GraphEdge]) -> None:
    for edge in edges:
        if edge.from_ not in nodes:
            raise GraphError(f"An edge references an unknown node in the graph: {edge.from_} -> {edge.to}")
        if edge.to not in nodes:
            raise GraphError(f"An edge references an unknown node in the graph: {edge.from_} -> {edge.to}")


def topological_order(nodes: Mapping[str, GraphNode], edges: Iterable[GraphEdge]) -> list[GraphNode]:
    """Order nodes with Kahn's algorithm, seeding and visiting in insertion order."""
    indegree = {node_id: 0 for node_id in nodes}
    adjacency: dict[str, list[str]] = defaultdict(list)

    for edge in edges:
        adjacency[edge.from_].append(edge.to)
        indegree[edge.to] += 1

    queue = deque(node_id for node_id, degree in indegree.items() if degree == 0)
    order: list[GraphNode] = []
    while queue:
        current = queue.popleft()
        order.append(nodes[current])
        for nxt in adjacency[current]:
            indegree[nxt] -= 1
            if indegree[nxt] == 0:
                queue.append(nxt)

    if len(order) != len(nodes):
        remaining = sorted(node_id for node_id, degree in indegree.items() if degree > 0)
        raise GraphError(f"Graph contains a cycle involving: {', '.join(remaining)}")
    return order


def serialize_graph(graph: Graph) -> dict[str, Any]:
    """Return the stable on-disk form: nodes and edges sorted lexicographically by id.

    Artifact content is left out; it already lives at the node's target path.
    """
    nodes = [
        graph.nodes[node_id].model_dump(mode="json", by_alias=True, exclude_none=True, exclude={"content"})
        for node_id in sorted(graph.nodes)
    ]
    edges = [
        edge.model_dump(mode="json", by_alias=True)
        for edge in sorted(graph.edges, key=lambda edge: (edge.from_, edge.to))
    ]
    return {"nodes": nodes, "edges": edges}
