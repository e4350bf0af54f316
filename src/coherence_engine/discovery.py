"""Discovery input contract: pre-resolved entity and artifact descriptors.

The engine never imports user code. A separate loader produces the list of
``EntityInput`` models; ``load_discovery_file`` is the JSON-document loader
used by the command line entry point.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Callable, Iterable, Sequence

from pydantic import ValidationError

from .graph import artifact_node_id
from .models import ArtifactDescriptor, EntityInput

logger = logging.getLogger(__name__)

Discover = Callable[[Path], Sequence[EntityInput]]


def load_discovery_file(path: Path) -> list[EntityInput]:
    """Read ``{"entities": [...]}`` from *path* into validated entity inputs.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If the document is not valid JSON or fails validation.
    """
    if not path.is_file():
        raise FileNotFoundError(f"Discovery file does not exist: {path}")
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ValueError(f"discovery file at {path} is not valid JSON: {exc}") from exc
    return parse_discovery(payload, origin=str(path))


def parse_discovery(payload: Any, *, origin: str = "<discovery>") -> list[EntityInput]:
    if not isinstance(payload, dict) or not isinstance(payload.get("entities"), list):
        raise ValueError(f"{origin} must contain an object with an 'entities' list")
    inputs: list[EntityInput] = []
    for index, raw in enumerate(payload["entities"]):
        try:
            inputs.append(EntityInput.model_validate(raw))
        except ValidationError as exc:
            raise ValueError(f"{origin} entities[{index}] failed validation: {exc}") from exc
    logger.debug("Loaded %d entities from %s", len(inputs), origin)
    return sort_entity_inputs(inputs)


def sort_entity_inputs(inputs: Iterable[EntityInput]) -> list[EntityInput]:
    return sorted(inputs, key=lambda item: (item.source_path, item.entity_name))


def _merge_dependencies(existing: Iterable[str] | None, previous_stage: Iterable[str]) -> list[str]:
    merged: dict[str, None] = {}
    for value in existing or ():
        merged[value] = None
    for value in previous_stage:
        merged[value] = None
    return list(merged)


def chain_artifact_stages(entity_name: str, stages: Iterable[Sequence[ArtifactDescriptor]]) -> list[ArtifactDescriptor]:
    """Flatten artifact stages so each stage depends on the previous non-empty one.

    Validation schemas come before tables, tables before docs, docs before
    tests: every artifact of a stage gets the ids of the preceding stage's
    artifacts merged into its ``depends_on``.
    """
    descriptors: list[ArtifactDescriptor] = []
    previous_ids: list[str] = []
    for stage in stages:
        if not stage:
            continue
        stage_ids: list[str] = []
        for artifact in stage:
            stage_ids.append(artifact_node_id(artifact.kind, entity_name, artifact.path))
            merged = _merge_dependencies(artifact.depends_on, previous_ids)
            descriptors.append(artifact.model_copy(update={"depends_on": merged or None}))
        previous_ids = stage_ids
    return descriptors
