from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import EngineState, PlanStep


class CoherenceError(Exception):
    """Base class for engine failures."""


class GraphError(CoherenceError, ValueError):
    """Unknown edge endpoint, duplicate node id, or a dependency cycle."""


class PlanStepError(CoherenceError, ValueError):
    """A plan step cannot be executed.

    ``state`` holds the engine state folded from every step that completed
    before this one, so the caller can persist progress and retry.
    """

    def __init__(self, message: str, *, step: PlanStep, state: EngineState) -> None:
        super().__init__(message)
        self.step = step
        self.state = state
