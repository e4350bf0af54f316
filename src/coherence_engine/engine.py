from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterable, Awaitable, Callable, Iterable, Sequence, Union

from .applier import StepObserver, apply_plan
from .discovery import Discover
from .errors import PlanStepError
from .graph import build_graph
from .models import EngineState, EntityInput, PlanResult
from .planner import plan_graph
from .settings import EngineSettings
from .state_store import STATE_DIR, StateStore
from .watch import DEFAULT_DEBOUNCE_MS, ErrorCallback, IgnorePattern, WatchEvent, Watcher

logger = logging.getLogger(__name__)

CycleRunner = Callable[[frozenset[str]], Union[Awaitable[None], None]]


@dataclass(frozen=True)
class CycleReport:
    plan: PlanResult
    state: EngineState
    applied: bool

    @property
    def status(self) -> str:
        """``pending`` when artifacts drifted and were not applied, otherwise ``clean``."""
        if self.plan.summary.changed and not self.applied:
            return "pending"
        return "clean"


class CoherenceEngine:
    """Runs build graph → read state → plan → apply → write state for one project root."""

    def __init__(self, project_root: Path, *, tool_version: str, state_dir: str = STATE_DIR) -> None:
        self.project_root = project_root
        self.tool_version = tool_version
        self.state_dir = state_dir
        self.store = StateStore(project_root, state_dir=state_dir)

    @classmethod
    def from_settings(cls, settings: EngineSettings, *, project_root: Path | None = None) -> CoherenceEngine:
        return cls(
            project_root or settings.project_root_path,
            tool_version=settings.effective_tool_version,
            state_dir=settings.state_dir,
        )

    def check(self, inputs: Sequence[EntityInput], *, include_unchanged: bool = False) -> CycleReport:
        """Plan without touching artifacts. The graph document is still refreshed."""
        graph = build_graph(inputs, tool_version=self.tool_version)
        self.store.write_graph(graph)
        state = self.store.read_state()
        plan = plan_graph(graph, state, include_unchanged=include_unchanged)
        return CycleReport(plan=plan, state=state, applied=False)

    def run_cycle(self, inputs: Sequence[EntityInput], *, on_step: StepObserver | None = None) -> CycleReport:
        """Plan and, when anything changed, apply and persist the new state.

        If a step fails with ``PlanStepError``, the state folded from the
        steps that completed is persisted before the error propagates; the
        next cycle re-plans against it.
        """
        report = self.check(inputs)
        if not report.plan.summary.changed:
            return report
        try:
            next_state = apply_plan(report.plan, report.state, project_dir=self.project_root, on_step=on_step)
        except PlanStepError as exc:
            self.store.write_state(exc.state)
            raise
        self.store.write_state(next_state)
        logger.info("Applied %d steps under %s", report.plan.summary.total, self.project_root)
        return CycleReport(plan=report.plan, state=next_state, applied=True)

    def watch(
        self,
        discover: Discover,
        *,
        debounce_ms: int = DEFAULT_DEBOUNCE_MS,
        ignore: Sequence[IgnorePattern] = (),
        source: AsyncIterable[WatchEvent] | None = None,
        on_cycle: Callable[[CycleReport, frozenset[str]], None] | None = None,
        on_error: ErrorCallback | None = None,
        force_polling: bool | None = None,
    ) -> WatchSession:
        """Start a watcher whose batches trigger cycles through a single-slot queue.

        Must be called from a running event loop. Discovery and the cycle run in
        a worker thread so the watcher keeps buffering events meanwhile.
        """

        def cycle() -> CycleReport:
            return self.run_cycle(discover(self.project_root))

        async def run(paths: frozenset[str]) -> None:
            report = await asyncio.to_thread(cycle)
            if on_cycle is not None:
                on_cycle(report, paths)

        queue = CycleQueue(run, on_error=on_error)

        def on_batch(events: list[WatchEvent]) -> None:
            queue.trigger(path for event in events for path in event.paths)

        watcher = Watcher(
            self.project_root,
            on_batch,
            debounce_ms=debounce_ms,
            ignore=ignore,
            state_dir=self.state_dir,
            source=source,
            on_error=on_error,
            force_polling=force_polling,
        )
        return WatchSession(watcher=watcher.start(), queue=queue)


class CycleQueue:
    """Single-slot chained queue: at most one cycle runs at a time.

    Triggers that arrive while a cycle is running are merged, so any burst
    collapses into exactly one follow-up cycle over the union of their paths.
    """

    def __init__(self, run: CycleRunner, *, on_error: ErrorCallback | None = None) -> None:
        self._run = run
        self._on_error = on_error
        self._pending_paths: set[str] = set()
        self._has_pending = False
        self._task: asyncio.Task[None] | None = None
        self.cycles_run = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def trigger(self, paths: Iterable[str] = ()) -> asyncio.Task[None]:
        self._pending_paths.update(paths)
        self._has_pending = True
        if not self.running:
            self._task = asyncio.create_task(self._drain())
        assert self._task is not None
        return self._task

    async def idle(self) -> None:
        while self.running:
            assert self._task is not None
            await self._task

    async def _drain(self) -> None:
        while self._has_pending:
            paths = frozenset(self._pending_paths)
            self._pending_paths.clear()
            self._has_pending = False
            self.cycles_run += 1
            try:
                result = self._run(paths)
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception as exc:  # noqa: BLE001
                if self._on_error is not None:
                    self._on_error(exc)
                else:
                    logger.error("Coherence cycle failed: %s", exc, exc_info=exc)


@dataclass
class WatchSession:
    watcher: Watcher
    queue: CycleQueue

    def close(self) -> None:
        self.watcher.close()

    async def wait(self) -> None:
        await self.watcher.wait()
        await self.queue.idle()
