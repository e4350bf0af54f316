"""Debounced, filtered filesystem change aggregation.

The watcher is a small state machine::

    IDLE --event--> BUFFERING --quiet for debounce window--> FLUSHING --> IDLE
    any state --close()--> CLOSED

Raw events come from an async event source (``watchfiles`` by default, or any
async iterable of ``WatchEvent``). Each event's paths are filtered against the
ignore list before buffering; an event left with no paths is dropped. Every
qualifying event restarts the debounce timer, so a steady stream of changes
produces one callback once activity pauses. When the source ends on its own,
anything still buffered is flushed once. After ``close()`` no callback fires.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, AsyncIterable, AsyncIterator, Awaitable, Callable, Sequence, Union

from watchfiles import Change, awatch

from .state_store import STATE_DIR
from .utils import project_relative, to_posix

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_MS = 150

IgnorePattern = Union[str, re.Pattern[str]]


class WatcherState(str, Enum):
    IDLE = "idle"
    BUFFERING = "buffering"
    FLUSHING = "flushing"
    CLOSED = "closed"


@dataclass(frozen=True)
class WatchEvent:
    kind: str
    paths: tuple[str, ...]


BatchCallback = Callable[[list[WatchEvent]], Union[Awaitable[None], None]]
ErrorCallback = Callable[[BaseException], None]

_CHANGE_KINDS = {
    Change.added: "create",
    Change.modified: "modify",
    Change.deleted: "remove",
}


async def watchfiles_source(
    root: Path,
    *,
    stop_event: asyncio.Event,
    force_polling: bool | None = None,
) -> AsyncIterator[WatchEvent]:
    """Yield one ``WatchEvent`` per change under *root*, with paths relative to *root*."""
    async for changes in awatch(
        root,
        watch_filter=None,
        stop_event=stop_event,
        recursive=True,
        force_polling=force_polling,
    ):
        for change, path in sorted(changes, key=lambda item: (item[1], item[0].value)):
            yield WatchEvent(kind=_CHANGE_KINDS.get(change, "any"), paths=(project_relative(root, path),))


def state_dir_pattern(state_dir: str) -> re.Pattern[str]:
    """Match any path with *state_dir* as one of its segments."""
    return re.compile(rf"(^|/){re.escape(to_posix(state_dir).strip('/'))}(/|$)")


class Watcher:
    """Debounced watch loop over a recursive event source.

    Call ``start()`` from a running event loop; ``close()`` stops the source
    and any pending debounce timer.
    """

    def __init__(
        self,
        root: Path,
        on_batch: BatchCallback,
        *,
        debounce_ms: int = DEFAULT_DEBOUNCE_MS,
        ignore: Sequence[IgnorePattern] = (),
        state_dir: str = STATE_DIR,
        source: AsyncIterable[WatchEvent] | None = None,
        on_error: ErrorCallback | None = None,
        force_polling: bool | None = None,
    ) -> None:
        if debounce_ms < 0:
            raise ValueError(f"debounce_ms must be >= 0, got: {debounce_ms}")
        self.root = root
        self.debounce_ms = debounce_ms
        self.ignore: tuple[IgnorePattern, ...] = (state_dir_pattern(state_dir), *ignore)
        self._on_batch = on_batch
        self._on_error = on_error
        self._source = source
        self._force_polling = force_polling
        self._state = WatcherState.IDLE
        self._pending: list[WatchEvent] = []
        self._timer: asyncio.TimerHandle | None = None
        self._flush_tasks: set[asyncio.Task[None]] = set()
        self._flush_lock: asyncio.Lock | None = None
        self._stop_event: asyncio.Event | None = None
        self._task: asyncio.Task[None] | None = None

    @property
    def state(self) -> WatcherState:
        return self._state

    @property
    def closed(self) -> bool:
        return self._state is WatcherState.CLOSED

    def start(self) -> Watcher:
        if self._task is not None:
            raise RuntimeError("Watcher already started")
        if self.closed:
            raise RuntimeError("Watcher is closed")
        self._flush_lock = asyncio.Lock()
        self._stop_event = asyncio.Event()
        source = self._source
        if source is None:
            source = watchfiles_source(self.root, stop_event=self._stop_event, force_polling=self._force_polling)
        self._task = asyncio.create_task(self._consume(source))
        return self

    async def wait(self) -> None:
        """Wait until the source has ended (or the watcher was closed)."""
        if self._task is None:
            return
        try:
            await self._task
        except asyncio.CancelledError:
            if not self.closed:
                raise

    def close(self) -> None:
        if self.closed:
            return
        self._state = WatcherState.CLOSED
        self._cancel_timer()
        self._pending.clear()
        if self._stop_event is not None:
            self._stop_event.set()
        if self._task is not None and not self._task.done():
            self._task.cancel()
        logger.debug("Watcher on %s closed", self.root)

    # ------------------------------------------------------------------
    # Filtering
    # ------------------------------------------------------------------

    def is_ignored(self, path: str) -> bool:
        normalized = to_posix(path)
        for pattern in self.ignore:
            if isinstance(pattern, str):
                if pattern in normalized:
                    return True
            elif pattern.search(normalized):
                return True
        return False

    def filter_event(self, event: WatchEvent) -> WatchEvent | None:
        paths = tuple(path for path in event.paths if not self.is_ignored(path))
        if not paths:
            return None
        return WatchEvent(kind=event.kind, paths=paths)

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    async def _consume(self, source: AsyncIterable[WatchEvent]) -> None:
        try:
            async for raw in source:
                if self.closed:
                    return
                self._receive(raw)
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001
            self._report(exc, "Watch event source failed")

        if self.closed:
            return
        self._cancel_timer()
        while self._flush_tasks:
            await asyncio.gather(*self._flush_tasks, return_exceptions=True)
        if self._pending:
            await self._flush()
        self._state = WatcherState.CLOSED

    def _receive(self, event: WatchEvent) -> None:
        filtered = self.filter_event(event)
        if filtered is None:
            return
        self._pending.append(filtered)
        if self._state is not WatcherState.FLUSHING:
            self._state = WatcherState.BUFFERING
        self._restart_timer()

    def _restart_timer(self) -> None:
        self._cancel_timer()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self.debounce_ms / 1000, self._on_timer)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_timer(self) -> None:
        self._timer = None
        if self.closed:
            return
        task = asyncio.ensure_future(self._flush())
        self._flush_tasks.add(task)
        task.add_done_callback(self._flush_tasks.discard)

    async def _flush(self) -> None:
        assert self._flush_lock is not None
        async with self._flush_lock:
            if self.closed or not self._pending:
                return
            batch, self._pending = self._pending, []
            self._state = WatcherState.FLUSHING
            logger.debug("Flushing %d watch events", len(batch))
            try:
                result = self._on_batch(batch)
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception as exc:  # noqa: BLE001
                self._report(exc, "Watch callback failed")
            finally:
                if not self.closed:
                    self._state = WatcherState.BUFFERING if self._pending else WatcherState.IDLE

    def _report(self, exc: BaseException, message: str) -> None:
        if self._on_error is not None:
            self._on_error(exc)
            return
        logger.error("%s: %s", message, exc, exc_info=exc)


def watch_project(root: Path, on_batch: BatchCallback, **options: Any) -> Watcher:
    """Create and start a ``Watcher`` on *root* from within a running event loop."""
    return Watcher(root, on_batch, **options).start()
