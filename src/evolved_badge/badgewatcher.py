from __future__ import annotations

import asyncio
import enum
import logging
import os
from collections.abc import AsyncIterator
from collections.abc import Awaitable
from collections.abc import Callable
from typing import Union

import watchfiles

from .badgemodel import ChangeEvent
from .badgemodel import WatchFailure

WatchItem = Union[ChangeEvent, WatchFailure]


class FileChangeSource:
    """
    Deliver filesystem changes of registered paths as a single stream.

    Changes and watch mechanism errors share one queue, so a consumer sees
    them in arrival order. Changes that arrive while the consumer is busy
    wait in the queue. When the watch mechanism fails, paths that can no
    longer be read are dropped and the remaining ones are watched again.
    The stream ends as soon as close() has been called; changes still
    queued at that point are discarded.
    """

    logger = logging.getLogger("evolved_badge.FileChangeSource")

    def __init__(
        self,
        *,
        debounce_ms: int = 1600,
        force_polling: bool = False,
        retry_seconds: float = 5.0,
    ) -> None:
        if debounce_ms < 0:
            raise ValueError(f"debounce_ms must not be negative: {debounce_ms}")

        self._debounce_ms = debounce_ms
        self._force_polling = force_polling
        self._retry_seconds = retry_seconds
        self._paths: list[str] = []
        self._queue: asyncio.Queue[WatchItem | None] = asyncio.Queue()
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task[None] | None = None

    @property
    def paths(self) -> list[str]:
        """Return the paths currently watched."""
        return list(self._paths)

    def add(self, path: str) -> bool:
        """Register a path for change notification. Must be called before start()."""
        if self._task is not None:
            raise RuntimeError("Cannot add paths after the source has started")

        if not os.path.exists(path):
            self.logger.warning("Cannot watch '%s': no such file", path)
            return False

        self._paths.append(path)
        return True

    def start(self) -> None:
        """Start watching the registered paths."""
        if self._task is not None:
            return

        self._task = asyncio.create_task(self._pump(), name="badge_file_changes")

    def close(self) -> None:
        """Stop watching and end the stream, dropping undelivered changes."""
        self._stop_event.set()

        # Wake a reader blocked on a source that never started
        if self._task is None:
            self._queue.put_nowait(None)

    async def wait_closed(self) -> None:
        """Wait until the watch mechanism has released its watches."""
        if self._task is not None:
            await self._task

    async def _pump(self) -> None:
        """Move watchfiles batches onto the queue until stopped."""
        try:
            while not self._stop_event.is_set():
                if not self._paths:
                    await self._stop_event.wait()
                    break

                await self._watch(list(self._paths))

        finally:
            self._queue.put_nowait(None)

    async def _watch(self, paths: list[str]) -> None:
        """Watch paths until stopped or until the watch mechanism fails."""
        try:
            async for changes in watchfiles.awatch(
                *paths,
                watch_filter=None,
                stop_event=self._stop_event,
                debounce=self._debounce_ms,
                force_polling=self._force_polling,
            ):
                for change, path in sorted(changes):
                    self._queue.put_nowait(ChangeEvent(path, change.name))

            return

        except Exception as error:
            self._queue.put_nowait(WatchFailure(error))

        if not self._drop_unreadable_paths():
            await self._wait_before_retry()

    def _drop_unreadable_paths(self) -> bool:
        """Stop watching paths that vanished or became unreadable."""
        readable = [path for path in self._paths if os.access(path, os.R_OK)]

        for path in self._paths:
            if path not in readable:
                self.logger.warning("Stopped watching '%s': no longer readable", path)

        dropped = len(readable) != len(self._paths)
        self._paths = readable
        return dropped

    async def _wait_before_retry(self) -> None:
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=self._retry_seconds)

        except asyncio.TimeoutError:
            self.logger.debug("Restarting filesystem watches on %s", self._paths)

    def __aiter__(self) -> AsyncIterator[WatchItem]:
        return self

    async def __anext__(self) -> WatchItem:
        if self._stop_event.is_set():
            raise StopAsyncIteration

        item = await self._queue.get()

        if item is None:
            # Keep the stream closed for later readers
            self._queue.put_nowait(None)
            raise StopAsyncIteration

        if self._stop_event.is_set():
            raise StopAsyncIteration

        return item


class WatcherState(enum.Enum):
    RUNNING = "running"
    STOPPED = "stopped"


class ChangeWatcher:
    """Recompute and publish the badge whenever a watched database changes."""

    logger = logging.getLogger("evolved_badge.ChangeWatcher")

    def __init__(
        self,
        source: AsyncIterator[WatchItem],
        on_change: Callable[[], Awaitable[int]],
    ) -> None:
        """
        Initialize the watcher.

        Args:
            source: A stream of changes and watch failures.
            on_change: Aggregates and publishes, returning the new count.
        """
        self._source = source
        self._on_change = on_change
        self._state = WatcherState.STOPPED

    @property
    def state(self) -> WatcherState:
        """Return the current state of the watcher."""
        return self._state

    async def run(self) -> None:
        """Consume the source until it closes. This is blocking."""
        self._state = WatcherState.RUNNING
        self.logger.debug("Starting filesystem watcher...")

        try:
            async for item in self._source:
                if isinstance(item, WatchFailure):
                    self.logger.error("Got error from filesystem watcher: %s", item.error)
                    continue

                await self._handle_change(item)

        finally:
            self._state = WatcherState.STOPPED
            self.logger.debug("Filesystem watcher stopped")

    async def _handle_change(self, event: ChangeEvent) -> None:
        """Run one full aggregate and publish cycle for a change."""
        self.logger.debug("Got filesystem event %s on %s", event.operation, event.path)

        try:
            count = await self._on_change()

        except Exception:
            self.logger.exception("Failed to update unread count after %s", event.path)
            return

        self.logger.info("Got unread count: %s", count)
