from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from pathlib import Path
from unittest.mock import AsyncMock
from unittest.mock import patch

import pytest
from pytest import LogCaptureFixture
from watchfiles import Change

from evolved_badge.badgemodel import ChangeEvent
from evolved_badge.badgemodel import WatchFailure
from evolved_badge.badgewatcher import ChangeWatcher
from evolved_badge.badgewatcher import FileChangeSource
from evolved_badge.badgewatcher import WatcherState
from evolved_badge.badgewatcher import WatchItem


async def _stream(*items: WatchItem) -> AsyncIterator[WatchItem]:
    for item in items:
        yield item


async def _drain(source: FileChangeSource) -> list[WatchItem]:
    items = [item async for item in source]
    await source.wait_closed()
    return items


@pytest.mark.asyncio
async def test_watcher_updates_once_per_event() -> None:
    on_change = AsyncMock(return_value=5)
    source = _stream(
        ChangeEvent("/a/folders.db", "modified"),
        ChangeEvent("/b/folders.db", "modified"),
    )
    watcher = ChangeWatcher(source, on_change)

    await watcher.run()

    assert on_change.await_count == 2
    assert watcher.state is WatcherState.STOPPED


@pytest.mark.asyncio
async def test_watcher_logs_failures_and_keeps_running(
    caplog: LogCaptureFixture,
) -> None:
    on_change = AsyncMock(return_value=1)
    source = _stream(
        WatchFailure(OSError("queue overflow")),
        ChangeEvent("/a/folders.db", "modified"),
    )
    watcher = ChangeWatcher(source, on_change)

    await watcher.run()

    assert "queue overflow" in caplog.text
    assert on_change.await_count == 1


@pytest.mark.asyncio
async def test_watcher_survives_failed_update(caplog: LogCaptureFixture) -> None:
    on_change = AsyncMock(side_effect=[RuntimeError("boom"), 3])
    source = _stream(
        ChangeEvent("/a/folders.db", "modified"),
        ChangeEvent("/a/folders.db", "modified"),
    )
    watcher = ChangeWatcher(source, on_change)

    await watcher.run()

    assert on_change.await_count == 2
    assert "boom" in caplog.text


@pytest.mark.asyncio
async def test_watcher_logs_new_count(caplog: LogCaptureFixture) -> None:
    caplog.set_level("INFO")
    watcher = ChangeWatcher(
        _stream(ChangeEvent("/a/folders.db", "modified")),
        AsyncMock(return_value=42),
    )

    await watcher.run()

    assert "Got unread count: 42" in caplog.text


@pytest.mark.asyncio
async def test_watcher_processes_events_sequentially() -> None:
    running = 0
    overlaps = 0

    async def on_change() -> int:
        nonlocal running, overlaps
        running += 1
        overlaps += running > 1
        await asyncio.sleep(0.01)
        running -= 1
        return 0

    events = [ChangeEvent(f"/{idx}/folders.db", "modified") for idx in range(5)]
    watcher = ChangeWatcher(_stream(*events), on_change)

    await watcher.run()

    assert overlaps == 0


@pytest.mark.asyncio
async def test_watcher_state_running_until_source_closes() -> None:
    source = FileChangeSource()
    watcher = ChangeWatcher(source, AsyncMock(return_value=0))

    assert watcher.state is WatcherState.STOPPED

    source.start()
    task = asyncio.create_task(watcher.run())
    await asyncio.sleep(0)

    assert watcher.state is WatcherState.RUNNING

    source.close()
    await asyncio.wait_for(task, timeout=5)

    assert watcher.state is WatcherState.STOPPED


@pytest.mark.asyncio
async def test_source_add_refuses_missing_path(
    tmp_path: Path,
    caplog: LogCaptureFixture,
) -> None:
    existing = tmp_path / "folders.db"
    existing.touch()
    source = FileChangeSource()

    assert source.add(str(tmp_path / "missing" / "folders.db")) is False
    assert source.add(str(existing)) is True
    assert source.paths == [str(existing)]
    assert "Cannot watch" in caplog.text


@pytest.mark.asyncio
async def test_source_add_after_start_raises(tmp_path: Path) -> None:
    source = FileChangeSource()
    source.start()

    with pytest.raises(RuntimeError):
        source.add(str(tmp_path))

    source.close()
    await asyncio.wait_for(_drain(source), timeout=5)


def test_source_rejects_negative_debounce() -> None:
    with pytest.raises(ValueError):
        FileChangeSource(debounce_ms=-1)


@pytest.mark.asyncio
async def test_source_close_before_start_ends_stream() -> None:
    source = FileChangeSource()

    source.close()

    assert await asyncio.wait_for(_drain(source), timeout=5) == []


@pytest.mark.asyncio
async def test_source_stays_closed() -> None:
    source = FileChangeSource()
    source.start()
    source.close()

    assert await asyncio.wait_for(_drain(source), timeout=5) == []
    assert await asyncio.wait_for(_drain(source), timeout=5) == []


@pytest.mark.asyncio
async def test_source_delivers_file_changes(tmp_path: Path) -> None:
    path = tmp_path / "folders.db"
    path.write_bytes(b"before")
    source = FileChangeSource(debounce_ms=50, force_polling=True)
    source.add(str(path))
    source.start()

    async def first_item() -> WatchItem:
        async for item in source:
            return item
        raise AssertionError("stream closed without events")

    # Give the watcher a moment to take its initial snapshot
    await asyncio.sleep(0.5)
    path.write_bytes(b"after, and longer")
    item = await asyncio.wait_for(first_item(), timeout=10)

    source.close()
    await asyncio.wait_for(_drain(source), timeout=10)

    assert isinstance(item, ChangeEvent)
    assert Path(item.path).name == "folders.db"
    assert item.operation in ("modified", "added")


class FakeAwatch:
    """Stand in for watchfiles.awatch, one prepared outcome per call."""

    def __init__(self, *outcomes: Exception | list[set[tuple[Change, str]]]) -> None:
        self.outcomes = list(outcomes)
        self.calls: list[tuple[str, ...]] = []

    def __call__(
        self,
        *paths: str,
        stop_event: asyncio.Event,
        **kwargs: object,
    ) -> AsyncIterator[set[tuple[Change, str]]]:
        self.calls.append(paths)
        outcome = self.outcomes.pop(0) if self.outcomes else []
        return self._run(outcome, stop_event)

    async def _run(
        self,
        outcome: Exception | list[set[tuple[Change, str]]],
        stop_event: asyncio.Event,
    ) -> AsyncIterator[set[tuple[Change, str]]]:
        if isinstance(outcome, Exception):
            raise outcome

        for batch in outcome:
            yield batch

        await stop_event.wait()


async def _take(source: FileChangeSource, count: int) -> list[WatchItem]:
    items: list[WatchItem] = []
    async for item in source:
        items.append(item)
        if len(items) == count:
            break
    return items


@pytest.mark.asyncio
async def test_source_retries_after_watch_mechanism_failure(tmp_path: Path) -> None:
    path = tmp_path / "folders.db"
    path.touch()
    fake_awatch = FakeAwatch(
        OSError("inotify watch limit reached"),
        [{(Change.modified, str(path))}],
    )
    source = FileChangeSource(retry_seconds=0.01)
    source.add(str(path))

    with patch("evolved_badge.badgewatcher.watchfiles.awatch", fake_awatch):
        source.start()
        items = await asyncio.wait_for(_take(source, 2), timeout=5)
        source.close()
        await asyncio.wait_for(_drain(source), timeout=5)

    assert isinstance(items[0], WatchFailure)
    assert "inotify" in str(items[0].error)
    assert items[1] == ChangeEvent(str(path), "modified")
    assert fake_awatch.calls == [(str(path),), (str(path),)]


@pytest.mark.asyncio
async def test_source_drops_vanished_path_and_keeps_watching_others(
    tmp_path: Path,
    caplog: LogCaptureFixture,
) -> None:
    kept = tmp_path / "a" / "folders.db"
    vanished = tmp_path / "b" / "folders.db"
    for path in (kept, vanished):
        path.parent.mkdir()
        path.touch()
    fake_awatch = FakeAwatch(
        FileNotFoundError("No path was found."),
        [{(Change.modified, str(kept))}],
    )
    source = FileChangeSource(retry_seconds=60)
    source.add(str(kept))
    source.add(str(vanished))
    vanished.unlink()

    with patch("evolved_badge.badgewatcher.watchfiles.awatch", fake_awatch):
        source.start()
        items = await asyncio.wait_for(_take(source, 2), timeout=5)
        source.close()
        await asyncio.wait_for(_drain(source), timeout=5)

    assert isinstance(items[0], WatchFailure)
    assert items[1] == ChangeEvent(str(kept), "modified")
    assert fake_awatch.calls[-1] == (str(kept),)
    assert source.paths == [str(kept)]
    assert "Stopped watching" in caplog.text


@pytest.mark.asyncio
async def test_source_watches_remaining_file_after_one_is_deleted(
    tmp_path: Path,
) -> None:
    kept = tmp_path / "a" / "folders.db"
    deleted = tmp_path / "b" / "folders.db"
    for path in (kept, deleted):
        path.parent.mkdir()
        path.write_bytes(b"before")
    source = FileChangeSource(debounce_ms=50, force_polling=True)
    source.add(str(kept))
    source.add(str(deleted))
    deleted.unlink()
    source.start()

    async def keep_writing() -> None:
        size = 0
        while True:
            size += 1
            kept.write_bytes(b"x" * size)
            await asyncio.sleep(0.2)

    async def first_change() -> ChangeEvent:
        async for item in source:
            if isinstance(item, ChangeEvent):
                return item
        raise AssertionError("stream closed without changes")

    writer = asyncio.create_task(keep_writing())
    try:
        event = await asyncio.wait_for(first_change(), timeout=10)

    finally:
        writer.cancel()
        source.close()
        await asyncio.wait_for(_drain(source), timeout=10)

    assert Path(event.path).parent.name == "a"
    assert source.paths == [str(kept)]


@pytest.mark.asyncio
async def test_close_discards_queued_changes(tmp_path: Path) -> None:
    path = tmp_path / "folders.db"
    path.touch()
    fake_awatch = FakeAwatch([{(Change.modified, str(path))} for _ in range(10)])
    source = FileChangeSource()
    source.add(str(path))
    release = asyncio.Event()
    cycles = 0

    async def on_change() -> int:
        nonlocal cycles
        cycles += 1
        await release.wait()
        return 0

    watcher = ChangeWatcher(source, on_change)

    with patch("evolved_badge.badgewatcher.watchfiles.awatch", fake_awatch):
        source.start()
        task = asyncio.create_task(watcher.run())
        while cycles == 0:
            await asyncio.sleep(0.01)

        source.close()
        release.set()
        await asyncio.wait_for(task, timeout=5)

    assert cycles == 1
    assert watcher.state is WatcherState.STOPPED
    assert await asyncio.wait_for(_drain(source), timeout=5) == []


@pytest.mark.parametrize(
    ("owner", "name"),
    (
        (FileChangeSource, "evolved_badge.FileChangeSource"),
        (ChangeWatcher, "evolved_badge.ChangeWatcher"),
    ),
)
def test_logger_names(owner: type, name: str) -> None:
    assert owner.logger.name == name
