from __future__ import annotations

import asyncio
import enum
import logging
import signal
from typing import TYPE_CHECKING

from .badgeconfig import BadgeConfig
from .badgecounter import UnreadCounter
from .badgeemitter import BadgeEmitter
from .badgeemitter import connect_session_bus
from .badgelocator import DatabaseLocator
from .badgelocator import DiscoveryError
from .badgewatcher import ChangeWatcher
from .badgewatcher import FileChangeSource

if TYPE_CHECKING:
    from dbus_next.aio import MessageBus


class ExitCode(enum.IntEnum):
    OK = 0
    WATCH = 1
    DISCOVERY = 2
    BUS = 3
    AGGREGATION = 4
    CONFIG = 5


class BadgeDaemon:
    """Keep the launcher badge in sync with the unread mail count."""

    logger = logging.getLogger("evolved_badge.BadgeDaemon")

    def __init__(self, config: BadgeConfig, *, desktop_file: str | None = None) -> None:
        """
        Initialize the daemon. Nothing is connected or read until run().

        Args:
            config: The configuration to use.

        Keyword Args:
            desktop_file: Overrides the desktop file name of the configuration.
        """
        self._config = config
        self._desktop_file = desktop_file or config.desktop_file

        self._shutdown_event = asyncio.Event()
        self._update_lock = asyncio.Lock()

        self._counter: UnreadCounter | None = None
        self._emitter: BadgeEmitter | None = None

    def request_shutdown(self) -> None:
        """Ask a running daemon to clear the badge and stop."""
        self.logger.info("Shutdown requested")
        self._shutdown_event.set()

    async def update_badge(self) -> int:
        """Aggregate the unread count and publish it. Returns the count."""
        if self._counter is None or self._emitter is None:
            raise RuntimeError("Daemon is not running")

        async with self._update_lock:
            count = await asyncio.to_thread(self._counter.count)
            await self._emitter.emit(count)

        return count

    async def run(self) -> int:
        """Run until a shutdown is requested. Returns the process exit code."""
        self.logger.info("Starting Evolved badge...")
        loop = asyncio.get_running_loop()

        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, self._on_signal, sig)

        try:
            return await self._run()

        finally:
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.remove_signal_handler(sig)

    def _on_signal(self, sig: signal.Signals) -> None:
        self.logger.info("Received signal %s", sig.name)
        self.request_shutdown()

    async def _run(self) -> int:
        try:
            bus = await connect_session_bus()

        except Exception as error:
            self.logger.error("Failed to connect to dbus session bus: %s", error)
            return ExitCode.BUS

        try:
            return await self._run_with_bus(bus)

        finally:
            bus.disconnect()

    async def _run_with_bus(self, bus: MessageBus) -> int:
        self._emitter = BadgeEmitter(bus, self._desktop_file)

        try:
            source = FileChangeSource(
                debounce_ms=self._config.debounce_ms,
                force_polling=self._config.force_polling,
            )

        except Exception as error:
            self.logger.error("Failed to start filesystem changes watcher: %s", error)
            return ExitCode.WATCH

        try:
            database_paths = DatabaseLocator.from_config(self._config).locate()

        except DiscoveryError as error:
            self.logger.error("Failed to get mail database paths: %s", error)
            return ExitCode.DISCOVERY

        for path in database_paths:
            self.logger.info("Watching for filesystem changes in %s", path)
            source.add(path)

        self._counter = UnreadCounter.from_config(database_paths, self._config)

        watcher = ChangeWatcher(source, self.update_badge)
        source.start()
        watcher_task = asyncio.create_task(watcher.run(), name="badge_watcher")

        try:
            await self.update_badge()

        except Exception:
            self.logger.exception("Failed to get initial unread count")
            source.close()
            await watcher_task
            await source.wait_closed()
            return ExitCode.AGGREGATION

        self.logger.info("Evolved badge started.")

        await self._shutdown_event.wait()

        self.logger.info("Shutting down Evolved badge...")
        source.close()
        await watcher_task
        await source.wait_closed()

        async with self._update_lock:
            await self._emitter.emit(0)

        self.logger.info("Evolved badge stopped.")

        return ExitCode.OK
