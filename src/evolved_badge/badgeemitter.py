from __future__ import annotations

import logging

from dbus_next import BusType
from dbus_next import Message
from dbus_next.aio import MessageBus

from .badgemodel import BadgeSignal

LAUNCHER_ENTRY_PATH = "/"
LAUNCHER_ENTRY_INTERFACE = "com.canonical.Unity.LauncherEntry"
LAUNCHER_ENTRY_MEMBER = "Update"
LAUNCHER_ENTRY_SIGNATURE = "sa{sv}"


async def connect_session_bus() -> MessageBus:
    """Connect to the session bus of the current user."""
    return await MessageBus(bus_type=BusType.SESSION).connect()


class BadgeEmitter:
    """Publish the unread count as a launcher entry badge."""

    logger = logging.getLogger("evolved_badge.BadgeEmitter")

    def __init__(self, bus: MessageBus, desktop_file: str) -> None:
        """
        Initialize the emitter.

        Args:
            bus: A connected message bus, shared with the rest of the daemon.
            desktop_file: The desktop entry name identifying the application
                whose launcher shows the badge.
        """
        self._bus = bus
        self._desktop_file = desktop_file

    @property
    def app_uri(self) -> str:
        """Return the application identity the badge is addressed to."""
        return f"application://{self._desktop_file}"

    async def emit(self, count: int) -> bool:
        """
        Broadcast the given unread count. Failures are logged, never raised.

        Returns:
            True if the signal was handed to the bus.
        """
        signal = BadgeSignal.from_count(self.app_uri, count)

        if not self._bus.connected:
            self.logger.error("Failed to emit badge: bus is disconnected")
            return False

        message = Message.new_signal(
            LAUNCHER_ENTRY_PATH,
            LAUNCHER_ENTRY_INTERFACE,
            LAUNCHER_ENTRY_MEMBER,
            LAUNCHER_ENTRY_SIGNATURE,
            [signal.app_uri, signal.as_properties()],
        )

        try:
            await self._bus.send(message)

        except Exception as error:
            self.logger.error("Failed to emit badge via dbus: %s", error)
            return False

        self.logger.debug(
            "Emitted badge count=%s visible=%s to %s",
            signal.count,
            signal.visible,
            signal.app_uri,
        )
        return True
