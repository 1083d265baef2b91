from __future__ import annotations

import dataclasses

from dbus_next import Variant

# Largest value the "u" signature can carry
MAX_BADGE_COUNT = 2**32 - 1


@dataclasses.dataclass(frozen=True)
class ChangeEvent:
    """A watched path was touched."""

    path: str
    operation: str


@dataclasses.dataclass(frozen=True)
class WatchFailure:
    """An error reported by the watch mechanism."""

    error: BaseException


@dataclasses.dataclass(frozen=True)
class BadgeSignal:
    """The launcher entry update sent on the session bus."""

    app_uri: str
    count: int
    visible: bool

    @classmethod
    def from_count(cls, app_uri: str, count: int) -> BadgeSignal:
        """Build a signal for the given unread count, visible only when non-zero."""
        count = min(max(count, 0), MAX_BADGE_COUNT)
        return cls(app_uri=app_uri, count=count, visible=count > 0)

    def as_properties(self) -> dict[str, Variant]:
        """Return the a{sv} payload of the LauncherEntry Update signal."""
        return {
            "count": Variant("u", self.count),
            "count-visible": Variant("b", self.visible),
        }
