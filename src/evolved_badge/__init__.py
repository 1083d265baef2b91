from __future__ import annotations

from .badgeconfig import BadgeConfig
from .badgedaemon import BadgeDaemon

__all__ = [
    "BadgeConfig",
    "BadgeDaemon",
]
