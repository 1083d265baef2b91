from __future__ import annotations

import logging
import os
from configparser import ConfigParser

NEW_CONFIG = """\
[badge]
# Desktop file name from /usr/share/applications or ~/.local/share/applications
# which is used for launching Evolution.
desktop_file = org.gnome.Evolution.desktop

[databases]
# Uncomment to read the mail cache of another home directory.
# home_directory = /home/someone
# Relative to the home directory.
mail_directory = .cache/evolution/mail
suffix = folders.db
query = SELECT unread_count FROM folders
# Shared by every database queried during one count.
timeout_seconds = 5

[watch]
debounce_ms = 1600
force_polling = false
"""


class BadgeConfig:
    """Configuration for the badge daemon. Every option has a default."""

    logger = logging.getLogger("evolved_badge.BadgeConfig")

    def __init__(self, filepath: str | None = None) -> None:
        """Load the configuration from the given file, if any."""
        self._config = ConfigParser(interpolation=None)

        if filepath is None:
            self.logger.debug("No config file given, using defaults")
            return

        success = self._config.read(filepath)

        if not success:
            raise ValueError(f"Could not read config file at {filepath}")

        self.logger.debug("Loaded config from %s", filepath)

    @property
    def desktop_file(self) -> str:
        """Return the desktop file name used for the application identity."""
        return self._config.get(
            "badge",
            "desktop_file",
            fallback="org.gnome.Evolution.desktop",
        )

    @property
    def home_directory(self) -> str | None:
        """Return the home directory override, or None for the current user."""
        return self._config.get("databases", "home_directory", fallback=None)

    @property
    def mail_directory(self) -> str:
        """Return the mail cache directory, relative to the home directory."""
        return self._config.get(
            "databases",
            "mail_directory",
            fallback=os.path.join(".cache", "evolution", "mail"),
        )

    @property
    def database_suffix(self) -> str:
        """Return the file name suffix of folder databases."""
        return self._config.get("databases", "suffix", fallback="folders.db")

    @property
    def unread_query(self) -> str:
        """Return the query yielding one unread count per folder row."""
        return self._config.get(
            "databases",
            "query",
            fallback="SELECT unread_count FROM folders",
        )

    @property
    def timeout_seconds(self) -> float:
        """Return the time budget of one aggregation across all databases."""
        return self._config.getfloat("databases", "timeout_seconds", fallback=5.0)

    @property
    def debounce_ms(self) -> int:
        """Return how long the watcher groups filesystem changes."""
        return self._config.getint("watch", "debounce_ms", fallback=1600)

    @property
    def force_polling(self) -> bool:
        """Return whether to poll instead of using OS notifications."""
        return self._config.getboolean("watch", "force_polling", fallback=False)


def write_new_config(filename: str) -> None:
    """Write a new config file if one does not exist."""
    if os.path.exists(filename):
        return

    with open(filename, "w") as config_file:
        config_file.write(NEW_CONFIG)
