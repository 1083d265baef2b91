from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from typing import Protocol

    class _LocatorConfig(Protocol):
        @property
        def home_directory(self) -> str | None:
            ...

        @property
        def mail_directory(self) -> str:
            ...

        @property
        def database_suffix(self) -> str:
            ...


class DiscoveryError(Exception):
    """The mail cache directory could not be traversed."""


class DatabaseLocator:
    """Find the per-folder databases in the mail client's cache directory."""

    logger = logging.getLogger("evolved_badge.DatabaseLocator")

    def __init__(
        self,
        home_directory: str | None = None,
        *,
        mail_directory: str = os.path.join(".cache", "evolution", "mail"),
        suffix: str = "folders.db",
    ) -> None:
        """
        Initialize a new DatabaseLocator.

        Args:
            home_directory: The home directory holding the mail cache. Defaults
                to the home directory of the current user.

        Keyword Args:
            mail_directory: The mail cache directory, relative to the home
                directory.
            suffix: Files whose name ends with this are folder databases.
        """
        self._home_directory = home_directory
        self._mail_directory = mail_directory
        self._suffix = suffix

    @classmethod
    def from_config(cls, config: _LocatorConfig) -> DatabaseLocator:
        """Build a DatabaseLocator from the given configuration."""
        return cls(
            config.home_directory,
            mail_directory=config.mail_directory,
            suffix=config.database_suffix,
        )

    def locate(self) -> list[str]:
        """
        Walk the mail cache and return the path of every folder database.

        Returns:
            Absolute paths, sorted.

        Raises:
            DiscoveryError: When the home directory or the mail cache root
                cannot be read. Unreadable subdirectories are skipped.
        """
        mail_root = os.path.join(self._resolve_home(), self._mail_directory)

        if not os.path.exists(mail_root):
            self.logger.warning("Mail directory '%s' does not exist", mail_root)
            return []

        try:
            with os.scandir(mail_root):
                pass

        except OSError as error:
            raise DiscoveryError(f"Cannot read {mail_root}: {error}") from error

        paths: list[str] = []

        for dirpath, _, filenames in os.walk(mail_root, onerror=self._on_walk_error):
            paths.extend(
                os.path.join(dirpath, filename)
                for filename in filenames
                if filename.endswith(self._suffix)
            )

        self.logger.debug("Found %s databases under %s", len(paths), mail_root)

        return sorted(paths)

    def _resolve_home(self) -> str:
        """Return the absolute home directory, raise if there isn't a usable one."""
        if self._home_directory:
            home = self._home_directory

        else:
            try:
                home = str(Path.home())

            except (KeyError, RuntimeError) as error:
                raise DiscoveryError(f"Cannot resolve home directory: {error}") from error

        if not os.path.isdir(home):
            raise DiscoveryError(f"Home directory '{home}' is not a directory")

        return os.path.abspath(home)

    def _on_walk_error(self, error: OSError) -> None:
        """Skip subtrees that cannot be listed."""
        self.logger.debug("Skipping '%s' during walk: %s", error.filename, error)
