from __future__ import annotations

import logging
import sqlite3
import time
from collections.abc import Callable
from collections.abc import Sequence
from contextlib import closing
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from typing import Protocol

    class _CounterConfig(Protocol):
        @property
        def unread_query(self) -> str:
            ...

        @property
        def timeout_seconds(self) -> float:
            ...


UNREAD_QUERY = "SELECT unread_count FROM folders"

# Number of SQLite virtual machine steps between deadline checks
PROGRESS_STEPS = 1000


class UnreadCounter:
    """Sum the unread counts stored in a set of folder databases."""

    logger = logging.getLogger("evolved_badge.UnreadCounter")

    def __init__(
        self,
        database_paths: Sequence[str],
        *,
        query: str = UNREAD_QUERY,
        timeout_seconds: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Initialize a new UnreadCounter over the given databases.

        Databases are only opened by count(), read-only, and closed before it
        returns.

        Args:
            database_paths: Absolute paths of the folder databases.

        Keyword Args:
            query: The query returning one unread count per folder row.
            timeout_seconds: The time budget shared by every database read in
                one call of count(). Reads past the budget count as zero.
            clock: Monotonic time source, in seconds.
        """
        self._database_paths = tuple(database_paths)
        self._query = query
        self._timeout_seconds = timeout_seconds
        self._clock = clock

    @classmethod
    def from_config(
        cls,
        database_paths: Sequence[str],
        config: _CounterConfig,
    ) -> UnreadCounter:
        """Build an UnreadCounter from the given configuration."""
        return cls(
            database_paths,
            query=config.unread_query,
            timeout_seconds=config.timeout_seconds,
        )

    @property
    def database_paths(self) -> tuple[str, ...]:
        """Return the databases read by count()."""
        return self._database_paths

    def count(self) -> int:
        """
        Return the total unread count across all databases.

        A database that cannot be opened, queried, or closed is logged and
        contributes zero. This never raises for a single bad database.
        """
        deadline = self._clock() + self._timeout_seconds
        total = 0

        for path in self._database_paths:
            if self._clock() >= deadline:
                self.logger.error("Out of time, skipping database %s", path)
                continue

            total += self._count_database(path, deadline)

        self.logger.debug(
            "Counted %s unread across %s databases",
            total,
            len(self._database_paths),
        )

        return total

    def _count_database(self, path: str, deadline: float) -> int:
        """Return the unread count of a single database, zero on any failure."""
        try:
            connection = self._connect(path, deadline)

        except sqlite3.Error as error:
            self.logger.error("Failed to open database %s: %s", path, error)
            return 0

        try:
            subtotal = self._query_unread(connection, path, deadline)

        finally:
            try:
                connection.close()

            except sqlite3.Error as error:
                self.logger.error("Failed to close database %s: %s", path, error)
                subtotal = 0

        return subtotal

    def _connect(self, path: str, deadline: float) -> sqlite3.Connection:
        """Open the database read-only, waiting on locks no longer than the deadline."""
        uri = f"{Path(path).absolute().as_uri()}?mode=ro"
        busy_timeout = max(deadline - self._clock(), 0.0)

        connection = sqlite3.connect(uri, uri=True, timeout=busy_timeout)

        # A non-zero return interrupts the running statement
        connection.set_progress_handler(
            lambda: int(self._clock() >= deadline),
            PROGRESS_STEPS,
        )
        return connection

    def _query_unread(
        self,
        connection: sqlite3.Connection,
        path: str,
        deadline: float,
    ) -> int:
        """Run the unread query and sum the first column of every row."""
        try:
            with closing(connection.cursor()) as cursor:
                cursor.execute(self._query)
                rows = cursor.fetchall()

        except sqlite3.Error as error:
            if self._clock() >= deadline:
                self.logger.error("Abandoned query on %s after timeout", path)
            else:
                self.logger.error("Failed to query database %s: %s", path, error)
            return 0

        subtotal = 0
        for row in rows:
            value = row[0] if row[0] is not None else 0

            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                self.logger.error("Invalid unread count %r in %s", value, path)
                return 0

            subtotal += value

        self.logger.debug("Database %s has %s unread", path, subtotal)

        return subtotal
