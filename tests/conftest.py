from __future__ import annotations

import sqlite3
from collections.abc import Callable
from contextlib import closing
from pathlib import Path

import pytest

MakeDatabase = Callable[..., str]


def write_folders_db(path: Path, unread_counts: list[int | None]) -> str:
    """Create a folder database shaped like Evolution's, one row per count."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with closing(sqlite3.connect(path)) as connection:
        connection.execute(
            """
            CREATE TABLE IF NOT EXISTS folders (
                folder_name TEXT PRIMARY KEY,
                unread_count INTEGER,
                total_count INTEGER
            )
            """
        )
        connection.execute("DELETE FROM folders")
        connection.executemany(
            "INSERT INTO folders (folder_name, unread_count, total_count) VALUES (?, ?, ?)",
            [(f"folder{idx}", count, 100) for idx, count in enumerate(unread_counts)],
        )
        connection.commit()

    return str(path)


@pytest.fixture
def make_database(tmp_path: Path) -> MakeDatabase:
    """Return a factory writing folder databases below tmp_path."""

    def _make(relative_path: str, unread_counts: list[int | None]) -> str:
        return write_folders_db(tmp_path / relative_path, unread_counts)

    return _make
