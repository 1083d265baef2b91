from __future__ import annotations

import argparse
import logging
import random
import shutil
import sqlite3
import threading
import time
from collections.abc import Generator
from contextlib import closing
from contextlib import contextmanager
from pathlib import Path

BASE_DIR: Path = Path(__file__).resolve().parent
HOME_DIR: Path = BASE_DIR / "smoketest_home"
MAIL_DIR: Path = HOME_DIR / ".cache" / "evolution" / "mail"
UNREAD_RANGE: tuple[int, int] = (0, 25)

# Time intervals in seconds
UNREAD_CHANGE_INTERVAL = 5
OUTPUT_INTERVAL = 10

ACCOUNTS: dict[str, list[str]] = {
    "1700000000.1234.1@imap.example.com": ["INBOX", "INBOX/Lists", "Sent"],
    "1700000001.5678.2@ews.example.com": ["Inbox", "Archive"],
    "local": ["Inbox", "Outbox", "Drafts"],
}

logger = logging.getLogger(__name__)


def _database_path(account: str) -> Path:
    return MAIL_DIR / account / "folders.db"


def build_mail_cache() -> None:
    """Create one folder database per account, shaped like Evolution's."""
    for account, folders in ACCOUNTS.items():
        path = _database_path(account)
        path.parent.mkdir(parents=True, exist_ok=True)
        logger.debug("Creating %s", path)

        with closing(sqlite3.connect(path)) as connection:
            connection.execute(
                """
                CREATE TABLE IF NOT EXISTS folders (
                    folder_name TEXT PRIMARY KEY,
                    version REAL,
                    flags INTEGER,
                    nextuid INTEGER,
                    time NUMERIC,
                    saved_count INTEGER,
                    unread_count INTEGER,
                    deleted_count INTEGER,
                    junk_count INTEGER,
                    visible_count INTEGER,
                    jnd_count INTEGER,
                    bdata TEXT
                )
                """
            )
            connection.executemany(
                """
                INSERT OR REPLACE INTO folders (folder_name, unread_count)
                VALUES (?, ?)
                """,
                [(folder, random.randint(*UNREAD_RANGE)) for folder in folders],
            )
            connection.commit()


def destroy_mail_cache() -> None:
    """Delete the fake home directory."""
    logger.debug("Deleting %s", HOME_DIR)
    shutil.rmtree(HOME_DIR)


def total_unread() -> int:
    """Return the unread count the daemon is expected to publish."""
    total = 0
    for account in ACCOUNTS:
        with closing(sqlite3.connect(_database_path(account))) as connection:
            (subtotal,) = connection.execute(
                "SELECT COALESCE(SUM(unread_count), 0) FROM folders"
            ).fetchone()
        total += subtotal

    return total


def change_unread_count() -> None:
    """Read or receive mail in one random folder."""
    account = random.choice(list(ACCOUNTS))
    folder = random.choice(ACCOUNTS[account])
    unread = random.randint(*UNREAD_RANGE)

    logger.info("Setting %s/%s to %s unread", account, folder, unread)

    with closing(sqlite3.connect(_database_path(account))) as connection:
        connection.execute(
            "UPDATE folders SET unread_count = ? WHERE folder_name = ?",
            (unread, folder),
        )
        connection.commit()


def thread_unread_changer(stop_flag: threading.Event) -> None:
    """Thread handler: Change unread counts at a regular interval."""
    next_run = time.time() + UNREAD_CHANGE_INTERVAL

    while not stop_flag.is_set():
        if time.time() < next_run:
            time.sleep(1)
            continue
        next_run = time.time() + UNREAD_CHANGE_INTERVAL

        change_unread_count()


def thread_output_total(stop_flag: threading.Event) -> None:
    """Output the expected total at a regular interval."""
    next_run = time.time() + OUTPUT_INTERVAL

    while not stop_flag.is_set():
        if time.time() < next_run:
            time.sleep(1)
            continue
        next_run = time.time() + OUTPUT_INTERVAL

        print("*" * 79)
        print(f"Expected badge count: {total_unread()}")
        print("*" * 79)


def parse_args() -> tuple[str, bool]:
    """Parse command line arguments, return log level and verbose flag."""
    parser = argparse.ArgumentParser()
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default="ERROR",
        help="Set the logging level.",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Output the expected badge count on a regular interval.",
    )
    args = parser.parse_args()
    return args.log_level, args.verbose


def start_threads(
    stop_flag: threading.Event,
    verbose: bool = False,
) -> list[threading.Thread]:
    """Start all threads."""
    threads = [threading.Thread(target=thread_unread_changer, args=(stop_flag,))]

    if verbose:
        threads.append(threading.Thread(target=thread_output_total, args=(stop_flag,)))

    for thread in threads:
        thread.start()

    return threads


def stop_threads(threads: list[threading.Thread]) -> None:
    """Join all threads, allowing them to stop."""
    for thread in threads:
        thread.join()


@contextmanager
def smoketest_runner(verbose: bool = False) -> Generator[Path, None, None]:
    """Run the smoketest, yielding the fake home directory."""
    stop_flag = threading.Event()
    threads: list[threading.Thread] = []

    logger.debug("Building fake mail cache...")
    build_mail_cache()

    try:
        logger.debug("Starting threads...")
        threads = start_threads(stop_flag, verbose)

        yield HOME_DIR

    finally:
        logger.debug("Stopping threads...")
        stop_flag.set()
        stop_threads(threads)
        logger.debug("Destroying fake mail cache...")
        destroy_mail_cache()


def run() -> int:
    """Main function - blocking."""
    level, verbose = parse_args()
    logging.basicConfig(level=level, format="%(asctime)s %(message)s")

    with smoketest_runner(verbose):
        while True:
            try:
                time.sleep(1)
            except KeyboardInterrupt:
                break

    return 0


if __name__ == "__main__":
    raise SystemExit(run())
