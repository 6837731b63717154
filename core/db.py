from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

__all__ = [
    "BUSY_TIMEOUT_MS",
    "connect",
    "copy_database",
    "quote_identifier",
    "read_snapshot",
]

BUSY_TIMEOUT_MS = 5000


def connect(db_path: str | Path, *, read_only: bool = False, timeout: float = 5.0) -> sqlite3.Connection:
    """Open the site database in autocommit mode.

    Read-only handles never create the file. Writable handles create the
    parent directory and switch the journal to WAL.
    """

    path = Path(db_path)
    if read_only:
        conn = sqlite3.connect(
            f"file:{path.resolve().as_posix()}?mode=ro",
            uri=True,
            timeout=timeout,
            isolation_level=None,
            check_same_thread=False,
        )
    else:
        path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(path), timeout=timeout, isolation_level=None, check_same_thread=False)
    conn.execute(f"PRAGMA busy_timeout={BUSY_TIMEOUT_MS}")
    if not read_only:
        try:
            conn.execute("PRAGMA journal_mode=WAL")
        except sqlite3.DatabaseError:
            pass
    return conn


def quote_identifier(name: str) -> str:
    return '"' + str(name).replace('"', '""') + '"'


@contextmanager
def read_snapshot(conn: sqlite3.Connection) -> Iterator[sqlite3.Connection]:
    """Hold one read transaction so every query sees the same database state."""

    conn.execute("BEGIN DEFERRED")
    try:
        yield conn
    finally:
        conn.rollback()


def copy_database(source: str | Path, destination: str | Path) -> None:
    """Copy *source* over *destination* with SQLite's online backup API."""

    source_conn = connect(source)
    try:
        destination_conn = connect(destination)
        try:
            source_conn.backup(destination_conn)
        finally:
            destination_conn.close()
    finally:
        source_conn.close()
