"""Portable SQL dumps of the site database and their replay."""
from __future__ import annotations

import logging
import math
import os
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterator, List, Optional, Sequence, Tuple

from core.db import connect, quote_identifier, read_snapshot

from .errors import ExportError, ReplayError
from .types import ReplaySummary, SqlDump, TableDump

LOGGER = logging.getLogger("sitebackup.backup.database")

DUMP_TITLE = "-- Site Database Backup"
_PREVIEW_CHARS = 160


def quote_literal(value: object) -> str:
    """Render *value* as an SQLite literal, the same way ``quote()`` does.

    Text holding NUL characters cannot be written as a quoted string without
    being truncated, so it is emitted as a blob cast back to text.
    """

    if value is None:
        return "NULL"
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if math.isnan(value):
            return "NULL"
        if math.isinf(value):
            return "9.0e+999" if value > 0 else "-9.0e+999"
        return repr(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return "X'" + bytes(value).hex().upper() + "'"
    text = str(value)
    if "\x00" in text:
        return "CAST(X'" + text.encode("utf-8").hex().upper() + "' AS TEXT)"
    return "'" + text.replace("'", "''") + "'"


def list_tables(conn: sqlite3.Connection) -> List[Tuple[str, str]]:
    """Return ``(name, create statement)`` for every user table in storage order."""

    rows = conn.execute(
        "SELECT name, sql FROM sqlite_master "
        "WHERE type = 'table' AND name NOT LIKE 'sqlite\\_%' ESCAPE '\\' AND sql IS NOT NULL "
        "ORDER BY rowid"
    ).fetchall()
    return [(str(name), str(sql)) for name, sql in rows]


def list_schema_objects(conn: sqlite3.Connection) -> List[Tuple[str, str, str, str]]:
    """Return ``(type, name, table, sql)`` for indexes, triggers and views.

    Automatic indexes have no SQL of their own and are rebuilt by the
    ``CREATE TABLE`` statement, so they are left out.
    """

    rows = conn.execute(
        "SELECT type, name, tbl_name, sql FROM sqlite_master "
        "WHERE type IN ('index', 'trigger', 'view') "
        "AND name NOT LIKE 'sqlite\\_%' ESCAPE '\\' AND sql IS NOT NULL "
        "ORDER BY rowid"
    ).fetchall()
    return [(str(kind), str(name), str(table), str(sql)) for kind, name, table, sql in rows]


def _schema_statement(kind: str, name: str, sql: str) -> str:
    return f"DROP {kind.upper()} IF EXISTS {quote_identifier(name)};\n{sql};\n\n"


def _iter_row_literals(conn: sqlite3.Connection, table: str) -> Iterator[List[str]]:
    cursor = conn.execute(f"SELECT * FROM {quote_identifier(table)}")
    for row in cursor:
        yield [quote_literal(value) for value in row]


class DatabaseExporter:
    """Serialize every table of the site database into an SQL script.

    The script starts with a comment header, then holds a ``DROP TABLE IF
    EXISTS`` and the engine's own ``CREATE TABLE`` statement for each table
    followed by one ``INSERT`` per row, so that every statement can be
    replayed on its own.

    A table's indexes follow its rows. Views come after every table and
    triggers close the script, so replayed inserts never fire a trigger.
    Each of these is preceded by its own ``DROP ... IF EXISTS``.
    """

    def __init__(
        self,
        database_path: Path,
        *,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._database_path = Path(database_path)
        self._clock = clock or datetime.now

    @property
    def database_path(self) -> Path:
        return self._database_path

    def _connect(self) -> sqlite3.Connection:
        if not self._database_path.exists():
            raise ExportError(f"database not found at {self._database_path}")
        try:
            return connect(self._database_path, read_only=True)
        except sqlite3.Error as exc:
            raise ExportError(f"could not open database: {exc}") from exc

    def export(self, dump_path: Path) -> SqlDump:
        """Write the dump to *dump_path*, replacing any previous file there."""

        dump_path = Path(dump_path)
        dump_path.parent.mkdir(parents=True, exist_ok=True)
        partial = dump_path.with_name(dump_path.name + ".part")
        created = self._clock().strftime("%Y-%m-%d %H:%M:%S")
        tables: List[TableDump] = []
        schema_objects = 0
        conn = self._connect()
        try:
            with read_snapshot(conn), partial.open("w", encoding="utf-8", newline="\n") as handle:
                handle.write(f"{DUMP_TITLE}\n-- Exported on: {created}\n\n")
                objects = list_schema_objects(conn)
                for name, create_sql in list_tables(conn):
                    target = quote_identifier(name)
                    handle.write(f"DROP TABLE IF EXISTS {target};\n{create_sql};\n\n")
                    count = 0
                    for literals in _iter_row_literals(conn, name):
                        handle.write(f"INSERT INTO {target} VALUES ({', '.join(literals)});\n")
                        count += 1
                    if count:
                        handle.write("\n")
                    tables.append(TableDump(name=name, row_count=count))
                    for kind, object_name, table, sql in objects:
                        if kind == "index" and table == name:
                            handle.write(_schema_statement(kind, object_name, sql))
                            schema_objects += 1
                for kind in ("view", "trigger"):
                    for object_kind, object_name, _table, sql in objects:
                        if object_kind == kind:
                            handle.write(_schema_statement(kind, object_name, sql))
                            schema_objects += 1
            os.replace(partial, dump_path)
        except (sqlite3.Error, OSError, UnicodeError) as exc:
            partial.unlink(missing_ok=True)
            raise ExportError(f"database export failed: {exc}") from exc
        finally:
            conn.close()
        LOGGER.info("Exported %d tables to %s", len(tables), dump_path)
        return SqlDump(
            path=dump_path,
            created=created,
            tables=tables,
            size_bytes=dump_path.stat().st_size,
            schema_objects=schema_objects,
        )


def _has_sql(statement: str) -> bool:
    for line in statement.splitlines():
        stripped = line.strip()
        if stripped and not stripped.startswith("--"):
            return True
    return False


def split_statements(script: str) -> Iterator[str]:
    """Split *script* on ``;`` terminators.

    A ``;`` only ends a statement when the text before it is a complete
    statement, so semicolons inside literals, comments and trigger bodies
    stay where they are.
    """

    pieces = script.split(";")
    buffer = ""
    last = len(pieces) - 1
    for index, piece in enumerate(pieces):
        buffer += piece
        if index == last:
            break
        buffer += ";"
        if sqlite3.complete_statement(buffer):
            statement = buffer[:-1].strip()
            buffer = ""
            if _has_sql(statement):
                yield statement
    tail = buffer.strip()
    if _has_sql(tail):
        yield tail


def _preview(statement: str) -> str:
    flat = " ".join(statement.split())
    if len(flat) <= _PREVIEW_CHARS:
        return flat
    return flat[: _PREVIEW_CHARS - 3] + "..."


def replay_statements(
    conn: sqlite3.Connection,
    statements: Sequence[str] | Iterator[str],
    *,
    strict: bool = False,
) -> ReplaySummary:
    """Execute *statements* in order, each one on its own.

    In lenient mode a failing statement is recorded and replay goes on. In
    strict mode the first failure rolls back the open transaction and raises
    :class:`ReplayError`.
    """

    summary = ReplaySummary()
    conn.execute("BEGIN")
    try:
        for index, statement in enumerate(statements):
            try:
                conn.execute(statement)
            except sqlite3.Error as exc:
                if strict:
                    raise ReplayError(str(exc), index=index, statement=_preview(statement)) from exc
                summary.failures.append({"index": index, "error": str(exc), "statement": _preview(statement)})
                LOGGER.warning("Statement %d failed during replay: %s", index, exc)
                if not conn.in_transaction:
                    conn.execute("BEGIN")
                continue
            summary.executed += 1
    except BaseException:
        if conn.in_transaction:
            conn.rollback()
        raise
    conn.commit()
    return summary


def replay_script(database_path: Path, script: str, *, strict: bool = False) -> ReplaySummary:
    conn = connect(database_path, read_only=False)
    try:
        return replay_statements(conn, split_statements(script), strict=strict)
    finally:
        conn.close()


__all__ = [
    "DUMP_TITLE",
    "DatabaseExporter",
    "list_schema_objects",
    "list_tables",
    "quote_literal",
    "replay_script",
    "replay_statements",
    "split_statements",
]
