"""SQLite connection adapter.

Wraps a raw :class:`sqlite3.Connection` to satisfy the
:class:`~schemaspine.core.protocols.Connection` protocol.

The wrapped connection runs with ``isolation_level=None`` so that the
``sqlite3`` module never opens or commits transactions behind the runner's
back. The runner issues ``BEGIN`` itself, which makes DDL part of the
transaction and lets a failed script roll back completely.

Usage::

    from schemaspine.core.sqlite_conn import SqliteConnection

    conn = SqliteConnection(":memory:")
    conn.execute("BEGIN")
    conn.execute("CREATE TABLE t (id INTEGER)")
    conn.rollback()          # table is gone again
    conn.close()
"""

from __future__ import annotations

import sqlite3
from typing import Any

from schemaspine.core.dialect import Dialect, SQLiteDialect


class SqliteConnection:
    """Adapter: ``sqlite3.Connection`` → ``Connection`` protocol."""

    dialect: Dialect = SQLiteDialect()

    def __init__(self, path: str = ":memory:", *, timeout: float = 5.0) -> None:
        self._conn = sqlite3.connect(
            path,
            timeout=timeout,
            isolation_level=None,
            check_same_thread=False,
        )
        self._conn.execute("PRAGMA foreign_keys=ON")

    # -- Connection protocol -----------------------------------------------

    def execute(self, sql: str, params: tuple = ()) -> Any:
        return self._conn.execute(sql, params)

    def commit(self) -> None:
        if self._conn.in_transaction:
            self._conn.execute("COMMIT")

    def rollback(self) -> None:
        if self._conn.in_transaction:
            self._conn.execute("ROLLBACK")

    def close(self) -> None:
        self._conn.close()

    def __repr__(self) -> str:
        return f"SqliteConnection({self._conn!r})"
