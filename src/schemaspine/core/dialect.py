"""SQL dialect abstraction for the ledger and transaction handling.

The migration *scripts* are written for one engine and are never rewritten.
The small amount of SQL that schema-spine itself issues (ledger DDL, ledger
reads/inserts, transaction start) differs between backends, and ``Dialect``
keeps those fragments in one place.

Architecture::

    ┌──────────────────────────┐     ┌──────────────────────────────┐
    │ SQLiteDialect            │     │ PostgreSQLDialect            │
    │  ?, ?, ?                 │     │  %s, %s, %s                  │
    │  BEGIN (explicit)        │     │  autobegin (driver/SA)       │
    │  applied_at TEXT (ISO)   │     │  applied_at TIMESTAMPTZ      │
    └──────────────────────────┘     └──────────────────────────────┘

Examples:
    >>> from schemaspine.core.dialect import get_dialect
    >>> d = get_dialect("sqlite")
    >>> d.placeholders(3)
    '?, ?, ?'
    >>> d.begin_transaction()
    'BEGIN'

Tags:
    dialect, sql, abstraction, portability, database, schema-spine
"""

from __future__ import annotations

import re
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

_IDENTIFIER = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")


def is_sql_identifier(value: str) -> bool:
    """True if ``value`` is safe to interpolate as an unquoted table name."""
    return _IDENTIFIER.fullmatch(value) is not None


@runtime_checkable
class Dialect(Protocol):
    """SQL dialect contract.

    Every method returns a SQL fragment or a driver-ready value for the
    target database.
    """

    @property
    def name(self) -> str:
        """Human-readable dialect name (e.g. ``'sqlite'``)."""
        ...

    def placeholders(self, count: int) -> str:
        """Comma-separated placeholder list."""
        ...

    def begin_transaction(self) -> str | None:
        """Statement that opens a transaction, or None if the driver autobegins."""
        ...

    def create_ledger_table(self, table: str) -> str:
        """Idempotent DDL for the applied-migration ledger."""
        ...

    def timestamp_param(self, value: datetime) -> Any:
        """Convert a timestamp into a bind parameter the driver accepts."""
        ...


class SQLiteDialect:
    """SQLite dialect (``?`` placeholders, explicit ``BEGIN``)."""

    @property
    def name(self) -> str:
        return "sqlite"

    def placeholders(self, count: int) -> str:
        return ", ".join("?" for _ in range(count))

    def begin_transaction(self) -> str | None:
        # sqlite3 does not open a transaction before DDL on its own
        return "BEGIN"

    def create_ledger_table(self, table: str) -> str:
        return (
            f"CREATE TABLE IF NOT EXISTS {table} (\n"
            "    migration_id TEXT PRIMARY KEY,\n"
            "    applied_at TEXT NOT NULL,\n"
            "    checksum TEXT,\n"
            "    statement_count INTEGER NOT NULL DEFAULT 0\n"
            ")"
        )

    def timestamp_param(self, value: datetime) -> Any:
        return value.isoformat()

    def __repr__(self) -> str:
        return "SQLiteDialect()"


class PostgreSQLDialect:
    """PostgreSQL dialect (``%s`` placeholders, driver autobegin)."""

    @property
    def name(self) -> str:
        return "postgresql"

    def placeholders(self, count: int) -> str:
        return ", ".join("%s" for _ in range(count))

    def begin_transaction(self) -> str | None:
        return None

    def create_ledger_table(self, table: str) -> str:
        return (
            f"CREATE TABLE IF NOT EXISTS {table} (\n"
            "    migration_id TEXT PRIMARY KEY,\n"
            "    applied_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),\n"
            "    checksum TEXT,\n"
            "    statement_count INTEGER NOT NULL DEFAULT 0\n"
            ")"
        )

    def timestamp_param(self, value: datetime) -> Any:
        return value

    def __repr__(self) -> str:
        return "PostgreSQLDialect()"


_DIALECTS: dict[str, Dialect] = {
    "sqlite": SQLiteDialect(),
    "postgresql": PostgreSQLDialect(),
    "postgres": PostgreSQLDialect(),
}


def get_dialect(db_type: str) -> Dialect:
    """Look up a dialect by backend name.

    Raises:
        ValueError: If no dialect is known under ``db_type``.
    """
    try:
        return _DIALECTS[db_type.lower()]
    except KeyError:
        available = ", ".join(sorted(_DIALECTS))
        raise ValueError(f"Unknown dialect {db_type!r}. Available: {available}") from None


__all__ = [
    "Dialect",
    "SQLiteDialect",
    "PostgreSQLDialect",
    "get_dialect",
    "is_sql_identifier",
]
