"""
Canonical protocol definitions for schema-spine.

The runner depends on the *shape* of a database connection and of a lock,
never on a driver. Anything matching these protocols works: the bundled
``SqliteConnection`` and ``SAConnectionBridge`` adapters, a raw
``sqlite3.Connection``, or a test fake.

Architecture:
    ::

        protocols.py
        ├── Connection     — sync DB protocol (execute, commit, rollback)
        └── MigrationLock  — mutual exclusion around a migration run

Guardrails:
    ❌ DON'T: Import sqlite3 or SQLAlchemy in the runner
    ✅ DO: Accept a Connection and let adapters deal with drivers

Tags:
    protocol, connection, lock, database, schema-spine, contracts
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class Connection(Protocol):
    """
    Minimal SYNCHRONOUS connection interface used by the runner and ledger.

    ``execute`` must return an object with ``fetchall()`` (a DB-API cursor or
    the adapter itself). ``params`` use the placeholder style of the
    connection's dialect (``?`` for SQLite, ``%s`` for PostgreSQL).

    Examples:
        >>> def count_rows(conn: Connection) -> int:
        ...     return len(conn.execute("SELECT 1").fetchall())
    """

    def execute(self, sql: str, params: tuple = ()) -> Any:
        """Execute one SQL statement with optional parameters."""
        ...

    def commit(self) -> None:
        """Commit current transaction."""
        ...

    def rollback(self) -> None:
        """Rollback current transaction."""
        ...


@runtime_checkable
class MigrationLock(Protocol):
    """
    Mutual exclusion for a migration run.

    At most one runner may proceed past the ledger read at a time. The runner
    acquires the lock before touching the ledger and releases it when the run
    ends, successfully or not. ``acquire`` blocks until the lock is held or
    raises ``LockError``.
    """

    def acquire(self) -> None:
        ...

    def release(self) -> None:
        ...


__all__ = ["Connection", "MigrationLock"]
