"""Mutual exclusion for migration runs.

Two service instances starting at the same moment must not both read the
ledger, both see script ``005`` as pending, and both try to apply it. On
PostgreSQL a session-level advisory lock serializes them: the second
instance blocks in ``acquire()`` until the first has finished, then reads a
ledger that already lists ``005`` and skips it.

SQLite serializes writers itself and has no advisory locks, so ``NullLock``
is used there.

Example::

    lock = PostgresAdvisoryLock(conn, "schemaspine.migrations")
    with lock:
        ...  # read ledger, apply pending scripts
"""

from __future__ import annotations

import hashlib
from types import TracebackType

from schemaspine.core.connection import ConnectionInfo
from schemaspine.core.errors import LockError
from schemaspine.core.logging import get_logger
from schemaspine.core.protocols import Connection, MigrationLock

logger = get_logger(__name__)


def advisory_lock_key(name: str) -> int:
    """Derive a stable signed 64-bit advisory lock key from a name."""
    digest = hashlib.sha256(name.encode("utf-8")).digest()
    return int.from_bytes(digest[:8], "big", signed=True)


class _LockContext:
    def __enter__(self) -> _LockContext:
        self.acquire()  # type: ignore[attr-defined]
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.release()  # type: ignore[attr-defined]


class NullLock(_LockContext):
    """Lock that does nothing (single-writer engines, tests)."""

    def acquire(self) -> None:
        pass

    def release(self) -> None:
        pass


class PostgresAdvisoryLock(_LockContext):
    """Session-level ``pg_advisory_lock`` held on the runner's own connection.

    The lock statements run in their own short transactions, so holding the
    lock never keeps a transaction open across the migration run.
    """

    def __init__(self, conn: Connection, name: str) -> None:
        self._conn = conn
        self.name = name
        self.key = advisory_lock_key(name)
        self._held = False

    def acquire(self) -> None:
        logger.debug("lock.waiting", lock=self.name, key=self.key)
        try:
            self._conn.execute("SELECT pg_advisory_lock(%s)", (self.key,))
            self._conn.commit()
        except Exception as e:
            raise LockError(f"Cannot acquire migration lock {self.name!r}: {e}", cause=e) from e
        self._held = True
        logger.info("lock.acquired", lock=self.name)

    def release(self) -> None:
        if not self._held:
            return
        try:
            # A failed script leaves the transaction aborted until rolled back
            self._conn.rollback()
            self._conn.execute("SELECT pg_advisory_unlock(%s)", (self.key,))
            self._conn.commit()
        except Exception as e:
            raise LockError(f"Cannot release migration lock {self.name!r}: {e}", cause=e) from e
        finally:
            self._held = False
        logger.info("lock.released", lock=self.name)


def lock_for(conn: Connection, info: ConnectionInfo, name: str) -> MigrationLock:
    """Pick the lock implementation for a connection's backend."""
    if info.is_postgres:
        return PostgresAdvisoryLock(conn, name)
    return NullLock()


__all__ = ["NullLock", "PostgresAdvisoryLock", "advisory_lock_key", "lock_for"]
