"""Applied-migration ledger.

The ledger is a single table in the target database and the sole source of
truth for "has this script already run". Rows are inserted once, inside the
same transaction as the script's statements, and never updated or deleted.

Any failure to create, read or write the table (or a row that cannot be
decoded) raises ``LedgerUnavailableError``.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from schemaspine.core.dialect import Dialect, SQLiteDialect, is_sql_identifier
from schemaspine.core.errors import ConfigError, LedgerUnavailableError
from schemaspine.core.logging import get_logger
from schemaspine.core.migrations.models import AppliedMigration
from schemaspine.core.protocols import Connection

logger = get_logger(__name__)

DEFAULT_LEDGER_TABLE = "schema_migrations"


def _parse_timestamp(value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


class Ledger:
    """Reads and writes the applied-migration table.

    Parameters
    ----------
    conn
        Connection to the target database.
    dialect
        Dialect of that database. Defaults to SQLite.
    table
        Ledger table name; must be a plain SQL identifier.
    """

    def __init__(
        self,
        conn: Connection,
        dialect: Dialect | None = None,
        table: str = DEFAULT_LEDGER_TABLE,
    ) -> None:
        if not is_sql_identifier(table):
            raise ConfigError(f"Invalid ledger table name: {table!r}")
        self._conn = conn
        self._dialect = dialect or SQLiteDialect()
        self.table = table

    def ensure(self) -> None:
        """Create the ledger table if it does not exist, and commit."""
        try:
            self._conn.execute(self._dialect.create_ledger_table(self.table))
            self._conn.commit()
        except Exception as e:
            self._safe_rollback()
            raise LedgerUnavailableError(
                f"Cannot create ledger table {self.table}: {e}", cause=e
            ) from e
        logger.debug("ledger.ensured", table=self.table)

    def applied(self) -> dict[str, AppliedMigration]:
        """Return every ledger row keyed by migration id."""
        try:
            rows = self._conn.execute(
                f"SELECT migration_id, applied_at, checksum, statement_count "
                f"FROM {self.table} ORDER BY migration_id"
            ).fetchall()
            # Ends the implicit read transaction some drivers open
            self._conn.commit()
        except Exception as e:
            self._safe_rollback()
            raise LedgerUnavailableError(
                f"Cannot read ledger table {self.table}: {e}", cause=e
            ) from e

        records: dict[str, AppliedMigration] = {}
        for row in rows:
            try:
                migration_id, applied_at, checksum, statement_count = tuple(row)
                if not migration_id:
                    raise ValueError("empty migration_id")
                record = AppliedMigration(
                    migration_id=str(migration_id),
                    applied_at=_parse_timestamp(applied_at),
                    checksum=checksum,
                    statement_count=int(statement_count or 0),
                )
            except (TypeError, ValueError) as e:
                raise LedgerUnavailableError(
                    f"Corrupt ledger row in {self.table}: {tuple(row)!r}", cause=e
                ) from e
            records[record.migration_id] = record

        return records

    def record(
        self,
        migration_id: str,
        applied_at: datetime,
        checksum: str | None,
        statement_count: int,
    ) -> None:
        """Insert a ledger row. Does NOT commit; the caller owns the transaction."""
        sql = (
            f"INSERT INTO {self.table} "
            f"(migration_id, applied_at, checksum, statement_count) "
            f"VALUES ({self._dialect.placeholders(4)})"
        )
        try:
            self._conn.execute(
                sql,
                (
                    migration_id,
                    self._dialect.timestamp_param(applied_at),
                    checksum,
                    statement_count,
                ),
            )
        except Exception as e:
            raise LedgerUnavailableError(
                f"Cannot record migration {migration_id} in {self.table}: {e}",
                cause=e,
            ).with_context(migration_id=migration_id) from e

    def _safe_rollback(self) -> None:
        try:
            self._conn.rollback()
        except Exception as e:
            logger.warning("ledger.rollback_failed", error=str(e))


__all__ = ["Ledger", "DEFAULT_LEDGER_TABLE"]
