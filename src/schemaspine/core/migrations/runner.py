"""SQL migration runner.

Applies pending migration scripts in identifier order, one transaction per
script, recording each in the ledger inside that same transaction.

A run moves through ``IDLE → SCANNING → (EXECUTING → RECORDING)* → IDLE`` and
ends in ``FAILED`` on the first error. Nothing after the failing script is
attempted; scripts applied earlier in the run stay committed.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime

from schemaspine.core.connection import create_connection
from schemaspine.core.dialect import Dialect, SQLiteDialect
from schemaspine.core.errors import (
    ConfigError,
    ErrorCategory,
    ErrorContext,
    InvalidScriptSetError,
    MigrationError,
    StatementExecutionFailedError,
)
from schemaspine.core.logging import LogContext, configure_logging, get_logger
from schemaspine.core.migrations.ledger import DEFAULT_LEDGER_TABLE, Ledger
from schemaspine.core.migrations.locking import NullLock, lock_for
from schemaspine.core.migrations.models import AppliedMigration, MigrationScript, RunState
from schemaspine.core.migrations.source import load_scripts
from schemaspine.core.migrations.splitter import split_script
from schemaspine.core.protocols import Connection, MigrationLock
from schemaspine.core.result import Err, Ok, Result, try_result_with
from schemaspine.core.settings import MigrationSettings

logger = get_logger(__name__)

ScriptInput = MigrationScript | tuple[str, str]


@dataclass
class MigrationResult:
    """Outcome of one ``MigrationRunner.run()``.

    ``state`` is the runner state the run ended in: ``IDLE`` or ``FAILED``.
    """

    applied: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    statements_executed: int = 0
    error: MigrationError | None = None
    state: RunState = RunState.IDLE

    @property
    def success(self) -> bool:
        return self.error is None


def _coerce(item: ScriptInput) -> MigrationScript:
    if isinstance(item, MigrationScript):
        return item
    identifier, sql = item
    return MigrationScript(id=str(identifier), sql=sql)


def order_scripts(scripts: Iterable[ScriptInput]) -> list[MigrationScript]:
    """Sort scripts ascending by identifier, rejecting duplicate identifiers."""
    ordered = sorted((_coerce(s) for s in scripts), key=lambda s: s.id)
    for previous, current in zip(ordered, ordered[1:]):
        if previous.id == current.id:
            raise InvalidScriptSetError(
                f"Duplicate migration identifier {current.id!r}",
                context=ErrorContext(migration_id=current.id),
            )
    return ordered


class MigrationRunner:
    """Applies migration scripts to one database connection.

    Parameters
    ----------
    conn
        Connection to the target database (``Connection`` protocol).
    dialect
        Dialect of that database. Defaults to ``conn.dialect`` when the
        connection exposes one, else SQLite.
    ledger_table
        Name of the tracking table. Overridden by ``settings.ledger_table``.
    lock
        Mutual exclusion held for the whole run. Defaults to ``NullLock``.
    settings
        Explicit configuration; only ``ledger_table`` is read here.

    Example::

        from schemaspine.core.migrations import MigrationRunner, load_scripts
        from schemaspine.core.sqlite_conn import SqliteConnection

        runner = MigrationRunner(SqliteConnection("app.db"))
        result = runner.run(load_scripts("migrations"))
        print(f"Applied {len(result.applied)} migrations")
    """

    def __init__(
        self,
        conn: Connection,
        *,
        dialect: Dialect | None = None,
        ledger_table: str = DEFAULT_LEDGER_TABLE,
        lock: MigrationLock | None = None,
        settings: MigrationSettings | None = None,
    ) -> None:
        if settings is not None:
            ledger_table = settings.ledger_table
        self._conn = conn
        self._dialect = dialect or getattr(conn, "dialect", None) or SQLiteDialect()
        self._ledger = Ledger(conn, self._dialect, ledger_table)
        self._lock = lock or NullLock()
        self.state = RunState.IDLE

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def run(self, scripts: Iterable[ScriptInput]) -> MigrationResult:
        """Apply every script not yet in the ledger, in identifier order."""
        result = MigrationResult()

        try:
            ordered = order_scripts(scripts)
            self._lock.acquire()
        except MigrationError as e:
            self._fail(result, e)
            result.state = self.state
            return result

        try:
            self._run_locked(ordered, result)
        finally:
            try:
                self._lock.release()
            except MigrationError as e:
                if result.success:
                    self._fail(result, e)
                else:
                    logger.warning("lock.release_failed", error=str(e))

        result.state = self.state
        return result

    def apply_all(self, scripts: Iterable[ScriptInput]) -> Result[int]:
        """Run and return ``Ok(newly applied count)`` or ``Err(MigrationError)``."""
        result = self.run(scripts)
        if result.error is not None:
            return Err(result.error)
        return Ok(len(result.applied))

    def get_applied(self) -> list[AppliedMigration]:
        """Return ledger records in identifier order."""
        self._ledger.ensure()
        return list(self._ledger.applied().values())

    def get_pending(self, scripts: Iterable[ScriptInput]) -> list[MigrationScript]:
        """Return the scripts a run would apply, in order."""
        self._ledger.ensure()
        applied = self._ledger.applied()
        return [s for s in order_scripts(scripts) if s.id not in applied]

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _run_locked(self, ordered: list[MigrationScript], result: MigrationResult) -> None:
        self._transition(RunState.SCANNING)
        try:
            self._ledger.ensure()
            applied = self._ledger.applied()
        except MigrationError as e:
            self._fail(result, e)
            return

        known = {script.id for script in ordered}
        for orphan in sorted(set(applied) - known):
            logger.warning("migration.orphaned", migration_id=orphan)

        pending = [s for s in ordered if s.id not in applied]
        if pending:
            logger.info("migration.pending", count=len(pending))

        for script in ordered:
            record = applied.get(script.id)
            if record is not None:
                if record.checksum and record.checksum != script.checksum:
                    logger.warning(
                        "migration.checksum_mismatch",
                        migration_id=script.id,
                        recorded=record.checksum,
                        current=script.checksum,
                    )
                logger.debug("migration.skipped", migration_id=script.id)
                result.skipped.append(script.id)
                continue

            try:
                executed = self._apply(script)
            except MigrationError as e:
                self._fail(result, e)
                return
            result.applied.append(script.id)
            result.statements_executed += executed

        self._transition(RunState.IDLE)
        logger.info(
            "migration.run_complete",
            applied=len(result.applied),
            skipped=len(result.skipped),
        )

    def _apply(self, script: MigrationScript) -> int:
        """Execute one script and record it, all in a single transaction."""
        with LogContext(migration_id=script.id):
            # Malformed scripts fail before touching the database
            statements = split_script(script)

            self._transition(RunState.EXECUTING)
            try:
                begin = self._dialect.begin_transaction()
                if begin:
                    self._execute_control(begin, script.id, "begin")

                for statement in statements:
                    try:
                        self._conn.execute(statement.text)
                    except Exception as e:
                        raise StatementExecutionFailedError(
                            str(e),
                            migration_id=script.id,
                            ordinal=statement.ordinal,
                            statement=statement.text,
                            cause=e,
                        ) from e

                self._transition(RunState.RECORDING)
                self._ledger.record(
                    script.id,
                    datetime.now(UTC),
                    script.checksum,
                    len(statements),
                )
                self._execute_control(None, script.id, "commit")
            except BaseException:
                self._rollback()
                raise

            logger.info("migration.applied", statements=len(statements))
        return len(statements)

    def _execute_control(self, sql: str | None, migration_id: str, action: str) -> None:
        """Run BEGIN (``sql``) or commit (``sql=None``), wrapping driver errors."""
        try:
            if sql is None:
                self._conn.commit()
            else:
                self._conn.execute(sql)
        except Exception as e:
            raise MigrationError(
                f"Cannot {action} transaction for migration {migration_id}: {e}",
                category=ErrorCategory.DATABASE,
                context=ErrorContext(migration_id=migration_id),
                cause=e,
            ) from e

    def _rollback(self) -> None:
        try:
            self._conn.rollback()
        except Exception as e:
            logger.error("migration.rollback_failed", error=str(e))

    def _transition(self, state: RunState) -> None:
        logger.debug("migration.state", previous=self.state.value, current=state.value)
        self.state = state

    def _fail(self, result: MigrationResult, error: MigrationError) -> None:
        result.error = error
        self._transition(RunState.FAILED)
        logger.error("migration.failed", **error.to_dict())


def apply_all(
    scripts: Iterable[ScriptInput],
    conn: Connection,
    *,
    dialect: Dialect | None = None,
    lock: MigrationLock | None = None,
    settings: MigrationSettings | None = None,
) -> Result[int]:
    """Apply every pending script to ``conn``.

    Returns ``Ok(count of newly applied scripts)`` or ``Err(MigrationError)``
    naming the failing script (and statement ordinal, when a statement failed).
    """
    runner = MigrationRunner(conn, dialect=dialect, lock=lock, settings=settings)
    return runner.apply_all(scripts)


def run_migrations(
    settings: MigrationSettings | None = None,
    *,
    configure_logs: bool = False,
) -> Result[int]:
    """Startup entry point: open the database, load scripts, apply, close.

    Args:
        settings: Explicit configuration. Read from the environment if omitted.
        configure_logs: Also configure structlog from ``settings``.
    """
    settings = settings or MigrationSettings()
    if configure_logs:
        configure_logging(level=settings.log_level, json_format=settings.json_logs)

    try:
        conn, info = create_connection(settings.database_url)
    except MigrationError as e:
        logger.error("migration.failed", **e.to_dict())
        return Err(e)

    try:
        loaded = try_result_with(
            lambda: load_scripts(settings.migrations_dir),
            lambda e: e
            if isinstance(e, MigrationError)
            else ConfigError(f"Cannot read migrations from {settings.migrations_dir}: {e}", cause=e),
        )
        lock = lock_for(conn, info, settings.lock_key)
        runner = MigrationRunner(conn, settings=settings, lock=lock)
        return loaded.flat_map(runner.apply_all)
    finally:
        conn.close()


__all__ = [
    "MigrationResult",
    "MigrationRunner",
    "apply_all",
    "order_scripts",
    "run_migrations",
]
