"""Tests for the SQL migration runner."""

from __future__ import annotations

import sqlite3
from pathlib import Path

import pytest
from structlog.testing import capture_logs

from schemaspine.core.dialect import PostgreSQLDialect, SQLiteDialect
from schemaspine.core.errors import (
    ConfigError,
    DatabaseConnectionError,
    InvalidScriptSetError,
    LedgerUnavailableError,
    LockError,
    MigrationError,
    StatementExecutionFailedError,
    UnterminatedBlockError,
)
from schemaspine.core.migrations.models import MigrationScript, RunState
from schemaspine.core.migrations.runner import (
    MigrationResult,
    MigrationRunner,
    apply_all,
    order_scripts,
    run_migrations,
)
from schemaspine.core.result import Err, Ok
from schemaspine.core.settings import MigrationSettings


# ── Fixtures ──────────────────────────────────────────────────────────


@pytest.fixture()
def scripts() -> list[MigrationScript]:
    return [
        MigrationScript(
            "001_users",
            "CREATE TABLE users (id INTEGER PRIMARY KEY, name TEXT NOT NULL);\n"
            "CREATE INDEX idx_users_name ON users (name);",
        ),
        MigrationScript(
            "002_roles",
            "-- roles\nCREATE TABLE roles (id INTEGER PRIMARY KEY, name TEXT);\n"
            "INSERT INTO roles (name) VALUES ('admin; super');",
        ),
    ]


@pytest.fixture()
def runner(conn) -> MigrationRunner:
    return MigrationRunner(conn)


def ledger_ids(conn) -> list[str]:
    rows = conn.execute("SELECT migration_id FROM schema_migrations ORDER BY migration_id")
    return [row[0] for row in rows.fetchall()]


class RecordingLock:
    def __init__(self, events: list[str], *, fail_acquire: bool = False, fail_release: bool = False):
        self.events = events
        self.fail_acquire = fail_acquire
        self.fail_release = fail_release

    def acquire(self) -> None:
        self.events.append("acquire")
        if self.fail_acquire:
            raise LockError("lock busy")

    def release(self) -> None:
        self.events.append("release")
        if self.fail_release:
            raise LockError("cannot unlock")


# ── MigrationResult ───────────────────────────────────────────────────


class TestMigrationResult:
    def test_empty_result_is_success(self):
        r = MigrationResult()
        assert r.success is True
        assert r.applied == []
        assert r.skipped == []
        assert r.statements_executed == 0

    def test_error_means_failure(self):
        r = MigrationResult(error=MigrationError("boom"))
        assert r.success is False


# ── Ordering ──────────────────────────────────────────────────────────


class TestOrderScripts:
    def test_sorts_by_identifier(self):
        ordered = order_scripts([MigrationScript("010_c", ""), MigrationScript("002_b", ""), MigrationScript("001_a", "")])
        assert [s.id for s in ordered] == ["001_a", "002_b", "010_c"]

    def test_accepts_identifier_text_pairs(self):
        ordered = order_scripts([("002_b", "SELECT 2"), ("001_a", "SELECT 1")])
        assert ordered == [MigrationScript("001_a", "SELECT 1"), MigrationScript("002_b", "SELECT 2")]

    def test_rejects_duplicates(self):
        with pytest.raises(InvalidScriptSetError, match="002_b"):
            order_scripts([("002_b", "SELECT 1"), ("001_a", ""), ("002_b", "SELECT 2")])


# ── Applying scripts ──────────────────────────────────────────────────


class TestApply:
    def test_applies_all_pending(self, runner, conn, scripts, tables):
        result = runner.run(scripts)

        assert result.success
        assert result.applied == ["001_users", "002_roles"]
        assert result.skipped == []
        assert result.statements_executed == 4
        assert {"users", "roles", "schema_migrations"} <= tables(conn)
        assert ledger_ids(conn) == ["001_users", "002_roles"]
        assert runner.state is RunState.IDLE
        assert result.state is RunState.IDLE

    def test_string_with_semicolon_inserted_intact(self, runner, conn, scripts):
        runner.run(scripts)
        rows = conn.execute("SELECT name FROM roles").fetchall()
        assert rows == [("admin; super",)]

    def test_applies_in_identifier_order(self, runner, conn):
        # 002 depends on the table 001 creates
        result = runner.run([
            ("002_index", "CREATE INDEX idx_t ON t (id);"),
            ("001_table", "CREATE TABLE t (id INTEGER);"),
        ])
        assert result.applied == ["001_table", "002_index"]

    def test_ledger_records_checksum_and_statement_count(self, runner, conn, scripts):
        runner.run(scripts)
        applied = {a.migration_id: a for a in runner.get_applied()}
        assert applied["001_users"].checksum == scripts[0].checksum
        assert applied["001_users"].statement_count == 2
        assert applied["002_roles"].applied_at is not None

    def test_comment_only_script_is_marked_applied(self, runner, conn):
        result = runner.run([("001_notes", "-- nothing to do yet\n\n-- really\n")])
        assert result.applied == ["001_notes"]
        assert result.statements_executed == 0
        assert ledger_ids(conn) == ["001_notes"]

    def test_empty_script_set(self, runner, conn, tables):
        result = runner.run([])
        assert result.success
        assert result.applied == []
        assert "schema_migrations" in tables(conn)

    def test_custom_ledger_table_from_settings(self, conn, tables):
        settings = MigrationSettings(database_url="memory", ledger_table="app_migrations")
        runner = MigrationRunner(conn, settings=settings)
        runner.run([("001_a", "CREATE TABLE a (id INTEGER);")])
        assert "app_migrations" in tables(conn)
        assert "schema_migrations" not in tables(conn)


# ── Idempotence ───────────────────────────────────────────────────────


class TestRerun:
    def test_rerun_applies_nothing(self, conn, scripts):
        MigrationRunner(conn).run(scripts)

        result = MigrationRunner(conn).run(scripts)

        assert result.success
        assert result.applied == []
        assert result.skipped == ["001_users", "002_roles"]
        assert result.statements_executed == 0

    def test_rerun_applies_only_new_script(self, conn, scripts):
        MigrationRunner(conn).run(scripts[:1])

        result = MigrationRunner(conn).run(scripts)

        assert result.applied == ["002_roles"]
        assert result.skipped == ["001_users"]

    def test_get_pending(self, conn, scripts):
        runner = MigrationRunner(conn)
        assert [s.id for s in runner.get_pending(scripts)] == ["001_users", "002_roles"]
        runner.run(scripts[:1])
        assert [s.id for s in runner.get_pending(scripts)] == ["002_roles"]

    def test_checksum_mismatch_is_warned_and_skipped(self, conn, scripts):
        MigrationRunner(conn).run(scripts)
        edited = [scripts[0], MigrationScript("002_roles", scripts[1].sql + "\n-- edited")]

        with capture_logs() as logs:
            result = MigrationRunner(conn).run(edited)

        assert result.skipped == ["001_users", "002_roles"]
        mismatches = [e for e in logs if e["event"] == "migration.checksum_mismatch"]
        assert len(mismatches) == 1
        assert mismatches[0]["migration_id"] == "002_roles"
        assert mismatches[0]["log_level"] == "warning"

    def test_orphaned_ledger_rows_are_logged(self, conn, scripts):
        MigrationRunner(conn).run(scripts)

        with capture_logs() as logs:
            result = MigrationRunner(conn).run(scripts[1:])

        assert result.success
        orphans = [e for e in logs if e["event"] == "migration.orphaned"]
        assert [e["migration_id"] for e in orphans] == ["001_users"]


# ── Failure handling ──────────────────────────────────────────────────


class TestFailure:
    def test_failing_statement_reports_script_and_ordinal(self, runner, conn, tables):
        result = runner.run([
            ("001_ok", "CREATE TABLE ok_table (id INTEGER);"),
            ("002_bad", "CREATE TABLE half (id INTEGER);\nINSERT INTO missing_table VALUES (1);"),
            ("003_never", "CREATE TABLE never (id INTEGER);"),
        ])

        assert not result.success
        error = result.error
        assert isinstance(error, StatementExecutionFailedError)
        assert error.migration_id == "002_bad"
        assert error.ordinal == 2
        assert "missing_table" in error.context.statement
        assert isinstance(error.cause, sqlite3.OperationalError)
        assert "Migration 002_bad failed at statement 2" in str(error)

        assert result.applied == ["001_ok"]
        assert ledger_ids(conn) == ["001_ok"]
        assert "ok_table" in tables(conn)
        # DDL of the failed script rolled back, later scripts never ran
        assert "half" not in tables(conn)
        assert "never" not in tables(conn)
        assert runner.state is RunState.FAILED
        assert result.state is RunState.FAILED

    def test_failed_script_is_retried_on_next_run(self, conn):
        MigrationRunner(conn).run([("001_bad", "CREATE TABLE a (id INTEGER); SELECT * FROM nope;")])

        result = MigrationRunner(conn).run([("001_bad", "CREATE TABLE a (id INTEGER);")])

        assert result.applied == ["001_bad"]

    def test_unterminated_block_fails_before_execution(self, runner, conn, tables):
        result = runner.run([
            ("001_ok", "CREATE TABLE ok_table (id INTEGER);"),
            ("002_broken", "CREATE TABLE b (id INTEGER);\nDO $$ BEGIN NULL; END;"),
        ])

        assert isinstance(result.error, UnterminatedBlockError)
        assert result.error.context.migration_id == "002_broken"
        assert result.applied == ["001_ok"]
        assert "b" not in tables(conn)
        assert ledger_ids(conn) == ["001_ok"]

    def test_duplicate_ids_fail_before_touching_database(self, fake_conn):
        c = fake_conn()
        result = MigrationRunner(c).run([("001_a", "SELECT 1"), ("001_a", "SELECT 2")])
        assert isinstance(result.error, InvalidScriptSetError)
        assert c.calls == []

    def test_failure_is_logged_with_error_payload(self, runner):
        with capture_logs() as logs:
            runner.run([("001_bad", "SELECT * FROM nope")])

        failed = [e for e in logs if e["event"] == "migration.failed"]
        assert len(failed) == 1
        assert failed[0]["error_type"] == "StatementExecutionFailedError"
        assert failed[0]["context"]["migration_id"] == "001_bad"
        assert failed[0]["context"]["statement_ordinal"] == 1

    def test_rollback_issued_on_statement_failure(self, fake_conn):
        c = fake_conn(fail_on="BOOM")
        result = MigrationRunner(c, dialect=PostgreSQLDialect()).run([("001_x", "SELECT 1; BOOM;")])

        assert result.error.ordinal == 2
        tail = c.trace[-3:]
        assert tail == ["SELECT 1", "BOOM", "rollback"]
        assert not any("INSERT INTO schema_migrations" in s for s in c.statements)

    def test_rollback_failure_does_not_mask_error(self, fake_conn):
        c = fake_conn(fail_on="BOOM", fail_rollback=True)
        result = MigrationRunner(c, dialect=PostgreSQLDialect()).run([("001_x", "BOOM")])
        assert isinstance(result.error, StatementExecutionFailedError)

    def test_commit_failure_during_ledger_setup(self, fake_conn):
        c = fake_conn(fail_commit=True)
        result = MigrationRunner(c, dialect=PostgreSQLDialect()).run([("001_x", "SELECT 1")])
        assert isinstance(result.error, LedgerUnavailableError)

    def test_non_migration_exceptions_propagate(self, fake_conn):
        class BrokenLock:
            def acquire(self):
                raise KeyboardInterrupt

            def release(self):
                pass

        with pytest.raises(KeyboardInterrupt):
            MigrationRunner(fake_conn(), lock=BrokenLock()).run([("001_a", "SELECT 1")])


# ── Ledger problems ───────────────────────────────────────────────────


class TestLedgerUnavailable:
    def test_ledger_create_failure(self, fake_conn):
        c = fake_conn(fail_on="CREATE TABLE IF NOT EXISTS schema_migrations")
        result = MigrationRunner(c).run([("001_a", "SELECT 1")])
        assert isinstance(result.error, LedgerUnavailableError)
        assert result.applied == []
        assert "SELECT 1" not in c.statements

    def test_corrupt_ledger_row(self, fake_conn):
        c = fake_conn(rows=[(None, "2026-01-01T00:00:00+00:00", None, 0)])
        result = MigrationRunner(c).run([("001_a", "SELECT 1")])
        assert isinstance(result.error, LedgerUnavailableError)
        assert "SELECT 1" not in c.statements

    def test_connection_lost_after_ledger_read(self, fake_conn):
        # first commit ends ensure(), the second ends the ledger read
        c = fake_conn(fail_commit_at=2)
        result = apply_all([("001_a", "SELECT 1")], c)
        assert isinstance(result, Err)
        assert isinstance(result.error, LedgerUnavailableError)
        assert "SELECT 1" not in c.statements

    def test_ledger_insert_failure_rolls_back_script(self, fake_conn):
        c = fake_conn(fail_on="INSERT INTO schema_migrations")
        result = MigrationRunner(c, dialect=PostgreSQLDialect()).run([("001_a", "SELECT 1")])

        assert isinstance(result.error, LedgerUnavailableError)
        assert result.error.context.migration_id == "001_a"
        assert c.trace[-1] == "rollback"


# ── Transactions per dialect ──────────────────────────────────────────


class TestTransactions:
    def test_sqlite_dialect_begins_explicitly(self, fake_conn):
        c = fake_conn()
        MigrationRunner(c, dialect=SQLiteDialect()).run([("001_a", "SELECT 1")])
        begin = c.trace.index("BEGIN")
        assert c.trace[begin + 1] == "SELECT 1"
        assert c.trace[begin + 2].startswith("INSERT INTO schema_migrations")
        assert c.trace[begin + 3] == "commit"

    def test_postgres_dialect_relies_on_autobegin(self, fake_conn):
        c = fake_conn()
        MigrationRunner(c, dialect=PostgreSQLDialect()).run([("001_a", "SELECT 1")])
        assert "BEGIN" not in c.trace
        insert = next(call for call in c.calls if call[0] == "execute" and call[1].startswith("INSERT"))
        assert "%s, %s, %s, %s" in insert[1]
        assert insert[2][0] == "001_a"

    def test_dialect_taken_from_connection(self, fake_conn):
        c = fake_conn()
        c.dialect = PostgreSQLDialect()
        MigrationRunner(c).run([("001_a", "SELECT 1")])
        assert "BEGIN" not in c.trace

    def test_raw_sqlite3_connection(self, tmp_path: Path):
        raw = sqlite3.connect(tmp_path / "raw.db", isolation_level=None)
        try:
            result = MigrationRunner(raw).run([("001_a", "CREATE TABLE a (id INTEGER);")])
            assert result.success
            assert raw.execute("SELECT migration_id FROM schema_migrations").fetchall() == [("001_a",)]
        finally:
            raw.close()


# ── Locking ───────────────────────────────────────────────────────────


class TestLocking:
    def test_lock_wraps_ledger_read_and_execution(self, fake_conn):
        events: list[str] = []
        c = fake_conn()
        original_execute = c.execute

        def execute(sql, params=()):
            events.append("execute")
            return original_execute(sql, params)

        c.execute = execute
        MigrationRunner(c, lock=RecordingLock(events)).run([("001_a", "SELECT 1")])

        assert events[0] == "acquire"
        assert events[-1] == "release"
        assert events.count("execute") > 0

    def test_lock_released_after_failure(self, fake_conn):
        events: list[str] = []
        result = MigrationRunner(fake_conn(fail_on="BOOM"), lock=RecordingLock(events)).run([("001_a", "BOOM")])
        assert not result.success
        assert events == ["acquire", "release"]

    def test_acquire_failure(self, fake_conn):
        events: list[str] = []
        c = fake_conn()
        result = MigrationRunner(c, lock=RecordingLock(events, fail_acquire=True)).run([("001_a", "SELECT 1")])
        assert isinstance(result.error, LockError)
        assert c.calls == []
        assert events == ["acquire"]
        assert result.state is RunState.FAILED

    def test_release_failure_after_success_is_reported(self, fake_conn):
        events: list[str] = []
        result = MigrationRunner(fake_conn(), lock=RecordingLock(events, fail_release=True)).run(
            [("001_a", "SELECT 1")]
        )
        assert isinstance(result.error, LockError)
        assert result.applied == ["001_a"]
        assert result.state is RunState.FAILED

    def test_release_failure_keeps_original_error(self, fake_conn):
        events: list[str] = []
        result = MigrationRunner(
            fake_conn(fail_on="BOOM"), lock=RecordingLock(events, fail_release=True)
        ).run([("001_a", "BOOM")])
        assert isinstance(result.error, StatementExecutionFailedError)


# ── apply_all ─────────────────────────────────────────────────────────


class TestApplyAll:
    def test_ok_with_applied_count(self, conn, scripts):
        result = apply_all(scripts, conn)
        assert isinstance(result, Ok)
        assert result.unwrap() == 2

    def test_ok_zero_on_rerun(self, conn, scripts):
        apply_all(scripts, conn)
        assert apply_all(scripts, conn).unwrap() == 0

    def test_err_on_failure(self, conn):
        result = apply_all([("001_ok", "SELECT 1"), ("002_bad", "SELECT 1; SELECT * FROM nope")], conn)
        assert isinstance(result, Err)
        match result:
            case Err(error):
                assert isinstance(error, StatementExecutionFailedError)
                assert (error.migration_id, error.ordinal) == ("002_bad", 2)


# ── run_migrations ────────────────────────────────────────────────────


class TestRunMigrations:
    def test_applies_directory(self, tmp_path, write_migrations):
        directory = write_migrations({
            "001_users": "CREATE TABLE users (id INTEGER PRIMARY KEY);",
            "002_seed": "INSERT INTO users (id) VALUES (1);",
        })
        db = tmp_path / "app.db"
        settings = MigrationSettings(database_url=f"sqlite:///{db}", migrations_dir=directory)

        assert run_migrations(settings).unwrap() == 2
        assert run_migrations(settings).unwrap() == 0

        check = sqlite3.connect(db)
        try:
            assert check.execute("SELECT id FROM users").fetchall() == [(1,)]
        finally:
            check.close()

    def test_missing_directory_applies_nothing(self, tmp_path):
        settings = MigrationSettings(
            database_url=f"sqlite:///{tmp_path / 'app.db'}",
            migrations_dir=tmp_path / "absent",
        )
        assert run_migrations(settings).unwrap() == 0

    def test_unreadable_script_is_config_error(self, tmp_path, write_migrations):
        directory = write_migrations({})
        (directory / "001_bad.sql").write_bytes(b"\xff\xfe SELECT 1;")
        settings = MigrationSettings(
            database_url=f"sqlite:///{tmp_path / 'app.db'}", migrations_dir=directory
        )
        result = run_migrations(settings)
        assert isinstance(result.error, ConfigError)

    def test_unsupported_url_is_err(self, tmp_path):
        settings = MigrationSettings(database_url="mysql://localhost/app", migrations_dir=tmp_path)
        result = run_migrations(settings)
        assert isinstance(result.error, ConfigError)

    def test_unopenable_database_is_err(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("not a directory")
        settings = MigrationSettings(
            database_url=f"sqlite:///{blocker / 'sub' / 'app.db'}", migrations_dir=tmp_path
        )
        result = run_migrations(settings)
        assert isinstance(result.error, DatabaseConnectionError)

    def test_reads_environment(self, tmp_path, write_migrations, monkeypatch):
        directory = write_migrations({"001_a": "CREATE TABLE a (id INTEGER);"})
        monkeypatch.setenv("SCHEMASPINE_DATABASE_URL", f"sqlite:///{tmp_path / 'env.db'}")
        monkeypatch.setenv("SCHEMASPINE_MIGRATIONS_DIR", str(directory))
        assert run_migrations().unwrap() == 1
