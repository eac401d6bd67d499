"""
Shared pytest fixtures and configuration for schema-spine tests.

This module provides:
- In-memory SQLite connections wired for explicit transactions
- A recording fake connection for failure paths and PostgreSQL-only SQL
- A helper for writing ``NNN_description.sql`` files into a temp directory
- structlog context cleanup between tests

Usage:
    Fixtures are auto-discovered by pytest::

        def test_something(conn, write_migrations):
            directory = write_migrations({"001_init": "CREATE TABLE t (id INT);"})
"""

from __future__ import annotations

import sys
import textwrap
from collections.abc import Callable, Generator
from pathlib import Path
from typing import Any

import pytest

# Ensure schemaspine package is importable
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from schemaspine.core.logging import clear_context  # noqa: E402
from schemaspine.core.sqlite_conn import SqliteConnection  # noqa: E402


FIXTURES_DIR = Path(__file__).parent / "fixtures"


# =============================================================================
# Fake connection
# =============================================================================


class RecordingConnection:
    """Connection fake that records every call.

    Parameters
    ----------
    fail_on
        Substring; any ``execute`` whose SQL contains it raises RuntimeError.
    rows
        Rows returned by ``fetchall()`` after any execute.
    fail_commit, fail_rollback
        Make ``commit()`` / ``rollback()`` raise.
    fail_commit_at
        1-based number of the only ``commit()`` call that raises.
    """

    def __init__(
        self,
        *,
        fail_on: str | None = None,
        rows: list[tuple[Any, ...]] | None = None,
        fail_commit: bool = False,
        fail_rollback: bool = False,
        fail_commit_at: int | None = None,
    ) -> None:
        self.calls: list[tuple[Any, ...]] = []
        self.fail_on = fail_on
        self.rows = rows or []
        self.fail_commit = fail_commit
        self.fail_rollback = fail_rollback
        self.fail_commit_at = fail_commit_at
        self.commits = 0
        self.closed = False

    def execute(self, sql: str, params: tuple = ()) -> RecordingConnection:
        self.calls.append(("execute", sql, tuple(params)))
        if self.fail_on is not None and self.fail_on in sql:
            raise RuntimeError(f"engine rejected: {sql}")
        return self

    def fetchall(self) -> list[tuple[Any, ...]]:
        return list(self.rows)

    def commit(self) -> None:
        self.calls.append(("commit",))
        self.commits += 1
        if self.fail_commit or self.commits == self.fail_commit_at:
            raise RuntimeError("commit failed")

    def rollback(self) -> None:
        self.calls.append(("rollback",))
        if self.fail_rollback:
            raise RuntimeError("rollback failed")

    def close(self) -> None:
        self.closed = True

    @property
    def statements(self) -> list[str]:
        return [call[1] for call in self.calls if call[0] == "execute"]

    @property
    def trace(self) -> list[str]:
        """Calls flattened to SQL text / ``"commit"`` / ``"rollback"``."""
        return [call[1] if call[0] == "execute" else call[0] for call in self.calls]


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def _clear_log_context() -> Generator[None, None, None]:
    """Keep bound structlog context from leaking between tests."""
    clear_context()
    yield
    clear_context()


@pytest.fixture()
def conn() -> Generator[SqliteConnection, None, None]:
    """In-memory SQLite connection."""
    c = SqliteConnection(":memory:")
    yield c
    c.close()


@pytest.fixture()
def fake_conn() -> Callable[..., RecordingConnection]:
    """Factory for RecordingConnection instances."""
    return RecordingConnection


@pytest.fixture()
def write_migrations(tmp_path: Path) -> Callable[[dict[str, str]], Path]:
    """Write ``{stem: sql}`` into ``tmp_path/migrations`` and return the directory."""

    def _write(files: dict[str, str]) -> Path:
        directory = tmp_path / "migrations"
        directory.mkdir(exist_ok=True)
        for stem, sql in files.items():
            (directory / f"{stem}.sql").write_text(textwrap.dedent(sql), encoding="utf-8")
        return directory

    return _write


def table_names(conn: SqliteConnection) -> set[str]:
    rows = conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'").fetchall()
    return {row[0] for row in rows}


@pytest.fixture()
def tables() -> Callable[[SqliteConnection], set[str]]:
    """Return a helper listing the tables of a SQLite connection."""
    return table_names
