"""Schema Spine Core -- shared primitives for the migration runner.

Architecture::

    Layer 1 -- Type System & Errors
        errors.py          Structured error hierarchy (MigrationError + subclasses)
        result.py          Result[T] envelope (Ok / Err / try_result)
        protocols.py       Connection and MigrationLock protocols

    Layer 2 -- Database
        dialect.py         SQLite / PostgreSQL ledger SQL and transaction start
        connection.py      Connection factory (create_connection)
        sqlite_conn.py     sqlite3 adapter (explicit transactions)
        sa_bridge.py       SQLAlchemy Connection bridge (PostgreSQL)

    Layer 3 -- Ambient
        logging.py         structlog configuration
        settings.py        pydantic-settings MigrationSettings

    migrations/            Statement splitter, ledger, locking, runner

Tags:
    schema-spine, core, primitives
"""

from schemaspine.core.errors import (
    ConfigError,
    DatabaseConnectionError,
    ErrorCategory,
    ErrorContext,
    InvalidScriptSetError,
    LedgerUnavailableError,
    LockError,
    MigrationError,
    StatementExecutionFailedError,
    UnterminatedBlockError,
)
from schemaspine.core.result import Err, Ok, Result, try_result, try_result_with

__all__ = [
    "ConfigError",
    "DatabaseConnectionError",
    "Err",
    "ErrorCategory",
    "ErrorContext",
    "InvalidScriptSetError",
    "LedgerUnavailableError",
    "LockError",
    "MigrationError",
    "Ok",
    "Result",
    "StatementExecutionFailedError",
    "UnterminatedBlockError",
    "try_result",
    "try_result_with",
]
