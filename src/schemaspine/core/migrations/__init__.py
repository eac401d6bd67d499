"""SQL migration runner for schema-spine.

Applies ordered migration scripts exactly once each, tracking what has been
applied in a ledger table inside the target database.

Modules
-------
models     MigrationScript, Statement, AppliedMigration, RunState
splitter   Statement splitter (quote/dollar/comment aware FSM)
ledger     Applied-migration table: ensure / applied / record
locking    NullLock and PostgreSQL advisory lock
source     Load ``NNN_description.sql`` files from a directory
runner     MigrationRunner, apply_all(), run_migrations()

Tags:
    schema-spine, migrations, schema, database, idempotent, DDL
"""

from schemaspine.core.migrations.ledger import Ledger
from schemaspine.core.migrations.locking import NullLock, PostgresAdvisoryLock, lock_for
from schemaspine.core.migrations.models import (
    AppliedMigration,
    MigrationScript,
    RunState,
    Statement,
)
from schemaspine.core.migrations.runner import (
    MigrationResult,
    MigrationRunner,
    apply_all,
    run_migrations,
)
from schemaspine.core.migrations.source import load_scripts
from schemaspine.core.migrations.splitter import split_script, split_statements

__all__ = [
    "AppliedMigration",
    "Ledger",
    "MigrationResult",
    "MigrationRunner",
    "MigrationScript",
    "NullLock",
    "PostgresAdvisoryLock",
    "RunState",
    "Statement",
    "apply_all",
    "load_scripts",
    "lock_for",
    "run_migrations",
    "split_script",
    "split_statements",
]
