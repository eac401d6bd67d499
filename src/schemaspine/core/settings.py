"""Settings for the migration runner.

The runner never reads process-wide state such as a "current migration
directory". Everything it needs is a ``MigrationSettings`` value, built once at
startup (usually from the environment) and passed in explicitly.

Manifesto:
    Configuration should be explicit, validated, and environment-driven.

    - **Pydantic validation:** Bad values fail at startup, not mid-migration
    - **Environment-driven:** Reads ``SCHEMASPINE_*`` env vars and ``.env``
    - **Sensible defaults:** A local SQLite file and ``./migrations``

Examples:
    >>> from schemaspine.core.settings import MigrationSettings
    >>> settings = MigrationSettings(database_url="sqlite:///:memory:")
    >>> settings.ledger_table
    'schema_migrations'

    Environment::

        SCHEMASPINE_DATABASE_URL=postgresql://app:app@db:5432/app
        SCHEMASPINE_MIGRATIONS_DIR=/srv/app/migrations

Tags:
    settings, configuration, pydantic, environment, schema-spine
"""

from __future__ import annotations

from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from schemaspine.core.dialect import is_sql_identifier


class MigrationSettings(BaseSettings):
    """Configuration passed into the migration runner at call time.

    Fields
    ──────
    database_url    : SQLite path/URL or PostgreSQL URL of the target database
    migrations_dir  : Directory holding ``NNN_description.sql`` scripts
    ledger_table    : Name of the applied-migration tracking table
    lock_key        : Name hashed into the PostgreSQL advisory lock key
    log_level       : structlog log level
    json_logs       : Force JSON (True) / console (False) logs; None = auto
    """

    model_config = SettingsConfigDict(
        env_prefix="SCHEMASPINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Database ─────────────────────────────────────────────────
    database_url: str = "sqlite:///schemaspine.db"
    migrations_dir: Path = Field(
        default_factory=lambda: Path("migrations"),
        description="Directory of NNN_description.sql migration scripts",
    )

    # ── Ledger / locking ─────────────────────────────────────────
    ledger_table: str = "schema_migrations"
    lock_key: str = "schemaspine.migrations"

    # ── Observability ────────────────────────────────────────────
    log_level: str = "INFO"
    json_logs: bool | None = None

    @field_validator("ledger_table")
    @classmethod
    def _ledger_table_is_identifier(cls, value: str) -> str:
        # Interpolated into DDL, so it must be a bare identifier
        if not is_sql_identifier(value):
            raise ValueError(f"ledger_table must be a plain SQL identifier, got {value!r}")
        return value

    @field_validator("log_level")
    @classmethod
    def _log_level_upper(cls, value: str) -> str:
        value = value.upper()
        if value not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unknown log level {value!r}")
        return value


__all__ = ["MigrationSettings"]
