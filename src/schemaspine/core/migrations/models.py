"""Data model for migration scripts, statements and ledger records."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path


@dataclass(frozen=True)
class MigrationScript:
    """One named, ordered unit of migration text.

    ``id`` is the sortable identifier (conventionally a zero-padded sequence
    number plus a description, e.g. ``003_add_multi_tenancy``). Scripts sort
    by ``id`` and nothing else.
    """

    id: str
    sql: str
    path: Path | None = field(default=None, compare=False)

    @property
    def checksum(self) -> str:
        """SHA-256 of the raw text, stored in the ledger to spot edited scripts."""
        return hashlib.sha256(self.sql.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class Statement:
    """One independently executable unit of SQL cut from a script.

    Attributes:
        text: Trimmed, non-empty statement text without its terminating ``;``
        script_id: Identifier of the script it came from
        ordinal: 1-based position within the script
        offset: Character offset of the first non-blank character
        line: 1-based line of the first non-blank character
    """

    text: str
    script_id: str | None
    ordinal: int
    offset: int
    line: int


@dataclass(frozen=True)
class AppliedMigration:
    """Ledger row: a script that has been fully executed."""

    migration_id: str
    applied_at: datetime | None
    checksum: str | None = None
    statement_count: int = 0


class RunState(str, Enum):
    """States a runner moves through during one ``run()``."""

    IDLE = "idle"
    SCANNING = "scanning"
    EXECUTING = "executing"
    RECORDING = "recording"
    FAILED = "failed"


__all__ = ["MigrationScript", "Statement", "AppliedMigration", "RunState"]
