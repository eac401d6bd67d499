"""Load migration scripts from a directory.

Scripts are files named ``NNN_description.sql`` (e.g. ``001_initial_schema.sql``,
``003_add_multi_tenancy.sql``). The identifier is the file stem, so ordering
is plain string ordering of stems; zero-pad the numeric prefix.
"""

from __future__ import annotations

import re
from pathlib import Path

from schemaspine.core.errors import ConfigError
from schemaspine.core.logging import get_logger
from schemaspine.core.migrations.models import MigrationScript

logger = get_logger(__name__)

MIGRATION_FILENAME = re.compile(r"^(\d+)_(.+)\.sql$")


def load_scripts(directory: Path | str) -> list[MigrationScript]:
    """Read every ``NNN_description.sql`` file in ``directory``, sorted by id.

    Files that do not match the naming convention are skipped with a
    warning. A missing directory yields an empty list.

    Raises:
        ConfigError: ``directory`` exists but is not a directory, or a
            script is not valid UTF-8.
    """
    directory = Path(directory)
    if not directory.exists():
        logger.warning("migration.dir_missing", path=str(directory))
        return []
    if not directory.is_dir():
        raise ConfigError(f"Migrations path is not a directory: {directory}")

    scripts: list[MigrationScript] = []
    for path in sorted(directory.glob("*.sql")):
        if not MIGRATION_FILENAME.match(path.name):
            logger.warning("migration.skipped_file", file=path.name)
            continue
        try:
            sql = path.read_text(encoding="utf-8")
        except UnicodeDecodeError as e:
            raise ConfigError(f"Migration {path.name} is not valid UTF-8", cause=e) from e
        scripts.append(MigrationScript(id=path.stem, sql=sql, path=path))

    return sorted(scripts, key=lambda s: s.id)


__all__ = ["load_scripts", "MIGRATION_FILENAME"]
