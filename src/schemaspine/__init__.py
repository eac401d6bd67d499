"""
Schema Spine - SQL migrations applied once, in order, at service startup.

- schemaspine.core: errors, Result envelope, logging, settings, connections
- schemaspine.core.migrations: statement splitter, ledger and runner
"""

__version__ = "0.1.0"

from schemaspine.core.migrations import apply_all, run_migrations  # noqa: E402

__all__ = ["__version__", "apply_all", "run_migrations"]
