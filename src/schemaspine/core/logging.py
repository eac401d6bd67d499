"""
Standardized structured logging for schema-spine.

Migrations run once at service startup, usually inside a container whose
stdout is shipped to a log aggregator. This module configures structlog so
that every migration event is a single structured record: JSON when stdout is
not a terminal, coloured console output when it is.

Manifesto:
    - **Structured:** ``logger.info("migration.applied", migration_id=...)``,
      never interpolated strings
    - **Correlated:** ``LogContext(migration_id=...)`` tags every record
      emitted while a script executes
    - **Flexible:** Console output for development, JSON for production

Architecture:
    ::

        configure_logging(level="INFO", json_format=None, service="schema-spine")
            │
            ▼
        structlog processor chain:
          1. TimeStamper (iso, UTC)
          2. merge_contextvars       ← LogContext
          3. add_log_level, add_logger_name
          4. stamp_service           → service.name
          5. rename_ecs_fields       → @timestamp, log.level, log.logger (JSON only)
          6. JSONRenderer | ConsoleRenderer

Examples:
    >>> from schemaspine.core.logging import configure_logging, get_logger
    >>> configure_logging(level="INFO", json_format=True)
    >>> logger = get_logger(__name__)
    >>> logger.info("migration.applied", migration_id="001_init", statements=4)

Tags:
    logging, structlog, observability, json-logging, schema-spine
"""

from __future__ import annotations

import logging
import sys
from contextlib import AbstractContextManager
from typing import Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

_service = "schema-spine"

# structlog key -> ECS field name, applied to JSON output only
_ECS_FIELDS = {
    "timestamp": "@timestamp",
    "level": "log.level",
    "logger": "log.logger",
}


def _stamp_service(_: WrappedLogger, __: str, event_dict: EventDict) -> EventDict:
    event_dict.setdefault("service.name", _service)
    return event_dict


def _rename_ecs_fields(_: WrappedLogger, __: str, event_dict: EventDict) -> EventDict:
    for key, ecs_key in _ECS_FIELDS.items():
        if key in event_dict:
            event_dict[ecs_key] = event_dict.pop(key)
    return event_dict


def _build_processors(json_format: bool, add_timestamp: bool) -> list[Processor]:
    processors: list[Processor] = []
    if add_timestamp:
        processors.append(structlog.processors.TimeStamper(fmt="iso", utc=True))
    processors += [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        _stamp_service,
    ]
    if json_format:
        processors += [
            structlog.processors.format_exc_info,
            _rename_ecs_fields,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))
    return processors


def configure_logging(
    level: str = "INFO",
    json_format: bool | None = None,
    service: str = "schema-spine",
    add_timestamp: bool = True,
) -> None:
    """Route structlog through the stdlib ``logging`` module.

    Args:
        level: Minimum level name, e.g. ``"DEBUG"`` while diagnosing a run
        json_format: JSON lines (True), console (False), or JSON unless stdout
            is a terminal (None)
        service: Value of ``service.name`` on every record
        add_timestamp: Prefix records with a UTC ISO-8601 timestamp
    """
    global _service
    _service = service
    numeric_level = getattr(logging, level.upper())

    if json_format is None:
        json_format = not sys.stdout.isatty()

    structlog.configure(
        processors=_build_processors(json_format, add_timestamp),
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # SQLAlchemy and the DB drivers log through the stdlib root logger
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=numeric_level)


def get_logger(name: str | None = None) -> Any:
    """Return a structlog logger; modules call ``get_logger(__name__)``."""
    return structlog.get_logger(name)


def clear_context() -> None:
    """Drop every key bound with ``LogContext``."""
    structlog.contextvars.clear_contextvars()


class LogContext:
    """Bind keys onto every record logged inside the ``with`` block.

    Example:
        with LogContext(migration_id="002_roles"):
            logger.info("migration.applied", statements=3)
    """

    def __init__(self, **kwargs: Any):
        self._context = kwargs
        self._bound: AbstractContextManager[Any] | None = None

    def __enter__(self) -> LogContext:
        self._bound = structlog.contextvars.bound_contextvars(**self._context)
        self._bound.__enter__()
        return self

    def __exit__(self, *args: Any) -> None:
        if self._bound is not None:
            self._bound.__exit__(*args)
            self._bound = None


__all__ = [
    "configure_logging",
    "get_logger",
    "clear_context",
    "LogContext",
]
