"""SQLAlchemy engine factory and Connection bridge.

Manifesto:
    PostgreSQL access goes through SQLAlchemy so that pooling, URL parsing
    and driver selection stay in one well-known place.  The runner only
    sees the ``schemaspine.core.protocols.Connection`` protocol, which
    ``SAConnectionBridge`` provides on top of a single SQLAlchemy
    ``Connection``.

A single pinned connection (not a ``Session``) is used on purpose: the
PostgreSQL advisory lock is held by the server-side session, so lock,
ledger reads, script statements and unlock must all travel over the same
DBAPI connection.

Migration statements are sent with ``exec_driver_sql`` and the
``no_parameters`` execution option, so neither SQLAlchemy's ``:name`` bind
syntax nor the driver's ``%`` formatting ever touches script text.

Tags:
    schema-spine, sqlalchemy, engine, bridge, connection
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import create_engine as _sa_create_engine
from sqlalchemy.engine import Connection as SAConnection
from sqlalchemy.engine import Engine

from schemaspine.core.dialect import Dialect, get_dialect


def create_spine_engine(url: str) -> Engine:
    """Create a SQLAlchemy engine for ``url`` (``postgresql://...``)."""
    return _sa_create_engine(url)


class SAConnectionBridge:
    """Adapter that makes a SQLAlchemy ``Connection`` look like our ``Connection``.

    Parameters use the DBAPI driver's positional style (``%s`` for psycopg).
    SQLAlchemy 2.0 autobegins a transaction on first execute; ``commit`` and
    ``rollback`` end it.
    """

    def __init__(self, connection: SAConnection) -> None:
        self._connection = connection
        self._last_result: Any = None
        self.dialect: Dialect = get_dialect(connection.dialect.name)

    @classmethod
    def from_url(cls, url: str) -> SAConnectionBridge:
        engine = create_spine_engine(url)
        return cls(engine.connect())

    def execute(self, sql: str, params: tuple = ()) -> SAConnectionBridge:
        if params:
            self._last_result = self._connection.exec_driver_sql(sql, tuple(params))
        else:
            self._last_result = self._connection.exec_driver_sql(
                sql, execution_options={"no_parameters": True}
            )
        return self

    def fetchall(self) -> list[tuple[Any, ...]]:
        if self._last_result is None or not self._last_result.returns_rows:
            return []
        return [tuple(r) for r in self._last_result.fetchall()]

    def commit(self) -> None:
        self._connection.commit()

    def rollback(self) -> None:
        self._connection.rollback()

    def close(self) -> None:
        engine = self._connection.engine
        self._connection.close()
        engine.dispose()
