"""
Ok / Err envelope for outcomes the caller must inspect.

A ``Result[T]`` is either ``Ok(value)`` or ``Err(exception)``. The migration
entry point returns ``Result[int]`` (number of newly applied scripts, or the
``MigrationError`` that ended the run) so that the surrounding application must
look at the outcome before it finishes starting up.

Manifesto:
    - **Explicit over Implicit:** A failed run is a value, not a hidden exception
    - **Operator-friendly:** ``Err.to_dict()`` serializes the full error context
    - **Functional composition:** Chain with map/flat_map without nested try/except

Architecture:
    ::

        Result[T] = Ok[T] | Err[T]

        Ok(value)    map, flat_map  → apply to value
                     map_err, or_else → pass through
        Err(error)   map, flat_map  → pass through
                     map_err, or_else → apply to error
        try_result(f) / try_result_with(f, mapper) → capture exceptions

Examples:
    >>> from schemaspine.core.result import Ok, Err
    >>> result = apply_all(scripts, conn)
    >>> match result:
    ...     case Ok(count):
    ...         print(f"applied {count}")
    ...     case Err(error):
    ...         print(f"failed: {error}")
    applied 3

Tags:
    result-pattern, error-handling, functional-programming, schema-spine
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from schemaspine.core.errors import MigrationError


T = TypeVar("T")
U = TypeVar("U")


@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    """A finished operation and what it produced.

    >>> Ok(2).map(lambda n: n + 1)
    Ok(3)
    """

    value: T

    def is_ok(self) -> bool:
        return True

    def is_err(self) -> bool:
        return False

    def unwrap(self) -> T:
        return self.value

    def unwrap_or(self, default: T) -> T:  # noqa: ARG002
        return self.value

    def map(self, f: Callable[[T], U]) -> Result[U]:
        return Ok(f(self.value))

    def flat_map(self, f: Callable[[T], Result[U]]) -> Result[U]:
        """Feed the value to the next step, which decides success itself."""
        return f(self.value)

    def map_err(self, f: Callable[[Exception], Exception]) -> Result[T]:  # noqa: ARG002
        return self

    def or_else(self, f: Callable[[Exception], Result[T]]) -> Result[T]:  # noqa: ARG002
        return self

    def to_dict(self) -> dict[str, Any]:
        return {"ok": True, "value": self.value}

    def __repr__(self) -> str:
        return f"Ok({self.value!r})"


@dataclass(frozen=True, slots=True)
class Err(Generic[T]):
    """A failed operation and the exception that ended it.

    Value-side combinators pass the error through untouched. ``unwrap()``
    raises it, turning a failed run back into an exception for callers that
    prefer one.

    >>> Err(ValueError("bad")).map(lambda n: n + 1).unwrap_or(0)
    0
    """

    error: Exception

    def is_ok(self) -> bool:
        return False

    def is_err(self) -> bool:
        return True

    def unwrap(self) -> T:
        raise self.error

    def unwrap_or(self, default: T) -> T:
        return default

    def map(self, f: Callable[[T], U]) -> Result[U]:  # noqa: ARG002
        return Err(self.error)

    def flat_map(self, f: Callable[[T], Result[U]]) -> Result[U]:  # noqa: ARG002
        return Err(self.error)

    def map_err(self, f: Callable[[Exception], Exception]) -> Result[T]:
        """Replace the error, e.g. wrap a driver exception in a MigrationError."""
        return Err(f(self.error))

    def or_else(self, f: Callable[[Exception], Result[T]]) -> Result[T]:
        """Give ``f`` a chance to recover from the error."""
        return f(self.error)

    def to_dict(self) -> dict[str, Any]:
        """Operator-facing payload; MigrationErrors keep their full context."""
        if isinstance(self.error, MigrationError):
            detail = self.error.to_dict()
        else:
            detail = {"error_type": type(self.error).__name__, "message": str(self.error)}
        return {"ok": False, "error": detail}

    def __repr__(self) -> str:
        return f"Err({self.error!r})"


Result = Ok[T] | Err[T]


def try_result(f: Callable[[], T]) -> Result[T]:
    """Call ``f`` and capture its return value or the exception it raised.

    >>> try_result(lambda: int("x")).is_err()
    True
    """
    return try_result_with(f)


def try_result_with(
    f: Callable[[], T],
    error_mapper: Callable[[Exception], Exception] | None = None,
) -> Result[T]:
    """Call ``f``; on failure pass the exception through ``error_mapper`` first.

    ``run_migrations`` uses this to turn filesystem errors while loading
    scripts into ``ConfigError``.
    """
    try:
        value = f()
    except Exception as e:
        return Err(error_mapper(e) if error_mapper else e)
    return Ok(value)


__all__ = [
    "Result",
    "Ok",
    "Err",
    "try_result",
    "try_result_with",
]
