"""
Structured error types for schema-spine.

Provides a small hierarchy of typed errors with rich metadata for
categorization, operator reporting, and root cause analysis through
error chaining.

Every failure that can stop a migration run is a ``MigrationError``. The
surrounding application aborts startup on any of them and surfaces the error
verbatim to an operator, so each error carries enough context to point at the
exact script, statement ordinal, and source position that failed:

- **Category:** What kind of failure (parse, database, ledger, config, lock)
- **Context:** Script identifier, statement ordinal, offset, line, metadata
- **Cause:** Chained underlying driver exception for root cause analysis

Manifesto:
    - **Typed Error Hierarchy:** One class per failure the operator must act on
    - **Never Retried:** Re-attempting partially-applied DDL is unsafe, so no
      error in this module is retryable
    - **Rich Context:** Errors carry metadata for logging and alerting
    - **Error Chaining:** Preserve original exceptions while adding context

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                       MigrationError                             │
        │              (category, context, cause)                          │
        ├─────────────────────────────────────────────────────────────────┤
        │                                                                  │
        │  UnterminatedBlockError   StatementExecutionFailedError          │
        │  (PARSE)                  (DATABASE)                             │
        │                                                                  │
        │  LedgerUnavailableError   InvalidScriptSetError                  │
        │  (LEDGER)                 (VALIDATION)                           │
        │                                                                  │
        │  ConfigError   DatabaseConnectionError   LockError               │
        │  (CONFIG)      (DATABASE)                (LOCK)                  │
        └─────────────────────────────────────────────────────────────────┘

Examples:
    Adding context to an error:

    >>> error = LedgerUnavailableError("ledger row has no identifier")
    >>> error.with_context(migration_id="003_add_multi_tenancy")
    LedgerUnavailableError(...)
    >>> error.context.migration_id
    '003_add_multi_tenancy'

    Chaining errors for root cause:

    >>> try:
    ...     conn.execute("CREATE TABLE t (")
    ... except sqlite3.Error as e:
    ...     raise StatementExecutionFailedError(
    ...         "syntax error", migration_id="001_init", ordinal=3, cause=e
    ...     )
    Traceback (most recent call last):
    ...
    StatementExecutionFailedError: syntax error

Guardrails:
    ❌ DON'T: Raise bare Exception from migration code - loses all metadata
    ✅ DO: Use the appropriate MigrationError subclass

    ❌ DON'T: Swallow the original driver exception
    ✅ DO: Pass it as cause= for error chaining

Tags:
    error-handling, exception-hierarchy, error-context, migrations,
    schema-spine, observability
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """
    Standard error categories for classification and routing.

    Categories are grouped by who has to act:
    - **Script authors:** PARSE, VALIDATION
    - **Database operators:** DATABASE, LEDGER, LOCK
    - **Deployers:** CONFIG
    - **Maintainers:** INTERNAL

    Examples:
        >>> ErrorCategory.PARSE.value
        'PARSE'
        >>> MigrationError("boom", category=ErrorCategory.LEDGER).category
        <ErrorCategory.LEDGER: 'LEDGER'>
    """

    PARSE = "PARSE"               # Unterminated quote / dollar block / comment
    VALIDATION = "VALIDATION"     # Duplicate or malformed script set
    DATABASE = "DATABASE"         # Engine rejected a statement, connect failure
    LEDGER = "LEDGER"             # Tracking table unreachable or corrupt
    LOCK = "LOCK"                 # Mutual exclusion could not be obtained
    CONFIG = "CONFIG"             # Missing or invalid settings
    INTERNAL = "INTERNAL"         # Bugs, unexpected state


@dataclass
class ErrorContext:
    """
    Structured metadata context for migration errors.

    ErrorContext gives every error the same set of typed fields so logs and
    operator reports always name the failing script and position the same way.
    Anything else goes into ``metadata``. ``to_dict()`` serializes only the
    fields that are set.

    Examples:
        >>> ctx = ErrorContext(migration_id="002_roles", statement_ordinal=2)
        >>> ctx.to_dict()
        {'migration_id': '002_roles', 'statement_ordinal': 2}

        >>> ctx = ErrorContext(offset=120, line=7)
        >>> ctx.metadata["mode"] = "dollar_quote"
        >>> ctx.to_dict()
        {'offset': 120, 'line': 7, 'mode': 'dollar_quote'}

    Attributes:
        migration_id: Identifier of the script being processed
        statement_ordinal: 1-based position of the statement within the script
        statement: Text of the failing statement
        offset: Character offset into the script text
        line: 1-based line number into the script text
        metadata: Additional key-value pairs
    """

    migration_id: str | None = None
    statement_ordinal: int | None = None
    statement: str | None = None
    offset: int | None = None
    line: int | None = None

    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["migration_id", "statement_ordinal", "statement", "offset", "line"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class MigrationError(Exception):
    """
    Base exception for all schema-spine errors.

    Every error that ends a migration run extends MigrationError so that the
    caller can handle the whole family with one ``except`` clause or one
    ``Err`` match arm, and so that every error serializes the same way.

    Subclasses set ``default_category`` to classify themselves. No error is
    retryable: the run is fatal and the operator decides what happens next.

    Examples:
        >>> err = MigrationError("ledger exploded", category=ErrorCategory.LEDGER)
        >>> err.to_dict()["category"]
        'LEDGER'
        >>> err.retryable
        False

    Args:
        message: Human-readable description
        category: Overrides ``default_category``
        context: Pre-built ErrorContext
        cause: Underlying exception
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.context = context or ErrorContext()
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause

    @property
    def retryable(self) -> bool:
        return False

    def with_context(self, **kwargs: Any) -> MigrationError:
        """Set context fields in place and return self for chaining.

        Unknown keys land in ``context.metadata``.
        """
        for key, value in kwargs.items():
            if hasattr(self.context, key) and key != "metadata":
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Serialize for logging / operator output."""
        result: dict[str, Any] = {
            "error_type": type(self).__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        context = self.context.to_dict()
        if context:
            result["context"] = context
        if self.cause is not None:
            result["cause"] = f"{type(self.cause).__name__}: {self.cause}"
        return result

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# SPLITTER ERRORS
# =============================================================================


class UnterminatedBlockError(MigrationError):
    """A quoted string, quoted identifier, dollar block or block comment never closed.

    The script itself is malformed. ``mode`` names the lexical region that was
    open at end of input; ``tag`` is the dollar tag for dollar-quoted blocks.
    ``offset`` and ``line`` point at the opening delimiter.
    """

    default_category = ErrorCategory.PARSE

    def __init__(
        self,
        mode: str,
        *,
        offset: int,
        line: int,
        tag: str | None = None,
        migration_id: str | None = None,
    ):
        opener = f"${tag}$" if tag is not None else mode
        super().__init__(
            f"Unterminated {mode.replace('_', ' ')} opened by {opener!r} at line {line}",
            context=ErrorContext(migration_id=migration_id, offset=offset, line=line),
        )
        self.mode = mode
        self.tag = tag
        self.context.metadata["mode"] = mode
        if tag is not None:
            self.context.metadata["tag"] = tag


# =============================================================================
# RUNNER ERRORS
# =============================================================================


class StatementExecutionFailedError(MigrationError):
    """The database engine rejected a statement of a pending script."""

    default_category = ErrorCategory.DATABASE

    def __init__(
        self,
        message: str,
        *,
        migration_id: str,
        ordinal: int,
        statement: str | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(
            f"Migration {migration_id} failed at statement {ordinal}: {message}",
            context=ErrorContext(
                migration_id=migration_id,
                statement_ordinal=ordinal,
                statement=statement,
            ),
            cause=cause,
        )

    @property
    def migration_id(self) -> str:
        return self.context.migration_id or ""

    @property
    def ordinal(self) -> int:
        return self.context.statement_ordinal or 0


class LedgerUnavailableError(MigrationError):
    """Tracking table could not be created, read, or written, or holds bad rows."""

    default_category = ErrorCategory.LEDGER


class InvalidScriptSetError(MigrationError):
    """The supplied scripts cannot be ordered (e.g. duplicate identifiers)."""

    default_category = ErrorCategory.VALIDATION


class LockError(MigrationError):
    """The migration lock could not be acquired."""

    default_category = ErrorCategory.LOCK


# =============================================================================
# INFRASTRUCTURE ERRORS
# =============================================================================


class ConfigError(MigrationError):
    """Invalid configuration (unknown URL scheme, bad ledger table name...)."""

    default_category = ErrorCategory.CONFIG


class DatabaseConnectionError(MigrationError):
    """Could not open the target database."""

    default_category = ErrorCategory.DATABASE


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "MigrationError",
    "UnterminatedBlockError",
    "StatementExecutionFailedError",
    "LedgerUnavailableError",
    "InvalidScriptSetError",
    "LockError",
    "ConfigError",
    "DatabaseConnectionError",
]
