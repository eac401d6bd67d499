"""Statement splitter: cut one migration script into executable statements.

Naively splitting a script on ``;`` corrupts anything with a procedural body::

    DO $$
    BEGIN
        EXECUTE 'SELECT 1; SELECT 2;';
    END $$;

The splitter is a single left-to-right scan driven by an explicit finite
state machine over a handful of lexical delimiters. It is not a SQL parser:
it only knows where strings, quoted identifiers, dollar-quoted blocks and
comments start and end, which is exactly what is needed to know whether a
``;`` terminates a statement.

Manifesto:
    - **Linear and stack-safe:** one pass, no recursion, O(n) in script length
    - **Opaque bodies:** once inside ``$tag$ ... $tag$`` nothing is interpreted
    - **Fail loudly:** an unterminated region raises ``UnterminatedBlockError``
      instead of silently swallowing the rest of the script
    - **Pure:** a function of the input text; no state survives a call

Architecture:
    ::

        ┌────────────────┬──────────┬──────────────────────────────┐
        │ mode           │ entered  │ left at                      │
        ├────────────────┼──────────┼──────────────────────────────┤
        │ NORMAL         │          │ ; ends the statement         │
        │ SINGLE_QUOTE   │ '        │ lone ' ('' is an escape)     │
        │ DOUBLE_QUOTE   │ "        │ lone " ("" is an escape)     │
        │ DOLLAR_QUOTE   │ $tag$    │ the identical $tag$          │
        │ LINE_COMMENT   │ --       │ newline or end of input      │
        │ BLOCK_COMMENT  │ /*       │ */ (non-nesting)             │
        └────────────────┴──────────┴──────────────────────────────┘

        Every mode other than NORMAL is entered from NORMAL and returns to it.

Policies:
    - Emitted text is trimmed and excludes the terminating ``;``.
    - Comments stay in place inside the statement they precede or interrupt.
      Comments after the last code of a statement are dropped, and a segment
      holding only comments and whitespace is never emitted.
    - Dollar tags follow PostgreSQL: ``$$`` or ``$name$`` where ``name``
      starts with a letter or underscore. ``$1`` (positional parameter) and a
      ``$`` continuing an identifier (``price$usd``) are ordinary text.
    - End of input inside a string, quoted identifier, dollar block or block
      comment raises ``UnterminatedBlockError`` pointing at the opener.

Examples:
    >>> split_statements("CREATE TABLE a (id INT); CREATE INDEX i ON a (id);")
    ['CREATE TABLE a (id INT)', 'CREATE INDEX i ON a (id)']
    >>> split_statements("DO $$ BEGIN RAISE NOTICE 'a;b'; END $$;")
    ["DO $$ BEGIN RAISE NOTICE 'a;b'; END $$"]
    >>> split_statements("INSERT INTO t VALUES ('can''t fail');")
    ["INSERT INTO t VALUES ('can''t fail')"]

Tags:
    splitter, lexer, finite-state-machine, sql, dollar-quoting, schema-spine
"""

from __future__ import annotations

from collections.abc import Iterator
from enum import Enum

from schemaspine.core.errors import UnterminatedBlockError
from schemaspine.core.migrations.models import MigrationScript, Statement


class ScanMode(str, Enum):
    """Lexical mode of the scanner."""

    NORMAL = "normal"
    SINGLE_QUOTE = "single_quote"
    DOUBLE_QUOTE = "double_quote"
    DOLLAR_QUOTE = "dollar_quote"
    LINE_COMMENT = "line_comment"
    BLOCK_COMMENT = "block_comment"


def _is_identifier_char(ch: str) -> bool:
    return ch.isalnum() or ch in "_$"


def _dollar_tag(text: str, pos: int) -> str | None:
    """Return the tag of a dollar-quote opener at ``text[pos]``, or None.

    ``text[pos]`` must be ``$``. Returns ``""`` for ``$$``.
    """
    n = len(text)
    j = pos + 1
    if j < n and text[j] == "$":
        return ""
    if j >= n or not (text[j].isalpha() or text[j] == "_"):
        return None
    j += 1
    while j < n and (text[j].isalnum() or text[j] == "_"):
        j += 1
    if j < n and text[j] == "$":
        return text[pos + 1 : j]
    return None


class _LineCounter:
    """Maps increasing offsets to 1-based line numbers in amortized O(1)."""

    def __init__(self, text: str) -> None:
        self._text = text
        self._pos = 0
        self._line = 1

    def line_at(self, offset: int) -> int:
        if offset < self._pos:
            return self._text.count("\n", 0, offset) + 1
        self._line += self._text.count("\n", self._pos, offset)
        self._pos = offset
        return self._line


def iter_statements(sql: str, script_id: str | None = None) -> Iterator[Statement]:
    """Scan ``sql`` and yield its statements in order.

    Args:
        sql: Full text of one script. Empty text yields nothing.
        script_id: Identifier recorded on each Statement and on errors.

    Raises:
        UnterminatedBlockError: A quoted region or block comment never closes.
            Statements before the malformed one have already been yielded.
    """
    n = len(sql)
    lines = _LineCounter(sql)

    mode = ScanMode.NORMAL
    start = 0          # offset where the current statement segment began
    has_code = False   # segment holds something other than comments/whitespace
    code_end = 0       # offset just past the last code character of the segment
    open_at = 0        # offset of the delimiter that opened the current region
    tag: str | None = None
    ordinal = 0
    i = 0

    def emit() -> Statement:
        nonlocal ordinal
        segment = sql[start:code_end]
        text = segment.strip()
        offset = start + (len(segment) - len(segment.lstrip()))
        ordinal += 1
        return Statement(
            text=text,
            script_id=script_id,
            ordinal=ordinal,
            offset=offset,
            line=lines.line_at(offset),
        )

    def unterminated() -> UnterminatedBlockError:
        return UnterminatedBlockError(
            mode.value,
            offset=open_at,
            line=lines.line_at(open_at),
            tag=tag if mode is ScanMode.DOLLAR_QUOTE else None,
            migration_id=script_id,
        )

    while i < n:
        ch = sql[i]

        if mode is ScanMode.NORMAL:
            if ch == ";":
                if has_code:
                    yield emit()
                i += 1
                start = i
                has_code = False
                continue
            if ch == "-" and sql.startswith("--", i):
                mode = ScanMode.LINE_COMMENT
                i += 2
                continue
            if ch == "/" and sql.startswith("/*", i):
                mode = ScanMode.BLOCK_COMMENT
                open_at = i
                i += 2
                continue
            if not ch.isspace():
                has_code = True
                code_end = i + 1
            if ch == "'":
                mode = ScanMode.SINGLE_QUOTE
                open_at = i
            elif ch == '"':
                mode = ScanMode.DOUBLE_QUOTE
                open_at = i
            elif ch == "$" and (i == 0 or not _is_identifier_char(sql[i - 1])):
                tag = _dollar_tag(sql, i)
                if tag is not None:
                    mode = ScanMode.DOLLAR_QUOTE
                    open_at = i
                    i += len(tag) + 2
                    continue
            i += 1

        elif mode is ScanMode.SINGLE_QUOTE or mode is ScanMode.DOUBLE_QUOTE:
            quote = "'" if mode is ScanMode.SINGLE_QUOTE else '"'
            close = sql.find(quote, i)
            if close == -1:
                raise unterminated()
            if sql.startswith(quote * 2, close):
                # doubled quote is an escaped quote, stay inside
                i = close + 2
                continue
            mode = ScanMode.NORMAL
            i = code_end = close + 1

        elif mode is ScanMode.DOLLAR_QUOTE:
            delimiter = f"${tag}$"
            close = sql.find(delimiter, i)
            if close == -1:
                raise unterminated()
            mode = ScanMode.NORMAL
            tag = None
            i = code_end = close + len(delimiter)

        elif mode is ScanMode.LINE_COMMENT:
            newline = sql.find("\n", i)
            mode = ScanMode.NORMAL
            i = n if newline == -1 else newline + 1

        else:  # BLOCK_COMMENT
            close = sql.find("*/", i)
            if close == -1:
                raise unterminated()
            mode = ScanMode.NORMAL
            i = close + 2

    if mode not in (ScanMode.NORMAL, ScanMode.LINE_COMMENT):
        raise unterminated()

    if has_code:
        yield emit()


def split_statements(sql: str) -> list[str]:
    """Split script text into trimmed, non-empty statement strings."""
    return [statement.text for statement in iter_statements(sql)]


def split_script(script: MigrationScript) -> list[Statement]:
    """Split a script into Statements tagged with its identifier and ordinals."""
    return list(iter_statements(script.sql, script_id=script.id))


__all__ = [
    "ScanMode",
    "iter_statements",
    "split_statements",
    "split_script",
]
