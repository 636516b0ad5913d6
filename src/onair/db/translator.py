"""Backend-neutral statement translation.

Statements are written once using ``?`` as the positional placeholder and
rewritten per backend right before they reach the driver. Placeholders are
located by a single left-to-right scan that skips quoted literals, quoted
identifiers and comments, so a ``?`` inside ``'what?'`` is never counted and
the n-th placeholder always becomes native parameter n. PostgreSQL ``E'...'``
literals also honour backslash escapes.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, Final

from onair.db.errors import TranslationError

NEUTRAL_PLACEHOLDER: Final[str] = "?"

INSERT_KEYWORDS: Final[frozenset[str]] = frozenset({"INSERT", "REPLACE"})

_KEYWORD_RE = re.compile(r"[A-Za-z_]+")
_RETURNING_RE = re.compile(r"\bRETURNING\b", re.IGNORECASE)


@dataclass(frozen=True)
class ScannedStatement:
    """Result of scanning a neutral statement once.

    Attributes:
        text: The original statement.
        placeholders: Offsets of every neutral placeholder, in order.
        masked: ``text`` with literals and comments blanked out, used for
            keyword checks that must not look inside string values.
    """

    text: str
    placeholders: tuple[int, ...]
    masked: str

    @property
    def keyword(self) -> str:
        match = _KEYWORD_RE.search(self.masked)
        return match.group(0).upper() if match else ""

    @property
    def is_insert(self) -> bool:
        return self.keyword in INSERT_KEYWORDS

    @property
    def has_returning(self) -> bool:
        return _RETURNING_RE.search(self.masked) is not None

    @property
    def body_end(self) -> int:
        """Offset just past the last meaningful character (trailing ``;`` excluded)."""
        stripped = self.masked.rstrip()
        if stripped.endswith(";"):
            stripped = stripped[:-1].rstrip()
        return len(stripped)


def _is_escape_string(text: str, quote_at: int) -> bool:
    """True for a PostgreSQL ``E'...'`` literal, where backslash escapes a quote."""
    if text[quote_at] != "'" or quote_at == 0 or text[quote_at - 1] not in "Ee":
        return False
    before = quote_at - 2
    return before < 0 or not (text[before].isalnum() or text[before] == "_")


def _quoted_end(text: str, start: int, *, backslash_escapes: bool = False) -> int:
    quote = text[start]
    index = start + 1
    length = len(text)
    while index < length:
        if backslash_escapes and text[index] == "\\":
            index += 2
            continue
        if text[index] == quote:
            # A doubled quote is an escaped quote, not the terminator.
            if index + 1 < length and text[index + 1] == quote:
                index += 2
                continue
            return index + 1
        index += 1
    kind = "string literal" if quote == "'" else "quoted identifier"
    raise TranslationError(f"Unterminated {kind} starting at offset {start}")


def scan(statement: str) -> ScannedStatement:
    """Locate neutral placeholders outside literals and comments."""
    placeholders: list[int] = []
    masked = list(statement)
    length = len(statement)
    index = 0

    while index < length:
        char = statement[index]
        if char == NEUTRAL_PLACEHOLDER:
            placeholders.append(index)
            index += 1
            continue

        if char in ("'", '"'):
            end = _quoted_end(
                statement,
                index,
                backslash_escapes=_is_escape_string(statement, index),
            )
        elif statement.startswith("--", index):
            newline = statement.find("\n", index)
            end = length if newline == -1 else newline
        elif statement.startswith("/*", index):
            close = statement.find("*/", index + 2)
            if close == -1:
                raise TranslationError(f"Unterminated block comment starting at offset {index}")
            end = close + 2
        else:
            index += 1
            continue

        masked[index:end] = " " * (end - index)
        index = end

    return ScannedStatement(
        text=statement,
        placeholders=tuple(placeholders),
        masked="".join(masked),
    )


@dataclass(frozen=True)
class TranslatedStatement:
    """A statement ready for the driver, plus how its result must be shaped."""

    sql: str
    params: tuple[Any, ...]
    is_insert: bool
    returns_id: bool = False


class QueryTranslator:
    """Rewrite neutral statements into a backend's native syntax.

    Subclasses choose the native placeholder for a 1-based ordinal and
    whether insertions need an explicit clause to report the generated id.
    """

    dialect: str = "neutral"
    appends_returning: bool = False

    def __init__(self, id_column: str = "id") -> None:
        self.id_column = id_column

    def placeholder(self, ordinal: int) -> str:
        raise NotImplementedError

    def translate(
        self,
        statement: str,
        params: Sequence[Any] = (),
        *,
        mutation: bool = False,
    ) -> TranslatedStatement:
        """Translate ``statement`` and validate it against ``params``.

        Args:
            statement: Neutral SQL using ``?`` placeholders.
            params: Positional values, one per placeholder.
            mutation: True when the caller expects a write result; only then
                is a returning clause appended to insertions.

        Raises:
            TranslationError: If the statement is malformed or the number of
                placeholders differs from the number of parameters.
        """
        scanned = scan(statement)
        values = tuple(params)
        if len(scanned.placeholders) != len(values):
            raise TranslationError(
                f"Statement has {len(scanned.placeholders)} placeholder(s) "
                f"but {len(values)} parameter(s) were supplied"
            )

        text = statement
        returns_id = False
        if (
            mutation
            and scanned.is_insert
            and self.appends_returning
            and not scanned.has_returning
        ):
            end = scanned.body_end
            text = f"{statement[:end]} RETURNING {self.id_column}{statement[end:]}"
            returns_id = True

        return TranslatedStatement(
            sql=self._rewrite(text, scanned.placeholders),
            params=values,
            is_insert=scanned.is_insert,
            returns_id=returns_id,
        )

    def _rewrite(self, text: str, offsets: tuple[int, ...]) -> str:
        parts: list[str] = []
        cursor = 0
        for ordinal, offset in enumerate(offsets, start=1):
            parts.append(text[cursor:offset])
            parts.append(self.placeholder(ordinal))
            cursor = offset + 1
        parts.append(text[cursor:])
        return "".join(parts)


class SqliteTranslator(QueryTranslator):
    """SQLite shares the neutral ``?`` syntax and reports ``lastrowid`` itself."""

    dialect = "sqlite"

    def placeholder(self, ordinal: int) -> str:
        return NEUTRAL_PLACEHOLDER


class PostgresTranslator(QueryTranslator):
    """PostgreSQL uses ``$1..$n`` and needs ``RETURNING`` for generated ids."""

    dialect = "postgresql"
    appends_returning = True

    def placeholder(self, ordinal: int) -> str:
        return f"${ordinal}"
