"""Lexical read-only gate applied to every statement before it reaches a driver.

This is an allow-list, not a parser. A statement is permitted only when its
leading keyword appears in the engine's table below; everything else is
rejected. Rejecting a legitimate read-only statement is acceptable, letting a
write through is not.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple, Type

from adapters.errors import AdapterError, CapabilityViolation, InvalidInput
from adapters.models import EngineKind


@dataclass(frozen=True)
class StatementRules:
    allowed: Tuple[str, ...]
    # Patterns that disqualify an otherwise allowed statement.
    denied: Tuple[str, ...] = ()


_TRANSACTION_CONTROL = ("BEGIN", "COMMIT", "ROLLBACK", "START TRANSACTION", "SAVEPOINT", "RELEASE")
_WRITE_IN_CTE = r"^WITH\b.*\b(INSERT|UPDATE|DELETE|MERGE|REPLACE)\b"

ENGINE_RULES: Dict[EngineKind, StatementRules] = {
    EngineKind.POSTGRES: StatementRules(
        allowed=("SELECT", "WITH") + _TRANSACTION_CONTROL,
        denied=(_WRITE_IN_CTE, r"^(SELECT|WITH)\b.*\bINTO\b"),
    ),
    EngineKind.MYSQL: StatementRules(
        allowed=("SELECT", "WITH", "SHOW", "DESCRIBE", "DESC") + _TRANSACTION_CONTROL,
        denied=(_WRITE_IN_CTE, r"\bINTO\s+(OUTFILE|DUMPFILE)\b"),
    ),
    EngineKind.SQLITE: StatementRules(
        allowed=("SELECT", "WITH", "PRAGMA", "BEGIN", "COMMIT", "ROLLBACK", "SAVEPOINT", "RELEASE"),
        denied=(_WRITE_IN_CTE,),
    ),
}

_EXPLAIN_PREFIX = re.compile(r"^EXPLAIN(\s+QUERY\s+PLAN\b|\s+ANALYZE\b|\s*\([^)]*\))?\s*")


@dataclass(frozen=True)
class Classification:
    permitted: bool
    reason: Optional[str] = None
    error: Optional[Type[AdapterError]] = None

    def raise_for_rejection(self) -> None:
        if not self.permitted and self.error is not None:
            raise self.error(self.reason or "Statement rejected")


PERMITTED = Classification(permitted=True)


_IDENT_CHAR = re.compile(r"[A-Za-z0-9_$]")
_DOLLAR_TAG = re.compile(r"\$(?:[A-Za-z_][A-Za-z0-9_]*)?\$")
_LINE_COMMENT_FOLLOWERS = ("", " ", "\t", "\n", "\r")


def _quoted_end(sql: str, start: int, backslash_escapes: bool) -> int:
    """Index just past the literal opened at start, or len(sql) when it never closes."""
    quote = sql[start]
    end = start + 1
    length = len(sql)
    while end < length:
        ch = sql[end]
        if backslash_escapes and ch == "\\":
            end += 2
        elif ch != quote:
            end += 1
        elif sql[end + 1 : end + 2] == quote:
            # doubled quote
            end += 2
        else:
            return end + 1
    return length


def _scan(sql: str, engine: Optional[EngineKind], backslash_escapes: bool) -> Tuple[str, List[int]]:
    """Drop comments, returning the remaining text and the offsets of its top-level ';'.

    Quoted literals and PostgreSQL dollar-quoted bodies are copied through
    untouched, so comment markers and semicolons inside them stay text.
    """
    quotes = "'\"`" if engine is EngineKind.MYSQL else "'\""
    out: List[str] = []
    separators: List[int] = []
    written = 0
    in_executable_comment = False
    i = 0
    length = len(sql)
    while i < length:
        ch = sql[i]
        pair = sql[i : i + 2]
        piece = ch
        if ch in quotes:
            stop = _quoted_end(sql, i, backslash_escapes and ch != "`")
            piece = sql[i:stop]
            i = stop
        elif ch == "$" and engine is EngineKind.POSTGRES and not (i and _IDENT_CHAR.match(sql[i - 1])):
            tag = _DOLLAR_TAG.match(sql, i)
            if tag is None:
                i += 1
            else:
                end = sql.find(tag.group(), tag.end())
                stop = length if end == -1 else end + len(tag.group())
                piece = sql[i:stop]
                i = stop
        elif (pair == "--" and (engine is not EngineKind.MYSQL or sql[i + 2 : i + 3] in _LINE_COMMENT_FOLLOWERS)) or (
            ch == "#" and engine is EngineKind.MYSQL
        ):
            end = sql.find("\n", i)
            if end == -1:
                break
            piece = "\n"
            i = end + 1
        elif pair == "/*" and engine is EngineKind.MYSQL and sql[i + 2 : i + 3] == "!":
            # MySQL executes the body of /*! ... */, so it stays visible.
            in_executable_comment = True
            piece = " "
            i += 3
            while i < length and sql[i].isdigit():
                i += 1
        elif pair == "*/" and in_executable_comment:
            in_executable_comment = False
            piece = " "
            i += 2
        elif pair == "/*":
            end = sql.find("*/", i + 2)
            if end == -1:
                out.append(" ")
                break
            piece = " "
            i = end + 2
        else:
            if ch == ";":
                separators.append(written)
            i += 1
        out.append(piece)
        written += len(piece)
    return "".join(out), separators


def strip_comments(sql: str, engine: Optional[EngineKind] = None, backslash_escapes: bool = False) -> str:
    return _scan(sql, engine, backslash_escapes)[0]


def is_batch(sql: str, engine: Optional[EngineKind] = None) -> bool:
    """True when more than one statement remains once comments are gone.

    Whether a backslash escapes a quote depends on server settings, so the
    text counts as a batch if either reading finds a second statement.
    """
    for backslash_escapes in (False, True):
        text, separators = _scan(sql, engine, backslash_escapes)
        if any(text[offset + 1 :].strip() for offset in separators):
            return True
    return False


def _keyword_pattern(keyword: str) -> str:
    return r"\s+".join(re.escape(word) for word in keyword.split()) + r"\b"


def _starts_with_allowed(statement: str, rules: StatementRules) -> bool:
    return any(re.match(_keyword_pattern(keyword), statement) for keyword in rules.allowed)


def _hits_denied(statement: str, rules: StatementRules) -> bool:
    return any(re.search(pattern, statement, flags=re.DOTALL) for pattern in rules.denied)


def _manual_run_message(sql: str) -> str:
    return (
        "only read-only statements can be executed. "
        "If this statement is intended, run it manually outside this tool:\n"
        f"{sql}"
    )


def classify(sql: str, engine: EngineKind) -> Classification:
    engine = EngineKind.parse(engine)
    rules = ENGINE_RULES[engine]

    candidate = (sql or "").strip()
    if not candidate:
        return Classification(False, "Query cannot be empty", InvalidInput)

    stripped = strip_comments(candidate, engine).strip()
    if stripped.endswith(";"):
        stripped = stripped[:-1].rstrip()
    if is_batch(candidate, engine):
        return Classification(
            False,
            "Multi-statement queries are not supported; submit one statement at a time",
            InvalidInput,
        )
    if not stripped:
        return Classification(False, "Query contains no statement after removing comments", InvalidInput)

    statement = stripped.upper()
    explained = _EXPLAIN_PREFIX.match(statement)
    if explained:
        statement = statement[explained.end() :]

    if _starts_with_allowed(statement, rules) and not _hits_denied(statement, rules):
        return PERMITTED
    return Classification(False, _manual_run_message(sql), CapabilityViolation)


def ensure_permitted(sql: str, engine: EngineKind) -> None:
    classify(sql, engine).raise_for_rejection()
