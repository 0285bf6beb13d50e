"""Recognition and rewriting of statement text.

Nothing here parses SQL. The helpers match a small set of prefixes and
clauses by regular expression: the found-rows marker of paginated listings,
plan statements, and the LOOP and CHUNK bulk directives.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Final, TypeAlias

from brokerdb.domain.errors import MalformedDirectiveError

if TYPE_CHECKING:
    from collections.abc import Sequence

FOUND_ROWS_MARKER: Final = re.compile(r"^\s*SELECT\s+SQL_CALC_FOUND_ROWS\s+", re.IGNORECASE)
NATIVE_FOUND_ROWS_QUERY: Final[str] = "SELECT FOUND_ROWS()"

_WHITESPACE = re.compile(r"\s+")
_ORDER_BY = re.compile(
    r"\s+ORDER\s+BY\s+.*?(?=\s+LIMIT\s|\s+OFFSET\s|\s*;?\s*$)",
    re.IGNORECASE,
)
_SELECT_LIST = re.compile(r"^SELECT\s+.*?\s+FROM\s+", re.IGNORECASE)
_LIMIT = re.compile(
    r"\s+LIMIT\s+\d+(?:\s*,\s*\d+)?(?:\s+OFFSET\s+\d+)?\s*;?\s*$",
    re.IGNORECASE,
)
_OFFSET = re.compile(r"\s+OFFSET\s+\d+(?:\s+ROWS?)?\s*;?\s*$", re.IGNORECASE)
_SELECT = re.compile(r"^\s*SELECT\s+", re.IGNORECASE)
_PLAN = re.compile(r"^\s*(?:ANALYZE|EXPLAIN)\b", re.IGNORECASE)
_DIRECTIVE = re.compile(r"^\s*(LOOP|CHUNK)(?=\s|$)", re.IGNORECASE)
_IN_MARKER = re.compile(r"\sIN\s", re.IGNORECASE)


def has_found_rows_marker(sql: str) -> bool:
    return FOUND_ROWS_MARKER.match(sql) is not None


def strip_found_rows_marker(sql: str) -> str:
    """Drop the found-rows marker, leaving a plain SELECT."""

    return FOUND_ROWS_MARKER.sub("SELECT ", sql, count=1)


def add_found_rows_marker(sql: str) -> str:
    """Mark a plain SELECT so its cursor also resolves found rows."""

    if has_found_rows_marker(sql):
        return sql
    return _SELECT.sub("SELECT SQL_CALC_FOUND_ROWS ", sql, count=1)


def derive_count_statement(sql: str) -> str:
    """Rewrite a paginated SELECT into a COUNT(*) over the same rows.

    ORDER BY and trailing LIMIT/OFFSET clauses are removed and the select
    list is replaced, so ``SELECT * FROM t ORDER BY x LIMIT 10`` becomes
    ``SELECT COUNT(*) FROM t``.
    """

    normalized = _WHITESPACE.sub(" ", strip_found_rows_marker(sql)).strip()
    normalized = _ORDER_BY.sub("", normalized)
    normalized = _LIMIT.sub("", normalized)
    normalized = _OFFSET.sub("", normalized)
    normalized = _SELECT_LIST.sub("SELECT COUNT(*) FROM ", normalized, count=1)
    return normalized.rstrip("; ")


def is_plan_statement(sql: str) -> bool:
    """Whether ``sql`` asks the engine for a plan or statistics refresh."""

    return _PLAN.match(sql) is not None


@dataclass(frozen=True, slots=True)
class LoopDirective:
    limit: int
    statement: str


@dataclass(frozen=True, slots=True)
class ChunkDirective:
    limit: int
    verb: str
    table: str
    action: str
    source: str

    def batch(self, keys: Sequence[object]) -> tuple[str, dict[str, object]]:
        """Return the action with ``keys`` bound into its ``IN (...)`` list."""

        names = [f"chunk_key_{index}" for index in range(len(keys))]
        placeholders = ", ".join(f":{name}" for name in names)
        action = self.action.replace(":", "\\:")
        return f"{action} ({placeholders})", dict(zip(names, keys, strict=True))


Directive: TypeAlias = LoopDirective | ChunkDirective


def parse_directive(sql: str) -> Directive | None:
    """Parse a leading LOOP or CHUNK directive.

    Returns ``None`` for ordinary statements. The directive body ends at the
    first semicolon.
    """

    match = _DIRECTIVE.match(sql)
    if match is None:
        return None
    keyword = match.group(1).upper()
    parts = sql[match.end() :].split(None, 1)
    if len(parts) < 2:
        raise MalformedDirectiveError(f"Malformed SQL {keyword} request: {sql}", statement=sql)
    limit = _parse_limit(keyword, parts[0], sql)
    request = parts[1].split(";", 1)[0].strip()
    if not request:
        raise MalformedDirectiveError(f"Malformed SQL {keyword} request: {sql}", statement=sql)
    if keyword == "LOOP":
        return LoopDirective(limit=limit, statement=request)
    return _parse_chunk(limit, request, sql)


def _parse_limit(keyword: str, value: str, sql: str) -> int:
    try:
        limit = int(value)
    except ValueError as exc:
        raise MalformedDirectiveError(
            f"Malformed SQL {keyword} request (limit {value!r} is not a number): {sql}",
            statement=sql,
        ) from exc
    if limit <= 0:
        raise MalformedDirectiveError(
            f"Malformed SQL {keyword} request (limit must be positive): {sql}",
            statement=sql,
        )
    return limit


def _parse_chunk(limit: int, request: str, sql: str) -> ChunkDirective:
    marker = _IN_MARKER.search(request)
    if marker is None:
        raise MalformedDirectiveError(f"Malformed SQL CHUNK request (no IN): {sql}", statement=sql)
    action = request[: marker.end()].strip()
    source = _unwrap_parentheses(request[marker.end() :].strip())
    tokens = action.split()
    if len(tokens) < 3 or not source:
        raise MalformedDirectiveError(f"Malformed SQL CHUNK request: {sql}", statement=sql)
    verb = tokens[0].upper()
    if verb == "UPDATE":
        table = tokens[1]
    elif verb == "DELETE" and tokens[1].upper() == "FROM":
        table = tokens[2]
    else:
        raise MalformedDirectiveError(
            f"Malformed SQL CHUNK request (expected UPDATE or DELETE FROM): {sql}",
            statement=sql,
        )
    return ChunkDirective(
        limit=limit,
        verb=verb,
        table=table.strip("`\"[]"),
        action=action,
        source=source,
    )


def _unwrap_parentheses(source: str) -> str:
    if not (source.startswith("(") and source.endswith(")")):
        return source
    depth = 0
    for index, char in enumerate(source):
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
            if depth == 0 and index != len(source) - 1:
                # the opening parenthesis closes early, e.g. "(a) UNION (b)"
                return source
    return source[1:-1].strip()
