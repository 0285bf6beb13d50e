"""Pagination windows applied to listing queries."""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import StrEnum

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$")
# ORDER BY, LIMIT or OFFSET outside any parenthesised sub-select
_TRAILING_CLAUSE = re.compile(r"\b(?:ORDER\s+BY|LIMIT|OFFSET)\b[^()]*$", re.IGNORECASE)


class SortOrder(StrEnum):
    ASC = "ASC"
    DESC = "DESC"


@dataclass(frozen=True, slots=True)
class PaginationWindow:
    """Sort column, order, start offset and length of a page of results."""

    sort_column: str
    order: SortOrder = SortOrder.ASC
    start: int = 0
    length: int = 25

    def __post_init__(self) -> None:
        if not _IDENTIFIER.match(self.sort_column):
            raise ValueError(f"Invalid sort column: {self.sort_column!r}")
        if self.start < 0:
            raise ValueError("Pagination start must be non-negative")
        if self.length <= 0:
            raise ValueError("Pagination length must be positive")

    def clause(self) -> str:
        return f"ORDER BY {self.sort_column} {self.order} LIMIT {self.length} OFFSET {self.start}"

    def apply(self, sql: str) -> str:
        """Append the ordering and limit clauses to ``sql``.

        ``sql`` must be unordered and unlimited; a statement that already ends
        in ORDER BY, LIMIT or OFFSET raises :class:`ValueError`.
        """

        statement = sql.rstrip().rstrip(";").rstrip()
        if _TRAILING_CLAUSE.search(statement):
            raise ValueError(f"Statement already orders or limits its rows: {statement!r}")
        return f"{statement} {self.clause()}"
