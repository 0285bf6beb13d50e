"""Plain-text rendering of query results."""

from __future__ import annotations

from typing import TYPE_CHECKING

from brokerdb.common.timing import format_duration

if TYPE_CHECKING:
    from brokerdb.adapters.sqlalchemy.cursor import ResultCursor

NULL_MARKER = "(null)"


def _render(value: object) -> str:
    if value is None:
        return NULL_MARKER
    if isinstance(value, bytes):
        return value.hex()
    return str(value)


def format_result(cursor: ResultCursor, duration: float | None = None) -> str:
    """Consume ``cursor`` and render its rows as an aligned text table.

    The footer reports the row count and, when given, how long the
    statement took.
    """

    columns = cursor.columns
    rows = [[_render(value) for value in row] for row in cursor]
    widths = [
        max([len(column), *(len(row[index]) for row in rows)])
        for index, column in enumerate(columns)
    ]
    lines = [
        " | ".join(column.ljust(width) for column, width in zip(columns, widths, strict=True)),
        "-+-".join("-" * width for width in widths),
    ]
    lines.extend(
        " | ".join(cell.ljust(width) for cell, width in zip(row, widths, strict=True)).rstrip()
        for row in rows
    )
    footer = f"{len(rows)} row(s)"
    if duration is not None:
        footer += f" in {format_duration(duration)}"
    lines.append(footer)
    return "\n".join(line.rstrip() for line in lines)
