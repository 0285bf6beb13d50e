"""Row cursor returned by broker queries."""

from __future__ import annotations

import logging
import time
from datetime import UTC, date, datetime
from datetime import time as time_of_day
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Literal, Self, TypeVar, cast

from sqlalchemy.exc import SQLAlchemyError

from brokerdb.common.timing import format_duration
from brokerdb.domain.errors import BrokerError, QueryError
from brokerdb.domain.statements import (
    NATIVE_FOUND_ROWS_QUERY,
    derive_count_statement,
    has_found_rows_marker,
    strip_found_rows_marker,
)

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator
    from types import TracebackType

    from sqlalchemy.engine import Result, Row

    from brokerdb.adapters.sqlalchemy.broker import SqlAlchemyBroker
    from brokerdb.domain.pagination import PaginationWindow

log = logging.getLogger(__name__)

T = TypeVar("T")

_TRUE_STRINGS = frozenset({"1", "t", "true", "y", "yes", "on"})


class ResultCursor:
    """Forward-only cursor over the rows of one query.

    The cursor owns the broker that produced it and releases it on
    :meth:`close`. Statements starting with ``SELECT SQL_CALC_FOUND_ROWS``
    also resolve the number of rows the query matches without its LIMIT: on
    engines with native support through ``SELECT FOUND_ROWS()``, elsewhere by
    stripping the marker and running a derived ``COUNT(*)`` when the cursor
    is closed. The derived count runs after the page was read, so concurrent
    writes between the two statements make it approximate.

    Column accessors take a 1-based ordinal or a column name. A failing
    accessor marks the cursor unsuccessful before raising, and an
    unsuccessful cursor skips the found-rows follow-up.
    """

    def __init__(
        self,
        broker: SqlAlchemyBroker,
        sql: str,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._clock = clock
        self._opened_at = clock()
        self._tracks_found_rows = has_found_rows_marker(sql)
        self._emulated = self._tracks_found_rows and broker.emulates_found_rows
        self.statement = strip_found_rows_marker(sql) if self._emulated else sql
        self._result: Result[Any] = broker.execute_query(self.statement)
        self._columns: list[str] = list(self._result.keys())
        self._broker: SqlAlchemyBroker | None = broker
        self._slow_after = broker.config.slow_cursor_seconds
        self._describe = broker.config.describe
        self._row: Row[Any] | None = None
        self._was_null = False
        self._successful = True
        self._closed = False
        self._found_rows = -1

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> Literal[False]:
        self.close()
        return False

    def __iter__(self) -> Iterator[Row[Any]]:
        while self.next():
            yield cast("Row[Any]", self._row)

    @property
    def successful(self) -> bool:
        return self._successful

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def columns(self) -> list[str]:
        return list(self._columns)

    @property
    def tracks_found_rows(self) -> bool:
        return self._tracks_found_rows

    def next(self) -> bool:
        """Advance to the next row, returning ``False`` once exhausted."""

        if self._closed:
            self._successful = False
            raise QueryError("Cursor is closed", statement=self.statement)
        try:
            self._row = self._result.fetchone()
        except SQLAlchemyError as exc:
            self._successful = False
            log.exception("next: %s", self._describe(self.statement))
            raise QueryError("Cannot fetch next row", statement=self.statement) from exc
        return self._row is not None

    def found_rows(self, window: PaginationWindow | None = None) -> int:
        """Rows matched ignoring the LIMIT, or -1 when unknown.

        Only meaningful after :meth:`close`. With an emulated count and a
        ``window`` shorter than it, the window length is reported instead.
        """

        if window is not None and self._emulated and 0 <= window.length < self._found_rows:
            return window.length
        return self._found_rows

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        broker = self._broker
        try:
            self._close_result(self._result)
            if self._tracks_found_rows and self._successful and broker is not None:
                self._resolve_found_rows(broker)
        finally:
            self._broker = None
            if broker is not None:
                broker.release(success=self._successful)
            elapsed = self._clock() - self._opened_at
            if elapsed > self._slow_after:
                log.warning(
                    "Cursor open for %s: %s",
                    format_duration(elapsed),
                    self._describe(self.statement),
                )

    def _resolve_found_rows(self, broker: SqlAlchemyBroker) -> None:
        statement = (
            derive_count_statement(self.statement) if self._emulated else NATIVE_FOUND_ROWS_QUERY
        )
        try:
            result = broker.execute_query(statement)
            try:
                row = result.fetchone()
            finally:
                self._close_result(result)
            if row is not None:
                self._found_rows = int(row[0])
        except (BrokerError, SQLAlchemyError, TypeError, ValueError):
            self._successful = False
            log.warning("Found rows follow-up failed: %s", self._describe(statement), exc_info=True)

    def _close_result(self, result: Result[Any]) -> None:
        try:
            result.close()
        except SQLAlchemyError:
            log.warning("Failed to close result", exc_info=True)

    # column access -----------------------------------------------------------

    def find_column(self, name: str) -> int:
        """Return the 1-based ordinal of column ``name`` (case-insensitive)."""

        lowered = name.lower()
        for index, column in enumerate(self._columns, start=1):
            if column.lower() == lowered:
                return index
        self._successful = False
        raise QueryError(f"Unknown column {name!r}", statement=self.statement)

    def column_name(self, index: int) -> str:
        if not 1 <= index <= len(self._columns):
            self._successful = False
            raise QueryError(f"Column index {index} out of range", statement=self.statement)
        return self._columns[index - 1]

    def was_null(self) -> bool:
        """Whether the last value read was SQL NULL."""

        return self._was_null

    def get_object(self, column: int | str) -> object:
        return self._read(column, lambda value: value)

    def get_string(self, column: int | str) -> str | None:
        return self._read(column, lambda value: None if value is None else str(value))

    def get_int(self, column: int | str) -> int:
        return self._read(column, lambda value: 0 if value is None else int(value))

    def get_integer(self, column: int | str) -> int | None:
        return self._read(column, lambda value: None if value is None else int(value))

    def get_long(self, column: int | str) -> int:
        return self.get_int(column)

    def get_float(self, column: int | str) -> float:
        return self._read(column, lambda value: 0.0 if value is None else float(value))

    def get_boolean(self, column: int | str) -> bool:
        return self._read(column, _to_bool)

    def get_decimal(self, column: int | str) -> Decimal | None:
        return self._read(column, _to_decimal)

    def get_date(self, column: int | str) -> date | None:
        return self._read(column, _to_date)

    def get_time(self, column: int | str) -> time_of_day | None:
        return self._read(column, _to_time)

    def get_timestamp(self, column: int | str) -> datetime | None:
        return self._read(column, _to_timestamp)

    def _read(self, column: int | str, convert: Callable[[object], T]) -> T:
        try:
            value = self._value(column)
            self._was_null = value is None
            return convert(value)
        except QueryError:
            self._successful = False
            raise
        except (LookupError, TypeError, ValueError, ArithmeticError) as exc:
            self._successful = False
            raise QueryError(f"Cannot read column {column!r}", statement=self.statement) from exc

    def _value(self, column: int | str) -> object:
        if self._row is None:
            raise QueryError("No current row", statement=self.statement)
        index = column if isinstance(column, int) else self.find_column(column)
        if not 1 <= index <= len(self._row):
            raise QueryError(f"Column index {index} out of range", statement=self.statement)
        return self._row[index - 1]


def _to_bool(value: object) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return value.strip().lower() in _TRUE_STRINGS
    return bool(value)


def _to_decimal(value: object) -> Decimal | None:
    if value is None or isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)  # type: ignore[arg-type]


def _to_date(value: object) -> date | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        return date.fromisoformat(value[:10])
    raise TypeError(f"Cannot convert {type(value).__name__} to date")


def _to_time(value: object) -> time_of_day | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.time()
    if isinstance(value, time_of_day):
        return value
    if isinstance(value, str):
        return time_of_day.fromisoformat(value)
    raise TypeError(f"Cannot convert {type(value).__name__} to time")


def _to_timestamp(value: object) -> datetime | None:
    """Timestamps are stored as epoch milliseconds or ISO-8601 text."""

    if value is None:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    if isinstance(value, int | float | Decimal) or (isinstance(value, str) and value.isdigit()):
        return datetime.fromtimestamp(int(value) / 1000, tz=UTC)
    if isinstance(value, str):
        parsed = datetime.fromisoformat(value)
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)
    raise TypeError(f"Cannot convert {type(value).__name__} to timestamp")
