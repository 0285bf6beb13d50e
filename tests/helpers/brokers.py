"""Reusable fakes standing in for brokers and their cursors."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Literal, Self

from brokerdb.domain.errors import QueryError

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence
    from types import TracebackType


@dataclass
class FakeCursor:
    column: str
    values: list[object]
    closed: bool = False
    _position: int = -1

    def next(self) -> bool:
        self._position += 1
        return self._position < len(self.values)

    def get_object(self, column: int | str) -> object:
        return self.values[self._position]

    def column_name(self, index: int) -> str:
        return self.column

    def close(self) -> None:
        self.closed = True

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


@dataclass
class RecordingBrokers:
    """Broker provider recording what every broker it hands out is asked to do.

    ``mutate`` answers plain statements from ``mutate_results`` (0 once
    exhausted) and batched statements with the number of bound keys. With
    ``fail_batches`` every batched statement raises :class:`QueryError`.
    """

    mutate_results: list[int] = field(default_factory=list)
    cursors: dict[str, FakeCursor] = field(default_factory=dict)
    mutations: list[tuple[str, dict[str, object] | None]] = field(default_factory=list)
    queries: list[str] = field(default_factory=list)
    evictions: list[tuple[str, str, list[object]]] = field(default_factory=list)
    fail_batches: bool = False
    acquired: int = 0
    released: int = 0

    def __call__(self) -> FakeStatementBroker:
        self.acquired += 1
        return FakeStatementBroker(self)


class FakeStatementBroker:
    def __init__(self, owner: RecordingBrokers) -> None:
        self._owner = owner
        self._released = False

    def query(self, sql: str) -> FakeCursor:
        self._owner.queries.append(sql)
        return self._owner.cursors.get(sql, FakeCursor("id", []))

    def mutate(self, sql: str, params: Mapping[str, object] | None = None) -> int:
        self._owner.mutations.append((sql, None if params is None else dict(params)))
        if params is not None:
            if self._owner.fail_batches:
                raise QueryError("batch rejected", statement=sql)
            return len(params)
        if self._owner.mutate_results:
            return self._owner.mutate_results.pop(0)
        return 0

    def evict_table_cache(self, table: str, column: str, primary_keys: Sequence[object]) -> None:
        self._owner.evictions.append((table, column, list(primary_keys)))

    def release(self, success: bool = True) -> None:  # noqa: FBT001, FBT002
        if not self._released:
            self._released = True
            self._owner.released += 1

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> Literal[False]:
        self.release(success=exc_type is None)
        return False
