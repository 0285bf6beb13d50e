"""Collaborator contracts required by the engine."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, Self, TypeAlias, TypeVar, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping, Sequence
    from types import TracebackType

    from brokerdb.domain.metadata import EntityDescriptor

TSession = TypeVar("TSession")


@runtime_checkable
class SessionSource(Protocol[TSession]):
    """Produces sessions and exposes the read-affinity capability of the pool."""

    @property
    def dialect_name(self) -> str: ...

    def open_session(self) -> TSession: ...

    def supports_read_affinity(self) -> bool: ...

    def set_read_affinity(self, session: TSession, read_only: bool) -> None: ...  # noqa: FBT001

    def host_info(self, session: TSession) -> str: ...


@runtime_checkable
class CacheService(Protocol):
    """Second-level cache of materialised objects keyed by type and primary key."""

    def get(self, entity_type: type, key: object) -> object | None: ...

    def put(self, entity_type: type, key: object, value: object) -> None: ...

    def contains(self, entity_type: type, key: object) -> bool: ...

    def evict(self, entity_type: type, key: object) -> None: ...

    def evict_all(self, entity_type: type) -> None: ...

    def evict_all_regions(self) -> None: ...


@runtime_checkable
class PersistenceMetadata(Protocol):
    """Statically declared key layout of persisted types."""

    def describe(self, entity_type: type) -> EntityDescriptor: ...

    def find(self, entity_type: type) -> EntityDescriptor | None: ...

    def by_table(self, table: str) -> EntityDescriptor | None: ...

    def primary_key_values(self, obj: object) -> tuple[object, ...]: ...


@runtime_checkable
class ActivityCollector(Protocol):
    """Receives one sample per affinity switch."""

    def record(self, host: str, *, read: bool) -> None: ...


@runtime_checkable
class RowCursor(Protocol):
    """Subset of the result cursor used by the bulk-mutation protocol."""

    def next(self) -> bool: ...

    def get_object(self, column: int | str) -> object: ...

    def column_name(self, index: int) -> str: ...

    def close(self) -> None: ...

    def __enter__(self) -> Self: ...

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> bool | None: ...


@runtime_checkable
class StatementBroker(Protocol):
    """Per-unit-of-work handle able to run one query or one mutation."""

    def query(self, sql: str) -> RowCursor: ...

    def mutate(self, sql: str, params: Mapping[str, object] | None = None) -> int: ...

    def evict_table_cache(self, table: str, column: str, primary_keys: Sequence[object]) -> None: ...

    def release(self, success: bool = True) -> None: ...  # noqa: FBT001, FBT002

    def __enter__(self) -> Self: ...

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> bool | None: ...


BrokerProvider: TypeAlias = "Callable[[], StatementBroker]"
