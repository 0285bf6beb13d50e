"""Application entry points wiring configuration, engine and brokers."""

from __future__ import annotations

import time
from dataclasses import dataclass
from logging import getLogger
from typing import TYPE_CHECKING, Any, TypeVar

from brokerdb.adapters.sqlalchemy.broker import SqlAlchemyBrokerFactory
from brokerdb.adapters.sqlalchemy.session_factory import is_started, startup
from brokerdb.common.timing import format_duration
from brokerdb.config import get_database_config
from brokerdb.domain.bulk_mutation import BulkMutationProtocol
from brokerdb.domain.metadata import PersistenceMetadataRegistry
from brokerdb.domain.statements import add_found_rows_marker

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from sqlalchemy.engine import Engine

    from brokerdb.adapters.sqlalchemy.broker import EntityStream
    from brokerdb.adapters.sqlalchemy.cursor import ResultCursor
    from brokerdb.config import DatabaseConfig
    from brokerdb.domain.pagination import PaginationWindow
    from brokerdb.domain.ports import CacheService


log = getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class Page:
    columns: tuple[str, ...]
    rows: tuple[tuple[Any, ...], ...]
    found_rows: int


class DataAccess:
    """Statement-level facade over the broker factory.

    Every call runs on a fresh broker. ``update`` understands the LOOP and
    CHUNK directives, ``select`` returns a cursor the caller must close.
    """

    def __init__(
        self,
        brokers: SqlAlchemyBrokerFactory,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.brokers = brokers
        self._clock = clock
        self._bulk = BulkMutationProtocol(brokers.acquire, observer=self._observe, clock=clock)

    @property
    def config(self) -> DatabaseConfig:
        return self.brokers.config

    def select(self, sql: str) -> ResultCursor:
        with self.brokers.acquire() as broker:
            return broker.query(sql)

    def select_page(self, sql: str, window: PaginationWindow) -> Page:
        """Read one page of ``sql`` together with the number of rows it matches."""

        with self.select(add_found_rows_marker(window.apply(sql))) as cursor:
            rows = tuple(tuple(row) for row in cursor)
            columns = tuple(cursor.columns)
        return Page(columns=columns, rows=rows, found_rows=cursor.found_rows(window))

    def update(self, sql: str) -> int:
        start = self._clock()
        rows = self._bulk.execute(sql)
        elapsed = self._clock() - start
        if elapsed > self.config.slow_statement_seconds:
            log.warning(
                "Slow update (%s, %s row(s)): %s",
                format_duration(elapsed),
                rows,
                self.config.describe(sql),
            )
        return rows

    def store(self, obj: object, *, is_update: bool = False) -> None:
        with self.brokers.acquire() as broker:
            broker.store(obj, is_update)

    def delete(self, obj: object) -> None:
        with self.brokers.acquire() as broker:
            broker.delete(obj)

    def get(self, obj: T) -> T | None:
        with self.brokers.acquire() as broker:
            return broker.get(obj)

    def iter_entities(self, entity_type: type[T], sql: str | None = None) -> EntityStream[T]:
        with self.brokers.acquire() as broker:
            return broker.iter_entities(entity_type, sql)

    def evict_cache(self, entity_type: type, primary_keys: Sequence[object] | None = None) -> None:
        with self.brokers.acquire() as broker:
            broker.evict_cache(entity_type, primary_keys)

    def clear_cache(self) -> None:
        with self.brokers.acquire() as broker:
            broker.clear_cache()

    def _observe(self, sql: str, elapsed: float, rows: int) -> None:
        if self.config.debug_sql:
            log.debug(
                "update (%s) [%s row(s)]: %s",
                format_duration(elapsed),
                rows,
                self.config.describe(sql),
            )


def build_data_access(
    *,
    config: DatabaseConfig | None = None,
    metadata: PersistenceMetadataRegistry | None = None,
    engine: Engine | None = None,
    cache: CacheService | None = None,
) -> DataAccess:
    """Start the engine if needed and return a ready :class:`DataAccess`."""

    effective_config = config or get_database_config()
    if engine is not None or not is_started():
        startup(engine=engine, database_uri=effective_config.uri, force=True)
    factory = SqlAlchemyBrokerFactory(
        config=effective_config,
        metadata=metadata if metadata is not None else PersistenceMetadataRegistry(),
        cache=cache,
    )
    log.debug("Data access ready: fetch_size=%s", effective_config.fetch_size)
    return DataAccess(factory)
