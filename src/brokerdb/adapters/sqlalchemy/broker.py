"""Per-unit-of-work database broker backed by a SQLAlchemy session."""

from __future__ import annotations

import logging
import time
from enum import StrEnum
from threading import Lock
from typing import TYPE_CHECKING, Any, Generic, Literal, Self, TypeVar, cast

from sqlalchemy import select, text
from sqlalchemy.exc import SQLAlchemyError

from brokerdb.adapters.memory_cache import InMemorySecondLevelCache
from brokerdb.adapters.sqlalchemy.activity import NodeActivityCollector
from brokerdb.adapters.sqlalchemy.cursor import ResultCursor
from brokerdb.adapters.sqlalchemy.session_factory import StartupError, get_session_factory
from brokerdb.common.timing import format_duration
from brokerdb.domain.errors import BrokerConnectionError, QueryError, TransientConflictError

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator, Mapping, Sequence
    from types import TracebackType

    from sqlalchemy.engine import Result, ScalarResult
    from sqlalchemy.orm import Session

    from brokerdb.config import DatabaseConfig
    from brokerdb.domain.metadata import EntityDescriptor
    from brokerdb.domain.ports import (
        ActivityCollector,
        CacheService,
        PersistenceMetadata,
        SessionSource,
    )

log = logging.getLogger(__name__)

T = TypeVar("T")

# Raw statements are handed to the DBAPI cursor without a parameter collection
# so that literal percent signs survive on "format" paramstyle drivers.
_RAW_OPTIONS: dict[str, Any] = {"no_parameters": True}


class StoreOperation(StrEnum):
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


class SqlAlchemyBroker:
    """One unit of work on one session.

    A broker is either released directly, used as a context manager, or
    handed off to the cursor or entity stream it produced, which then
    releases it when closed. Brokers are not shared between threads.
    """

    def __init__(
        self,
        session_source: SessionSource[Session],
        *,
        config: DatabaseConfig,
        metadata: PersistenceMetadata,
        cache: CacheService,
        activity: ActivityCollector | None = None,
        sleep: Callable[[float], None] = time.sleep,
        on_release: Callable[[bool], None] | None = None,
    ) -> None:
        self._source = session_source
        self._config = config
        self._metadata = metadata
        self._cache = cache
        self._activity = activity
        self._sleep = sleep
        self._on_release = on_release
        self._read_only: bool | None = None
        self._released = False
        self._handed_off = False
        self._session = self._open_session()

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> Literal[False]:
        if not self._handed_off:
            self.release(success=exc_type is None)
        return False

    @property
    def config(self) -> DatabaseConfig:
        return self._config

    @property
    def session(self) -> Session:
        return self._session

    @property
    def emulates_found_rows(self) -> bool:
        return self._config.emulates_found_rows(self._source.dialect_name)

    def is_closed(self) -> bool:
        return self._released

    # session lifecycle --------------------------------------------------------

    def _open_session(self) -> Session:
        try:
            session = self._source.open_session()
        except SQLAlchemyError as exc:
            log.exception("Cannot open a database session")
            raise BrokerConnectionError("Database not available") from exc
        try:
            session.connection()
        except SQLAlchemyError as exc:
            session.close()
            log.exception("Cannot connect to the database")
            raise BrokerConnectionError("Database not available") from exc
        return session

    def _renew_session(self) -> None:
        try:
            self._session.close()
        except SQLAlchemyError:
            log.warning("Failed to close session before retry", exc_info=True)
        self._read_only = None
        self._session = self._open_session()

    def _ensure_open(self) -> None:
        if self._released:
            raise BrokerConnectionError("Broker already released")

    def release(self, success: bool = True) -> None:  # noqa: FBT001, FBT002
        """Close the session. Only the first call has any effect."""

        if self._released:
            return
        self._released = True
        closed = True
        try:
            self._session.close()
        except SQLAlchemyError:
            closed = False
            log.warning("Failed to close session", exc_info=True)
        finally:
            if self._on_release is not None:
                self._on_release(success and closed)

    def set_affinity(self, read_only: bool) -> None:  # noqa: FBT001
        """Route the session to a replica or the primary.

        Failures are logged and otherwise ignored: the statement still runs,
        just not on the preferred node.
        """

        if self._read_only is not read_only:
            if self._config.set_read_only and self._source.supports_read_affinity():
                try:
                    self._source.set_read_affinity(self._session, read_only)
                except SQLAlchemyError:
                    log.error("Cannot set read_only=%s on session", read_only, exc_info=True)
                else:
                    self._read_only = read_only
            else:
                self._read_only = read_only
        if (
            self._activity is not None
            and self._config.debug_pool
            and log.isEnabledFor(logging.DEBUG)
        ):
            self._activity.record(self._source.host_info(self._session), read=read_only)

    def _end_transaction(self) -> None:
        # the session hands its connection back to the pool at commit/rollback
        self._session.expunge_all()
        self._read_only = None

    # raw statements -----------------------------------------------------------

    def execute_query(self, sql: str, params: Mapping[str, object] | None = None) -> Result[Any]:
        """Run a read statement and return the open result."""

        self._ensure_open()
        self.set_affinity(read_only=True)
        start = time.monotonic()
        options: dict[str, Any] = {"yield_per": self._config.fetch_size}
        try:
            connection = self._session.connection()
            if params is None:
                result = connection.exec_driver_sql(
                    sql, execution_options={**options, **_RAW_OPTIONS}
                )
            else:
                result = connection.execute(text(sql), dict(params), execution_options=options)
        except SQLAlchemyError as exc:
            log.exception("execute_query: %s", self._config.describe(sql))
            raise QueryError(f"Query failed: {self._config.describe(sql)}", statement=sql) from exc
        self._log_statement("execute_query", sql, start)
        return result

    def query(self, sql: str) -> ResultCursor:
        """Run ``sql`` and return a cursor that owns this broker."""

        cursor = ResultCursor(self, sql)
        self._handed_off = True
        return cursor

    def mutate(self, sql: str, params: Mapping[str, object] | None = None) -> int:
        """Run one data-changing statement in its own transaction.

        Returns the affected row count reported by the driver.
        """

        self._ensure_open()
        self.set_affinity(read_only=False)
        start = time.monotonic()
        try:
            connection = self._session.connection()
            if params is None:
                result = connection.exec_driver_sql(sql, execution_options=_RAW_OPTIONS)
            else:
                result = connection.execute(text(sql), dict(params))
            rows = result.rowcount
            self._session.commit()
        except SQLAlchemyError as exc:
            log.exception("mutate: %s", self._config.describe(sql))
            self._session.rollback()
            raise QueryError(f"Update failed: {self._config.describe(sql)}", statement=sql) from exc
        finally:
            self._end_transaction()
        self._log_statement("mutate", sql, start, rows=rows)
        return rows

    def _log_statement(self, label: str, sql: str, start: float, *, rows: int | None = None) -> None:
        elapsed = time.monotonic() - start
        if elapsed > self._config.slow_statement_seconds:
            log.warning("Slow %s (%s): %s", label, format_duration(elapsed), self._config.describe(sql))
        elif self._config.debug_sql and log.isEnabledFor(logging.DEBUG):
            suffix = "" if rows is None else f" [{rows} row(s)]"
            log.debug("%s (%s)%s: %s", label, format_duration(elapsed), suffix, self._config.describe(sql))

    # structured writes --------------------------------------------------------

    def store(self, obj: object, is_update: bool = False) -> None:  # noqa: FBT001, FBT002
        """Insert ``obj``, or merge it into its stored row when ``is_update``."""

        self._retrying(StoreOperation.UPDATE if is_update else StoreOperation.INSERT, obj)

    def delete(self, obj: object) -> None:
        self._retrying(StoreOperation.DELETE, obj)

    def _retrying(self, operation: StoreOperation, obj: object) -> None:
        self._ensure_open()
        policy = self._config.retry
        attempt = 1
        while True:
            try:
                self._perform(operation, obj)
            except SQLAlchemyError as exc:
                if not policy.is_transient(exc):
                    raise
                if attempt > policy.attempts:
                    log.error(
                        "%s of %s still conflicting after %s attempt(s)",
                        operation,
                        type(obj).__name__,
                        attempt,
                    )
                    raise TransientConflictError(
                        f"{operation} of {type(obj).__name__} failed after {attempt} attempt(s)",
                        attempts=attempt,
                    ) from exc
                log.warning(
                    "Transient conflict on %s of %s, retrying in %ss (attempt %s of %s)",
                    operation,
                    type(obj).__name__,
                    policy.delay_seconds,
                    attempt + 1,
                    policy.attempts + 1,
                )
                attempt += 1
                self._sleep(policy.delay_seconds)
                self._renew_session()
            else:
                self._evict_object(obj)
                return

    def _perform(self, operation: StoreOperation, obj: object) -> None:
        self.set_affinity(read_only=False)
        session = self._session
        try:
            self._apply(session, operation, obj)
            session.commit()
        except SQLAlchemyError:
            log.warning("%s of %s failed", operation, type(obj).__name__, exc_info=True)
            session.rollback()
            raise
        finally:
            self._end_transaction()

    @staticmethod
    def _apply(session: Session, operation: StoreOperation, obj: object) -> None:
        match operation:
            case StoreOperation.INSERT:
                session.add(obj)
            case StoreOperation.UPDATE:
                session.merge(obj)
            case StoreOperation.DELETE:
                session.delete(session.merge(obj))

    # reads through the cache --------------------------------------------------

    def get(self, obj: T) -> T | None:
        """Load the stored state of ``obj`` by its key, reading through the cache."""

        entity_type = type(obj)
        descriptor = self._metadata.describe(entity_type)
        key = descriptor.cache_key(self._metadata.primary_key_values(obj))
        cached = self._cache.get(entity_type, key)
        if cached is not None:
            return cast("T", cached)
        self._ensure_open()
        self.set_affinity(read_only=True)
        try:
            found = self._session.get(entity_type, key)
        except SQLAlchemyError as exc:
            log.exception("get: %s %r", entity_type.__name__, key)
            raise QueryError(f"Cannot load {entity_type.__name__} {key!r}") from exc
        if found is not None:
            self._session.expunge(found)
            self._cache.put(entity_type, key, found)
        return found

    def iter_entities(self, entity_type: type[T], sql: str | None = None) -> EntityStream[T]:
        """Stream objects of ``entity_type``, optionally from a raw SELECT.

        The stream owns this broker and releases it when closed.
        """

        self._ensure_open()
        self.set_affinity(read_only=True)
        statement = select(entity_type)
        if sql is not None:
            statement = statement.from_statement(text(sql))  # type: ignore[assignment]
        try:
            result = self._session.scalars(
                statement, execution_options={"yield_per": self._config.fetch_size}
            )
        except SQLAlchemyError as exc:
            log.exception("iter_entities: %s", entity_type.__name__)
            raise QueryError(
                f"Cannot stream {entity_type.__name__}",
                statement=sql,
            ) from exc
        self._handed_off = True
        return EntityStream(self, result)

    # cache maintenance --------------------------------------------------------

    def get_primary_key_values(self, obj: object) -> tuple[object, ...]:
        return self._metadata.primary_key_values(obj)

    def evict_cache(self, entity_type: type, primary_keys: Sequence[object] | None = None) -> None:
        """Evict cached objects of ``entity_type``; all of them when no keys are given."""

        if not primary_keys:
            self._cache.evict_all(entity_type)
            if self._config.debug_cache:
                log.debug("Cache %s cleared for all entities", entity_type.__name__)
            return
        descriptor = self._metadata.find(entity_type)
        for primary_key in primary_keys:
            key = _cache_key(descriptor, primary_key)
            if self._cache.contains(entity_type, key):
                self._cache.evict(entity_type, key)
                if self._config.debug_cache:
                    log.debug("Cache %s evicted %r", entity_type.__name__, key)

    def evict_table_cache(self, table: str, column: str, primary_keys: Sequence[object]) -> None:
        """Evict by table name when ``column`` is the sole key column of its type."""

        descriptor = self._metadata.by_table(table)
        if descriptor is None:
            log.debug("No persisted type mapped to table %s", table)
            return
        if descriptor.has_single_key and descriptor.key_columns[0].lower() == column.lower():
            self.evict_cache(descriptor.entity_type, primary_keys)
        else:
            log.debug("Column %s is not the single key of %s, nothing evicted", column, table)

    def clear_cache(self) -> None:
        self._cache.evict_all_regions()
        if self._config.debug_cache:
            log.debug("Cache cleared for all regions")

    def _evict_object(self, obj: object) -> None:
        descriptor = self._metadata.find(type(obj))
        if descriptor is None:
            return
        key = descriptor.cache_key(self._metadata.primary_key_values(obj))
        if self._cache.contains(type(obj), key):
            self._cache.evict(type(obj), key)


def _cache_key(descriptor: EntityDescriptor | None, primary_key: object) -> object:
    if descriptor is None:
        return primary_key
    if not descriptor.has_single_key and isinstance(primary_key, tuple):
        return descriptor.cache_key(primary_key)
    return descriptor.coerce_key(0, primary_key)


class EntityStream(Generic[T]):
    """Iterator over streamed objects that releases its broker when closed."""

    def __init__(self, broker: SqlAlchemyBroker, result: ScalarResult[T]) -> None:
        self._broker = broker
        self._result = result
        self._iterator: Iterator[T] = iter(result)
        self._successful = True
        self._closed = False

    def __iter__(self) -> Iterator[T]:
        return self

    def __next__(self) -> T:
        if self._closed:
            raise StopIteration
        try:
            return next(self._iterator)
        except StopIteration:
            self.close()
            raise
        except SQLAlchemyError as exc:
            self._successful = False
            log.exception("Entity stream failed")
            self.close()
            raise QueryError("Cannot fetch next object") from exc

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

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._result.close()
        except SQLAlchemyError:
            self._successful = False
            log.warning("Failed to close entity stream", exc_info=True)
        finally:
            self._broker.release(success=self._successful)


class SqlAlchemyBrokerFactory:
    """Hands out brokers and keeps count of the ones still open.

    Without an explicit ``session_source`` the factory uses the session
    factory installed by :func:`brokerdb.adapters.sqlalchemy.session_factory.startup`.
    """

    def __init__(
        self,
        session_source: SessionSource[Session] | None = None,
        *,
        config: DatabaseConfig,
        metadata: PersistenceMetadata,
        cache: CacheService | None = None,
        activity: ActivityCollector | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._source = session_source
        self.config = config
        self.metadata = metadata
        self.cache: CacheService = (
            cache if cache is not None else InMemorySecondLevelCache.from_config(config.cache)
        )
        if activity is None and config.debug_pool:
            activity = NodeActivityCollector(frequency=config.debug_frequency)
        self.activity = activity
        self._sleep = sleep
        self._lock = Lock()
        self._open = 0
        self._failed_releases = 0

    def _session_source(self) -> SessionSource[Session]:
        if self._source is not None:
            return self._source
        try:
            return get_session_factory()
        except StartupError as exc:
            log.exception("Broker requested before startup")
            raise BrokerConnectionError(str(exc)) from exc

    def acquire(self) -> SqlAlchemyBroker:
        broker = SqlAlchemyBroker(
            self._session_source(),
            config=self.config,
            metadata=self.metadata,
            cache=self.cache,
            activity=self.activity,
            sleep=self._sleep,
            on_release=self._released,
        )
        with self._lock:
            self._open += 1
        return broker

    __call__ = acquire

    def _released(self, success: bool) -> None:  # noqa: FBT001
        with self._lock:
            self._open -= 1
            if not success:
                self._failed_releases += 1

    @property
    def open_brokers(self) -> int:
        with self._lock:
            return self._open

    @property
    def failed_releases(self) -> int:
        with self._lock:
            return self._failed_releases

    def emulates_found_rows(self) -> bool:
        return self.config.emulates_found_rows(self._session_source().dialect_name)
