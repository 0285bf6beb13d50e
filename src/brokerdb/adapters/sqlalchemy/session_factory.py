"""SQLAlchemy engine lifecycle and the session factory used by brokers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Final

from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker

from brokerdb.config import get_database_config

if TYPE_CHECKING:
    from sqlalchemy.engine import Engine


class StartupError(RuntimeError):
    """Raised when a session is requested before the engine is initialised."""


# Statements switching a connection between read-only and read-write, keyed by
# dialect name. Load-balancing proxies route read-only connections to replicas.
AFFINITY_STATEMENTS: Final[dict[str, tuple[str, str]]] = {
    "sqlite": ("PRAGMA query_only = ON", "PRAGMA query_only = OFF"),
    "mysql": ("SET SESSION TRANSACTION READ ONLY", "SET SESSION TRANSACTION READ WRITE"),
    "mariadb": ("SET SESSION TRANSACTION READ ONLY", "SET SESSION TRANSACTION READ WRITE"),
    "postgresql": ("SET TRANSACTION READ ONLY", "SET TRANSACTION READ WRITE"),
}


def _use_write_ahead_log(dbapi_connection: Any, _connection_record: object) -> None:
    cursor = dbapi_connection.cursor()
    try:
        cursor.execute("PRAGMA journal_mode=WAL")
    finally:
        cursor.close()


def enable_sqlite_wal(engine: Engine) -> None:
    """Switch every new connection of a sqlite ``engine`` to WAL journaling.

    CHUNK commits batches while its key cursor is still reading, which a
    rollback journal refuses with "database is locked". Connections already
    pooled before the call keep their journal mode.
    """

    if engine.dialect.name != "sqlite":
        return
    if not event.contains(engine, "connect", _use_write_ahead_log):
        event.listen(engine, "connect", _use_write_ahead_log)


class SqlAlchemySessionFactory:
    """Open sessions on one engine and switch their read affinity.

    Whether affinity is supported is decided once, from the engine dialect.
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self._session_maker: sessionmaker[Session] = sessionmaker(
            bind=engine, expire_on_commit=False
        )
        self._affinity = AFFINITY_STATEMENTS.get(engine.dialect.name)

    @property
    def dialect_name(self) -> str:
        return self.engine.dialect.name

    def open_session(self) -> Session:
        return self._session_maker()

    def supports_read_affinity(self) -> bool:
        return self._affinity is not None

    def set_read_affinity(self, session: Session, read_only: bool) -> None:  # noqa: FBT001
        if self._affinity is None:
            return
        read_statement, write_statement = self._affinity
        session.connection().exec_driver_sql(read_statement if read_only else write_statement)

    def host_info(self, session: Session) -> str:
        url = session.get_bind().url
        if url.host:
            return f"{url.host}:{url.port}" if url.port else url.host
        return url.database or url.drivername


@dataclass(slots=True)
class _AdapterState:
    _engine: Engine | None = None
    _session_factory: SqlAlchemySessionFactory | None = None

    @property
    def engine(self) -> Engine | None:
        return self._engine

    @engine.setter
    def engine(self, value: Engine | None) -> None:
        self._session_factory = None
        self._engine = value

    @property
    def session_factory(self) -> SqlAlchemySessionFactory:
        if self._engine is None:
            raise StartupError(
                "SQLAlchemy adapter not initialised. Call brokerdb.adapters.sqlalchemy."
                "session_factory.startup() before requesting a broker."
            )
        if self._session_factory is None:
            self._session_factory = SqlAlchemySessionFactory(self._engine)
        return self._session_factory


_STATE = _AdapterState()


def startup(
    *,
    engine: Engine | None = None,
    database_uri: str | None = None,
    force: bool = False,
) -> Engine:
    """Initialise the SQLAlchemy engine shared by every broker."""

    if _STATE.engine is not None and not force:
        raise StartupError(
            "SQLAlchemy adapter already initialised. Pass force=True to reconfigure."
        )

    resolved_engine = engine or create_engine(
        database_uri or get_database_config().uri,
        future=True,
        pool_pre_ping=True,
    )
    enable_sqlite_wal(resolved_engine)
    previous = _STATE.engine
    if previous is not None and previous is not resolved_engine:
        previous.dispose()
    _STATE.engine = resolved_engine
    return resolved_engine


def configured_engine() -> Engine | None:
    """Return the engine currently managed by the adapter (if any)."""

    return _STATE.engine


def is_started() -> bool:
    """Return whether the adapter has been initialised."""

    return _STATE.engine is not None


def get_session_factory() -> SqlAlchemySessionFactory:
    return _STATE.session_factory


def shutdown() -> None:
    """Dispose the managed engine and reset state (primarily for tests)."""

    if _STATE.engine is not None:
        _STATE.engine.dispose()
    _STATE.engine = None
