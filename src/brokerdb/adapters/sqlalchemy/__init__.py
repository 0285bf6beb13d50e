"""SQLAlchemy adapter package for brokerdb."""

from __future__ import annotations

from .activity import NodeActivityCollector
from .broker import EntityStream, SqlAlchemyBroker, SqlAlchemyBrokerFactory, StoreOperation
from .cursor import ResultCursor
from .session_factory import (
    SqlAlchemySessionFactory,
    StartupError,
    configured_engine,
    enable_sqlite_wal,
    get_session_factory,
    is_started,
    shutdown,
    startup,
)

__all__ = [
    "EntityStream",
    "NodeActivityCollector",
    "ResultCursor",
    "SqlAlchemyBroker",
    "SqlAlchemyBrokerFactory",
    "SqlAlchemySessionFactory",
    "StartupError",
    "StoreOperation",
    "configured_engine",
    "enable_sqlite_wal",
    "get_session_factory",
    "is_started",
    "shutdown",
    "startup",
]
