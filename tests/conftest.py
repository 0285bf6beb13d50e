from __future__ import annotations

import os
from typing import TYPE_CHECKING

import pytest
from sqlalchemy import create_engine, event, func, select
from sqlalchemy.engine import Engine  # noqa: TC002
from sqlalchemy.orm import Session
from sqlalchemy.pool import NullPool

from brokerdb.adapters.sqlalchemy.broker import SqlAlchemyBrokerFactory
from brokerdb.adapters.sqlalchemy.session_factory import (
    SqlAlchemySessionFactory,
    enable_sqlite_wal,
    shutdown,
)
from brokerdb.config import DatabaseConfig, RetryPolicy
from brokerdb.domain.metadata import PersistenceMetadataRegistry  # noqa: TC001
from tests.helpers.entities import Base, Product, build_registry

os.environ.setdefault("DATABASE_URI", "sqlite+pysqlite:///:memory:")

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator
    from pathlib import Path


@pytest.fixture
def database_uri(tmp_path: Path) -> str:
    return f"sqlite+pysqlite:///{tmp_path / 'brokerdb.db'}"


@pytest.fixture
def sqlite_engine(database_uri: str) -> Iterator[Engine]:
    engine = create_engine(database_uri, future=True)
    enable_sqlite_wal(engine)
    Base.metadata.create_all(engine)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture
def seed_engine(sqlite_engine: Engine, database_uri: str) -> Iterator[Engine]:
    """Separate engine for arranging and inspecting rows outside any broker."""

    engine = create_engine(database_uri, future=True, poolclass=NullPool)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture
def seed_products(seed_engine: Engine) -> Callable[..., None]:
    def seed(count: int, *, stale: bool = False, start: int = 1) -> None:
        with Session(seed_engine) as session, session.begin():
            session.add_all(
                Product(id=index, name=f"product-{index}", stale=stale)
                for index in range(start, start + count)
            )

    return seed


@pytest.fixture
def count_products(seed_engine: Engine) -> Callable[[], int]:
    def count() -> int:
        with Session(seed_engine) as session:
            return session.scalar(select(func.count()).select_from(Product)) or 0

    return count


@pytest.fixture
def registry() -> PersistenceMetadataRegistry:
    return build_registry()


@pytest.fixture
def database_config(database_uri: str) -> DatabaseConfig:
    return DatabaseConfig(uri=database_uri, retry=RetryPolicy(attempts=2, delay_seconds=1.0))


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def broker_factory(
    sqlite_engine: Engine,
    database_config: DatabaseConfig,
    registry: PersistenceMetadataRegistry,
    sleeps: list[float],
) -> SqlAlchemyBrokerFactory:
    return SqlAlchemyBrokerFactory(
        SqlAlchemySessionFactory(sqlite_engine),
        config=database_config,
        metadata=registry,
        sleep=sleeps.append,
    )


@pytest.fixture
def executed_statements(sqlite_engine: Engine) -> Iterator[list[str]]:
    statements: list[str] = []

    def record(
        _conn: object,
        _cursor: object,
        statement: str,
        *_args: object,
    ) -> None:
        statements.append(statement)

    event.listen(sqlite_engine, "before_cursor_execute", record)
    try:
        yield statements
    finally:
        event.remove(sqlite_engine, "before_cursor_execute", record)


@pytest.fixture
def started_adapter() -> Iterator[None]:
    try:
        yield
    finally:
        shutdown()
