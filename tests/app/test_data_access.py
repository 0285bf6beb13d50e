from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session
from sqlalchemy.pool import NullPool

from brokerdb.app import DataAccess, build_data_access
from brokerdb.config import DatabaseConfig
from brokerdb.domain.pagination import PaginationWindow
from tests.helpers.entities import Base, Product

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

    from sqlalchemy.engine import Engine

    from brokerdb.adapters.sqlalchemy.broker import SqlAlchemyBrokerFactory
    from brokerdb.domain.metadata import PersistenceMetadataRegistry


@pytest.fixture
def access(broker_factory: SqlAlchemyBrokerFactory) -> DataAccess:
    return DataAccess(broker_factory)


def test_loop_deletes_in_bounded_steps(
    access: DataAccess,
    seed_products: Callable[..., None],
    count_products: Callable[[], int],
) -> None:
    seed_products(23, stale=True)
    seed_products(5, start=100)

    rows = access.update(
        "LOOP 10 DELETE FROM product WHERE id IN "
        "(SELECT id FROM product WHERE stale = 1 LIMIT 10)"
    )

    assert rows == 23
    assert count_products() == 5
    assert access.brokers.open_brokers == 0


def test_chunk_deletes_and_evicts_cached_rows(
    access: DataAccess,
    seed_products: Callable[..., None],
    count_products: Callable[[], int],
) -> None:
    seed_products(25, stale=True)
    seed_products(3, start=100)
    cache = access.brokers.cache
    cache.put(Product, 3, "cached")
    cache.put(Product, 100, "kept")

    rows = access.update(
        "CHUNK 10 DELETE FROM product WHERE id IN (SELECT id FROM product WHERE stale = 1)"
    )

    assert rows == 25
    assert count_products() == 3
    assert not cache.contains(Product, 3)
    assert cache.contains(Product, 100)
    assert access.brokers.open_brokers == 0


def test_select_page_reports_found_rows(
    access: DataAccess,
    seed_products: Callable[..., None],
) -> None:
    seed_products(37)

    page = access.select_page("SELECT id, name FROM product", PaginationWindow("id", length=50))

    assert page.columns == ("id", "name")
    assert len(page.rows) == 37
    assert page.rows[0] == (1, "product-1")
    assert page.found_rows == 37


def test_select_page_clamps_emulated_count_to_window(
    access: DataAccess,
    seed_products: Callable[..., None],
) -> None:
    seed_products(37)

    page = access.select_page(
        "SELECT id FROM product", PaginationWindow("id", start=30, length=10)
    )

    assert [row[0] for row in page.rows] == list(range(31, 38))
    assert page.found_rows == 10


def test_store_get_delete_round_trip(access: DataAccess) -> None:
    access.store(Product(id=1, name="widget"))
    access.store(Product(id=1, name="gadget"), is_update=True)

    loaded = access.get(Product(id=1, name=""))
    assert loaded is not None
    assert loaded.name == "gadget"

    access.delete(Product(id=1, name="gadget"))
    access.evict_cache(Product, [1])

    assert access.get(Product(id=1, name="")) is None
    assert access.brokers.open_brokers == 0


def test_iter_entities(access: DataAccess, seed_products: Callable[..., None]) -> None:
    seed_products(3)

    with access.iter_entities(Product) as stream:
        assert sorted(product.id for product in stream) == [1, 2, 3]


def test_clear_cache(access: DataAccess) -> None:
    access.brokers.cache.put(Product, 1, "cached")

    access.clear_cache()

    assert not access.brokers.cache.contains(Product, 1)


def test_slow_updates_are_logged(
    broker_factory: SqlAlchemyBrokerFactory,
    caplog: pytest.LogCaptureFixture,
) -> None:
    ticks = iter([0.0, 0.0, 6.0, 6.0])
    access = DataAccess(broker_factory, clock=lambda: next(ticks))

    with caplog.at_level(logging.WARNING, logger="brokerdb.app"):
        access.update("DELETE FROM product")

    assert "Slow update (6s, 0 row(s)): DELETE FROM product" in caplog.text


def test_build_data_access_starts_adapter(
    started_adapter: None,
    sqlite_engine: Engine,
    database_config: DatabaseConfig,
    registry: PersistenceMetadataRegistry,
) -> None:
    access = build_data_access(config=database_config, metadata=registry, engine=sqlite_engine)

    assert access.update("DELETE FROM product") == 0
    assert access.config is database_config


def test_chunk_beyond_fetch_size_on_default_engine(
    started_adapter: None,
    tmp_path: Path,
    registry: PersistenceMetadataRegistry,
) -> None:
    uri = f"sqlite+pysqlite:///{tmp_path / 'default.db'}"
    setup_engine = create_engine(uri, poolclass=NullPool)
    Base.metadata.create_all(setup_engine)
    with Session(setup_engine) as session, session.begin():
        session.add_all(Product(id=index, name=f"product-{index}") for index in range(1, 251))
    config = DatabaseConfig(uri=uri)
    access = build_data_access(config=config, metadata=registry)

    rows = access.update("CHUNK 10 DELETE FROM product WHERE id IN (SELECT id FROM product)")

    assert rows == 250
    assert rows > config.fetch_size
    with setup_engine.connect() as connection:
        assert connection.exec_driver_sql("SELECT COUNT(*) FROM product").scalar() == 0
        assert connection.exec_driver_sql("PRAGMA journal_mode").scalar() == "wal"
    setup_engine.dispose()
