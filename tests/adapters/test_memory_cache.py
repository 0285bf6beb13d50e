from __future__ import annotations

from brokerdb.adapters.memory_cache import InMemorySecondLevelCache
from brokerdb.config import CacheConfig
from tests.helpers.entities import Placement, Product


class _Clock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def test_put_get_and_evict() -> None:
    cache = InMemorySecondLevelCache()
    product = Product(id=1, name="a")

    cache.put(Product, 1, product)

    assert cache.get(Product, 1) is product
    assert cache.contains(Product, 1)
    cache.evict(Product, 1)
    assert cache.get(Product, 1) is None
    cache.evict(Product, 1)


def test_regions_are_per_type() -> None:
    cache = InMemorySecondLevelCache()
    cache.put(Product, 1, "product")
    cache.put(Placement, 1, "placement")

    cache.evict_all(Product)

    assert cache.get(Product, 1) is None
    assert cache.get(Placement, 1) == "placement"
    cache.evict_all_regions()
    assert cache.size() == 0


def test_entries_expire() -> None:
    clock = _Clock()
    cache = InMemorySecondLevelCache(ttl_seconds=10, clock=clock)
    cache.put(Product, 1, "product")

    clock.now = 9.9
    assert cache.contains(Product, 1)
    clock.now = 10.0
    assert not cache.contains(Product, 1)
    assert cache.size(Product) == 0


def test_disabled_cache_stores_nothing() -> None:
    cache = InMemorySecondLevelCache.from_config(CacheConfig(enabled=False))

    cache.put(Product, 1, "product")

    assert cache.get(Product, 1) is None
