"""In-process second-level cache of materialised objects."""

from __future__ import annotations

import time
from dataclasses import dataclass
from threading import Lock
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable

    from brokerdb.config import CacheConfig


@dataclass(slots=True)
class _Entry:
    value: object
    expires_at: float | None


class InMemorySecondLevelCache:
    """Cache shared by every broker of a process, one region per entity type.

    Entries expire after ``ttl_seconds`` so a write that commits without its
    eviction running leaves a stale entry for a bounded time only.
    """

    def __init__(
        self,
        *,
        ttl_seconds: float | None = None,
        enabled: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl_seconds
        self._enabled = enabled
        self._clock = clock
        self._regions: dict[type, dict[object, _Entry]] = {}
        self._lock = Lock()

    @classmethod
    def from_config(cls, config: CacheConfig) -> InMemorySecondLevelCache:
        return cls(ttl_seconds=config.ttl_seconds, enabled=config.enabled)

    def get(self, entity_type: type, key: object) -> object | None:
        with self._lock:
            entry = self._live_entry(entity_type, key)
            return None if entry is None else entry.value

    def put(self, entity_type: type, key: object, value: object) -> None:
        if not self._enabled:
            return
        expires_at = None if self._ttl is None else self._clock() + self._ttl
        with self._lock:
            self._regions.setdefault(entity_type, {})[key] = _Entry(value, expires_at)

    def contains(self, entity_type: type, key: object) -> bool:
        with self._lock:
            return self._live_entry(entity_type, key) is not None

    def evict(self, entity_type: type, key: object) -> None:
        with self._lock:
            region = self._regions.get(entity_type)
            if region is not None:
                region.pop(key, None)

    def evict_all(self, entity_type: type) -> None:
        with self._lock:
            self._regions.pop(entity_type, None)

    def evict_all_regions(self) -> None:
        with self._lock:
            self._regions.clear()

    def size(self, entity_type: type | None = None) -> int:
        with self._lock:
            if entity_type is not None:
                return len(self._regions.get(entity_type, {}))
            return sum(len(region) for region in self._regions.values())

    def _live_entry(self, entity_type: type, key: object) -> _Entry | None:
        region = self._regions.get(entity_type)
        if region is None:
            return None
        entry = region.get(key)
        if entry is None:
            return None
        if entry.expires_at is not None and entry.expires_at <= self._clock():
            del region[key]
            return None
        return entry
