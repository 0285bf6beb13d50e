"""Per-replica read/write counters sampled on affinity switches."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from threading import Lock
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable

log = logging.getLogger(__name__)


@dataclass(slots=True)
class NodeActivity:
    host: str
    started_at: float
    reads: int = 0
    writes: int = 0

    def per_second(self, count: int, now: float) -> float:
        elapsed = now - self.started_at
        return count / elapsed if elapsed > 0 else 0.0


@dataclass(slots=True)
class NodeActivityCollector:
    """Count reads and writes per database node and log them periodically.

    A summary line is logged at DEBUG every ``frequency`` reads or writes of a
    node. The collector lives as long as the broker factory owning the pool.
    """

    frequency: int = 1_000_000
    clock: Callable[[], float] = time.monotonic
    _nodes: dict[str, NodeActivity] = field(default_factory=dict)
    _lock: Lock = field(default_factory=Lock)

    def record(self, host: str, *, read: bool) -> None:
        with self._lock:
            node = self._nodes.get(host)
            if node is None:
                node = self._nodes[host] = NodeActivity(host=host, started_at=self.clock())
            if read:
                node.reads += 1
                count = node.reads
            else:
                node.writes += 1
                count = node.writes
            reads, writes = node.reads, node.writes
        if count % self.frequency == 0 and log.isEnabledFor(logging.DEBUG):
            now = self.clock()
            log.debug(
                "Database node %s: Reads: %s (%.2f/sec avg) Writes: %s (%.2f/sec avg)",
                host,
                reads,
                node.per_second(reads, now),
                writes,
                node.per_second(writes, now),
            )

    def snapshot(self) -> dict[str, tuple[int, int]]:
        """Return ``{host: (reads, writes)}``."""

        with self._lock:
            return {host: (node.reads, node.writes) for host, node in self._nodes.items()}

    def reset(self) -> None:
        with self._lock:
            self._nodes.clear()
