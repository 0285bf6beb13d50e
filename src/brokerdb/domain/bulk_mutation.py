"""LOOP and CHUNK directives layered over plain mutation execution."""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Protocol

from brokerdb.domain.statements import (
    ChunkDirective,
    LoopDirective,
    is_plan_statement,
    parse_directive,
)

if TYPE_CHECKING:
    from collections.abc import Callable

    from brokerdb.domain.ports import BrokerProvider

log = logging.getLogger(__name__)


class StatementObserver(Protocol):
    def __call__(self, sql: str, elapsed: float, rows: int) -> None: ...


class BulkMutationProtocol:
    """Interpret bulk directives in front of ``Broker.mutate``.

    ``LOOP <limit> <statement>`` re-runs a row-limiting statement until one
    execution affects fewer than ``limit`` rows. ``CHUNK <limit> <UPDATE|DELETE
    ... IN (<select>)>`` reads the keys selected by the sub-select and applies
    the action to them ``limit`` keys at a time, evicting the cached objects of
    every batch. Plan statements (ANALYZE, EXPLAIN) are run as reads. Anything
    else goes to ``mutate`` unchanged.

    Every plain statement runs on its own broker obtained from ``brokers``.
    """

    def __init__(
        self,
        brokers: BrokerProvider,
        *,
        observer: StatementObserver | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._brokers = brokers
        self._observer = observer
        self._clock = clock

    def execute(self, sql: str) -> int:
        """Run ``sql`` and return the number of rows it reports as affected."""

        directive = parse_directive(sql)
        if isinstance(directive, LoopDirective):
            return self._loop(directive)
        if isinstance(directive, ChunkDirective):
            return self._chunk(directive)
        return self._execute_plain(sql)

    def _loop(self, directive: LoopDirective) -> int:
        total = 0
        iterations = 0
        while True:
            rows = self.execute(directive.statement)
            total += rows
            iterations += 1
            if rows < directive.limit:
                log.debug("LOOP finished after %s iteration(s), %s row(s)", iterations, total)
                return total

    def _chunk(self, directive: ChunkDirective) -> int:
        keys: list[object] = []
        column: str | None = None
        harvested = 0
        batches = 0
        with self._brokers() as broker, broker.query(directive.source) as cursor:
            while cursor.next():
                if column is None:
                    column = cursor.column_name(1)
                keys.append(cursor.get_object(1))
                harvested += 1
                if len(keys) >= directive.limit:
                    self._flush(directive, column, keys)
                    batches += 1
        if column is not None and keys:
            self._flush(directive, column, keys)
            batches += 1
        log.debug(
            "CHUNK on %s finished: %s key(s) in %s batch(es)", directive.table, harvested, batches
        )
        return harvested

    def _flush(self, directive: ChunkDirective, column: str, keys: list[object]) -> None:
        sql, params = directive.batch(keys)
        start = self._clock()
        with self._brokers() as broker:
            rows = broker.mutate(sql, params)
            # every buffered key is evicted, affected or not
            broker.evict_table_cache(directive.table, column, list(keys))
        self._observe(sql, start, rows)
        keys.clear()

    def _execute_plain(self, sql: str) -> int:
        start = self._clock()
        with self._brokers() as broker:
            if is_plan_statement(sql):
                broker.query(sql).close()
                rows = 0
            else:
                rows = broker.mutate(sql)
        self._observe(sql, start, rows)
        return rows

    def _observe(self, sql: str, start: float, rows: int) -> None:
        if self._observer is not None:
            self._observer(sql, self._clock() - start, rows)
