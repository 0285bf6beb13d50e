from __future__ import annotations

import logging

import pytest

from brokerdb.adapters.sqlalchemy.activity import NodeActivityCollector


def test_counts_reads_and_writes_per_host() -> None:
    collector = NodeActivityCollector()

    collector.record("db1:3306", read=True)
    collector.record("db1:3306", read=True)
    collector.record("db1:3306", read=False)
    collector.record("db2:3306", read=True)

    assert collector.snapshot() == {"db1:3306": (2, 1), "db2:3306": (1, 0)}
    collector.reset()
    assert collector.snapshot() == {}


def test_logs_every_frequency_operations(caplog: pytest.LogCaptureFixture) -> None:
    ticks = iter([0.0, 2.0, 4.0])
    collector = NodeActivityCollector(frequency=2, clock=lambda: next(ticks))

    with caplog.at_level(logging.DEBUG, logger="brokerdb.adapters.sqlalchemy.activity"):
        collector.record("db1", read=True)
        collector.record("db1", read=True)

    assert len(caplog.records) == 1
    assert "Database node db1: Reads: 2 (1.00/sec avg) Writes: 0" in caplog.text
