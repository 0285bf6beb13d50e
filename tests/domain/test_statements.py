from __future__ import annotations

import pytest

from brokerdb.domain.errors import MalformedDirectiveError
from brokerdb.domain.statements import (
    ChunkDirective,
    LoopDirective,
    add_found_rows_marker,
    derive_count_statement,
    has_found_rows_marker,
    is_plan_statement,
    parse_directive,
    strip_found_rows_marker,
)


def test_found_rows_marker_is_case_insensitive() -> None:
    assert has_found_rows_marker("select sql_calc_found_rows * from t")
    assert has_found_rows_marker("  SELECT SQL_CALC_FOUND_ROWS id FROM t")
    assert not has_found_rows_marker("SELECT * FROM t")


def test_strip_found_rows_marker() -> None:
    assert (
        strip_found_rows_marker("SELECT SQL_CALC_FOUND_ROWS * FROM t ORDER BY x LIMIT 10")
        == "SELECT * FROM t ORDER BY x LIMIT 10"
    )


def test_add_found_rows_marker_is_idempotent() -> None:
    marked = add_found_rows_marker("SELECT id FROM t")

    assert marked == "SELECT SQL_CALC_FOUND_ROWS id FROM t"
    assert add_found_rows_marker(marked) == marked


@pytest.mark.parametrize(
    ("sql", "expected"),
    [
        ("SELECT SQL_CALC_FOUND_ROWS * FROM t ORDER BY x LIMIT 10", "SELECT COUNT(*) FROM t"),
        ("SELECT * FROM t ORDER BY x LIMIT 10", "SELECT COUNT(*) FROM t"),
        (
            "SELECT a, b FROM t WHERE a > 1 ORDER BY b DESC, a LIMIT 25 OFFSET 50",
            "SELECT COUNT(*) FROM t WHERE a > 1",
        ),
        ("SELECT a FROM t WHERE a = 1 LIMIT 5, 10", "SELECT COUNT(*) FROM t WHERE a = 1"),
        ("SELECT\n  a\nFROM t\nORDER BY a;", "SELECT COUNT(*) FROM t"),
        ("SELECT a FROM t", "SELECT COUNT(*) FROM t"),
    ],
)
def test_derive_count_statement(sql: str, expected: str) -> None:
    assert derive_count_statement(sql) == expected


@pytest.mark.parametrize("sql", ["ANALYZE t", "explain select 1", "  EXPLAIN QUERY PLAN SELECT 1"])
def test_plan_statements(sql: str) -> None:
    assert is_plan_statement(sql)


def test_non_plan_statement() -> None:
    assert not is_plan_statement("DELETE FROM analyze_log")


def test_plain_statements_are_not_directives() -> None:
    assert parse_directive("DELETE FROM t WHERE id = 1") is None
    assert parse_directive("LOOPY 1") is None


def test_parse_loop_directive() -> None:
    directive = parse_directive("LOOP 100 DELETE FROM t WHERE stale = 1 LIMIT 100")

    assert directive == LoopDirective(limit=100, statement="DELETE FROM t WHERE stale = 1 LIMIT 100")


def test_loop_body_ends_at_semicolon() -> None:
    directive = parse_directive("loop 5 DELETE FROM t LIMIT 5; DROP TABLE t")

    assert isinstance(directive, LoopDirective)
    assert directive.statement == "DELETE FROM t LIMIT 5"


def test_parse_chunk_delete() -> None:
    directive = parse_directive(
        "CHUNK 10 DELETE FROM product WHERE id IN (SELECT id FROM product WHERE stale = 1)"
    )

    assert directive == ChunkDirective(
        limit=10,
        verb="DELETE",
        table="product",
        action="DELETE FROM product WHERE id IN",
        source="SELECT id FROM product WHERE stale = 1",
    )


def test_parse_chunk_update() -> None:
    directive = parse_directive(
        "CHUNK 50 UPDATE `product` SET stale = 0 WHERE id IN (SELECT product_id FROM placement)"
    )

    assert isinstance(directive, ChunkDirective)
    assert directive.verb == "UPDATE"
    assert directive.table == "product"
    assert directive.source == "SELECT product_id FROM placement"


def test_chunk_keeps_source_with_separate_parenthesised_parts() -> None:
    directive = parse_directive(
        "CHUNK 10 DELETE FROM t WHERE id IN (SELECT id FROM a) UNION (SELECT id FROM b)"
    )

    assert isinstance(directive, ChunkDirective)
    assert directive.source == "(SELECT id FROM a) UNION (SELECT id FROM b)"


def test_chunk_batch_binds_keys() -> None:
    directive = ChunkDirective(
        limit=3,
        verb="DELETE",
        table="t",
        action="DELETE FROM t WHERE id IN",
        source="SELECT id FROM t",
    )

    sql, params = directive.batch([4, 5, 6])

    assert sql == "DELETE FROM t WHERE id IN (:chunk_key_0, :chunk_key_1, :chunk_key_2)"
    assert params == {"chunk_key_0": 4, "chunk_key_1": 5, "chunk_key_2": 6}


def test_chunk_batch_escapes_literal_colons() -> None:
    directive = ChunkDirective(
        limit=1,
        verb="UPDATE",
        table="t",
        action="UPDATE t SET note = 'a:b' WHERE id IN",
        source="SELECT id FROM t",
    )

    sql, _ = directive.batch([1])

    assert sql.startswith("UPDATE t SET note = 'a\\:b' WHERE id IN")


@pytest.mark.parametrize(
    "sql",
    [
        "CHUNK abc DELETE FROM t WHERE id IN (SELECT id FROM t)",
        "CHUNK 10",
        "LOOP",
        "LOOP x DELETE FROM t",
        "LOOP 0 DELETE FROM t LIMIT 0",
        "CHUNK -5 DELETE FROM t WHERE id IN (SELECT id FROM t)",
        "CHUNK 10 DELETE FROM t WHERE id = 1",
        "CHUNK 10 x IN (SELECT id FROM t)",
        "CHUNK 10 INSERT INTO t WHERE id IN (SELECT id FROM t)",
        "CHUNK 10 DELETE FROM t WHERE id IN ()",
    ],
)
def test_malformed_directives(sql: str) -> None:
    with pytest.raises(MalformedDirectiveError) as excinfo:
        parse_directive(sql)

    assert excinfo.value.statement == sql
