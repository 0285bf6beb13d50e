from __future__ import annotations

import argparse
import logging
import sys
import time
from dataclasses import replace
from pathlib import Path
from signal import SIGINT, signal
from typing import TYPE_CHECKING

from dotenv import load_dotenv

from brokerdb.adapters.sqlalchemy.session_factory import shutdown
from brokerdb.app import build_data_access
from brokerdb.config import ConfigurationError, configure_logging, get_database_config
from brokerdb.domain.scripts import split_statements
from brokerdb.ui.formatting import format_result

if TYPE_CHECKING:
    from collections.abc import Sequence
    from types import FrameType

    from brokerdb.app import DataAccess
    from brokerdb.config import DatabaseConfig

log = logging.getLogger(__name__)


def _parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run statements through the brokerdb engine")
    parser.add_argument(
        "--database-uri",
        type=str,
        help="SQLAlchemy database URI (defaults to DATABASE_URI or the local data dir)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Log at DEBUG level",
    )
    parser.add_argument(
        "--echo-sql",
        action="store_true",
        help="Also log every statement SQLAlchemy sends to the driver",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    query = subparsers.add_parser("query", help="Run a SELECT and print its rows")
    query.add_argument("sql", type=str, help="Statement to run")

    update = subparsers.add_parser(
        "update",
        help="Run a data-changing statement or a LOOP/CHUNK directive",
    )
    update.add_argument("sql", type=str, help="Statement to run")

    run = subparsers.add_parser("run", help="Run every statement of a script file")
    run.add_argument("path", type=Path, help="Script with statements separated by ';'")

    return parser.parse_args(list(argv))


def _load_config(args: argparse.Namespace) -> DatabaseConfig:
    config = get_database_config()
    if args.database_uri:
        config = replace(config, uri=args.database_uri)
    return config


def _run_query(access: DataAccess, sql: str) -> None:
    start = time.monotonic()
    with access.select(sql) as cursor:
        elapsed = time.monotonic() - start
        output = format_result(cursor, elapsed)
    print(output)  # noqa: T201


def _run_script(access: DataAccess, statements: Sequence[str]) -> int:
    total = 0
    for index, statement in enumerate(statements, start=1):
        rows = access.update(statement)
        log.info("Statement %s/%s: %s row(s)", index, len(statements), rows)
        total += rows
    return total


def main(argv: Sequence[str] | None = None) -> None:
    """Main application entry point."""
    args_list = list(argv) if argv is not None else list(sys.argv[1:])
    parsed_args = _parse_args(args_list)
    configure_logging(
        level=logging.DEBUG if parsed_args.verbose else logging.INFO,
        echo_statements=parsed_args.echo_sql,
    )
    statements: list[str] = []
    try:
        config = _load_config(parsed_args)
        if parsed_args.command == "run":
            statements = split_statements(parsed_args.path.read_text(encoding="utf-8"))
    except (ConfigurationError, OSError):
        log.exception("CLI validation error")
        sys.exit(2)

    try:
        access = build_data_access(config=config)
        if parsed_args.command == "query":
            _run_query(access, parsed_args.sql)
        elif parsed_args.command == "update":
            rows = access.update(parsed_args.sql)
            log.info("%s row(s) affected", rows)
        elif parsed_args.command == "run":
            total = _run_script(access, statements)
            log.info("Script finished: %s statement(s), %s row(s)", len(statements), total)
        else:
            raise ValueError(f"Unsupported command: {parsed_args.command}")  # noqa: TRY301
    except Exception:
        log.exception("Fatal error while executing statements")
        sys.exit(1)
    finally:
        shutdown()


def sigint_handler(_signal_received: int, _frame: FrameType | None) -> None:
    """Handle SIGINT (Ctrl+C) gracefully."""
    log.info("Closed by user (Ctrl+C)")
    sys.exit(0)


def run() -> None:
    """Console script entry point."""
    load_dotenv()
    signal(SIGINT, sigint_handler)
    main()


if __name__ == "__main__":
    run()
