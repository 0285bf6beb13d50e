"""Logging setup for brokerdb entry points."""

from __future__ import annotations

import logging

SQLALCHEMY_ENGINE_LOGGER = "sqlalchemy.engine"


def configure_logging(
    *,
    level: int = logging.INFO,
    echo_statements: bool = False,
    force: bool = False,
) -> None:
    """Set up the root logger for CLI output.

    brokerdb reports slow and debug statements through its own loggers, so
    SQLAlchemy's engine logger stays at WARNING unless ``echo_statements``
    asks for every statement the driver sees.
    """

    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        datefmt="%H:%M:%S",
        force=force,
    )
    logging.getLogger(SQLALCHEMY_ENGINE_LOGGER).setLevel(
        logging.INFO if echo_statements else logging.WARNING
    )
