"""Database engine configuration values."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Final

from .env import env_bool, env_float, env_int, env_optional_bool, require_env_vars
from .storage import StorageConfig, get_storage_config

DEFAULT_FETCH_SIZE: Final[int] = 100
DEFAULT_RETRY_ATTEMPTS: Final[int] = 2
DEFAULT_RETRY_DELAY_SECONDS: Final[float] = 1.0
DEFAULT_CACHE_TTL_SECONDS: Final[float] = 300.0
DEFAULT_SLOW_STATEMENT_SECONDS: Final[float] = 5.0
DEFAULT_SLOW_CURSOR_SECONDS: Final[float] = 30.0
DEFAULT_DEBUG_FREQUENCY: Final[int] = 1_000_000

# Engines exposing ``SELECT FOUND_ROWS()`` for SQL_CALC_FOUND_ROWS queries.
NATIVE_FOUND_ROWS_DIALECTS: Final[frozenset[str]] = frozenset({"mysql", "mariadb"})


def _walk_causes(exc: BaseException) -> list[BaseException]:
    seen: list[BaseException] = []
    pending: list[BaseException] = [exc]
    while pending:
        current = pending.pop()
        if any(current is other for other in seen):
            continue
        seen.append(current)
        for linked in (current.__cause__, current.__context__, getattr(current, "orig", None)):
            if isinstance(linked, BaseException):
                pending.append(linked)
    return seen


@dataclass(slots=True, frozen=True)
class RetryPolicy:
    """Bounded, classified retry applied to structured writes.

    ``attempts`` counts the extra attempts after the first one. A failure is
    retried only when one of ``markers`` appears in the message of the
    exception or of anything in its cause chain.
    """

    attempts: int = DEFAULT_RETRY_ATTEMPTS
    delay_seconds: float = DEFAULT_RETRY_DELAY_SECONDS
    markers: tuple[str, ...] = ("try restarting transaction",)

    def is_transient(self, exc: BaseException) -> bool:
        lowered = tuple(marker.lower() for marker in self.markers)
        for candidate in _walk_causes(exc):
            message = str(candidate).lower()
            if any(marker in message for marker in lowered):
                return True
        return False


@dataclass(slots=True, frozen=True)
class CacheConfig:
    enabled: bool = True
    ttl_seconds: float | None = DEFAULT_CACHE_TTL_SECONDS


@dataclass(slots=True, frozen=True)
class DatabaseConfig:
    uri: str
    fetch_size: int = DEFAULT_FETCH_SIZE
    set_read_only: bool = True
    emulate_found_rows: bool | None = None
    slow_statement_seconds: float = DEFAULT_SLOW_STATEMENT_SECONDS
    slow_cursor_seconds: float = DEFAULT_SLOW_CURSOR_SECONDS
    debug_sql: bool = False
    redact_sql: bool = False
    debug_pool: bool = False
    debug_frequency: int = DEFAULT_DEBUG_FREQUENCY
    debug_cache: bool = False
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    cache: CacheConfig = field(default_factory=CacheConfig)

    def emulates_found_rows(self, dialect_name: str) -> bool:
        """Return whether found rows must be derived with a COUNT(*) follow-up."""

        if self.emulate_found_rows is not None:
            return self.emulate_found_rows
        return dialect_name not in NATIVE_FOUND_ROWS_DIALECTS

    def describe(self, sql: str) -> str:
        """Render a statement for log output, honouring ``redact_sql``."""

        return "<redacted>" if self.redact_sql else sql


def get_database_config(*, storage: StorageConfig | None = None) -> DatabaseConfig:
    if os.getenv("DATABASE_URI") is not None:
        # blank raises instead of falling back to the data dir
        uri = require_env_vars(["DATABASE_URI"])["DATABASE_URI"]
    else:
        uri = (storage or get_storage_config()).sqlite_uri()

    retry = RetryPolicy(
        attempts=env_int("BROKERDB_RETRY_ATTEMPTS", DEFAULT_RETRY_ATTEMPTS, minimum=0),
        delay_seconds=env_float(
            "BROKERDB_RETRY_DELAY_SECONDS", DEFAULT_RETRY_DELAY_SECONDS, minimum=0.0
        ),
    )
    cache = CacheConfig(
        enabled=env_bool("BROKERDB_CACHE_ENABLED", default=True),
        ttl_seconds=env_float("BROKERDB_CACHE_TTL_SECONDS", DEFAULT_CACHE_TTL_SECONDS, minimum=0.0)
        or None,
    )
    return DatabaseConfig(
        uri=uri,
        fetch_size=env_int("BROKERDB_FETCH_SIZE", DEFAULT_FETCH_SIZE, minimum=1),
        set_read_only=env_bool("BROKERDB_SET_READ_ONLY", default=True),
        emulate_found_rows=env_optional_bool("BROKERDB_EMULATE_FOUND_ROWS"),
        slow_statement_seconds=env_float(
            "BROKERDB_SLOW_STATEMENT_SECONDS", DEFAULT_SLOW_STATEMENT_SECONDS, minimum=0.0
        ),
        slow_cursor_seconds=env_float(
            "BROKERDB_SLOW_CURSOR_SECONDS", DEFAULT_SLOW_CURSOR_SECONDS, minimum=0.0
        ),
        debug_sql=env_bool("BROKERDB_DEBUG_SQL", default=False),
        redact_sql=env_bool("BROKERDB_REDACT_SQL", default=False),
        debug_pool=env_bool("BROKERDB_DEBUG_POOL", default=False),
        debug_frequency=env_int("BROKERDB_DEBUG_FREQUENCY", DEFAULT_DEBUG_FREQUENCY, minimum=1),
        debug_cache=env_bool("BROKERDB_DEBUG_CACHE", default=False),
        retry=retry,
        cache=cache,
    )
