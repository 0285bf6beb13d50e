"""Application configuration helpers."""

from __future__ import annotations

from brokerdb.common.logging import configure_logging

from .database import CacheConfig, DatabaseConfig, RetryPolicy, get_database_config
from .env import require_env_vars
from .errors import ConfigurationError, InvalidConfigurationError, MissingConfigurationError
from .storage import StorageConfig, get_storage_config

__all__ = [
    "CacheConfig",
    "ConfigurationError",
    "DatabaseConfig",
    "InvalidConfigurationError",
    "MissingConfigurationError",
    "RetryPolicy",
    "StorageConfig",
    "configure_logging",
    "get_database_config",
    "get_storage_config",
    "require_env_vars",
]
