"""Location of the default sqlite database used when no URI is configured."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Final

APP_DIR_NAME: Final[str] = "brokerdb"
DEFAULT_DB_FILENAME: Final[str] = "brokerdb.db"


@dataclass(frozen=True, slots=True)
class StorageConfig:
    data_dir: Path
    database_filename: str = DEFAULT_DB_FILENAME

    def database_path(self, *, create_dir: bool = True) -> Path:
        data_dir = self.data_dir.expanduser().resolve()
        if create_dir:
            data_dir.mkdir(parents=True, exist_ok=True)
        return data_dir / self.database_filename

    def sqlite_uri(self) -> str:
        return f"sqlite+pysqlite:///{self.database_path()}"


def _platform_data_dir() -> Path:
    if os.name == "nt":
        root = os.getenv("LOCALAPPDATA")
        return Path(root) if root else Path.home() / "AppData" / "Local"
    root = os.getenv("XDG_DATA_HOME")
    return Path(root) if root else Path.home() / ".local" / "share"


def get_storage_config() -> StorageConfig:
    """Read ``BROKERDB_DATA_DIR`` and ``BROKERDB_DB_FILENAME``."""

    env_dir = os.getenv("BROKERDB_DATA_DIR")
    data_dir = Path(env_dir) if env_dir else _platform_data_dir() / APP_DIR_NAME
    filename = os.getenv("BROKERDB_DB_FILENAME", "").strip() or DEFAULT_DB_FILENAME
    return StorageConfig(data_dir=data_dir, database_filename=filename)
