"""Database location for the SQLAlchemy store."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Final

from .env import env_bool

DEFAULT_DB_FILENAME: Final[str] = "unitofwork.db"


@dataclass(frozen=True, slots=True)
class DatabaseConfig:
    uri: str
    echo: bool = False


def sqlite_uri(data_dir: Path) -> str:
    """SQLite file URI inside ``data_dir``, creating the directory if needed."""

    directory = data_dir.expanduser().resolve()
    directory.mkdir(parents=True, exist_ok=True)
    return f"sqlite+pysqlite:///{directory / DEFAULT_DB_FILENAME}"


def get_database_config(*, data_dir: Path | None = None) -> DatabaseConfig:
    """``DATABASE_URI`` wins; otherwise a SQLite file in ``UOW_DATA_DIR`` (default: cwd)."""

    echo = env_bool("UOW_DATABASE_ECHO", False)
    env_uri = os.getenv("DATABASE_URI")
    if env_uri:
        return DatabaseConfig(uri=env_uri, echo=echo)
    directory = data_dir or Path(os.getenv("UOW_DATA_DIR") or ".")
    return DatabaseConfig(uri=sqlite_uri(directory), echo=echo)
