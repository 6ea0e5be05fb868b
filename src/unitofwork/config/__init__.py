"""Application configuration helpers."""

from __future__ import annotations

from .errors import ConfigurationError
from .storage import DEFAULT_DB_FILENAME, DatabaseConfig, get_database_config, sqlite_uri
from .unit_of_work import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_MAX_ENTITY_COUNT,
    HookConfig,
    UnitOfWorkConfig,
    get_hook_config,
    get_unit_of_work_config,
)

__all__ = [
    "DEFAULT_BATCH_SIZE",
    "DEFAULT_DB_FILENAME",
    "DEFAULT_MAX_ENTITY_COUNT",
    "ConfigurationError",
    "DatabaseConfig",
    "HookConfig",
    "UnitOfWorkConfig",
    "get_database_config",
    "get_hook_config",
    "get_unit_of_work_config",
    "sqlite_uri",
]
