"""Unit-of-work and host hook configuration."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Final

from .env import env_bool, env_int, env_list, load_env_file
from .errors import ConfigurationError

if TYPE_CHECKING:
    from pathlib import Path

DEFAULT_BATCH_SIZE: Final[int] = 1000
DEFAULT_MAX_ENTITY_COUNT: Final[int] = 10000


@dataclass(frozen=True, slots=True)
class UnitOfWorkConfig:
    """Behavioural switches for a single unit of work.

    ``enable_detail_log`` only controls DEBUG tracing and has no behavioural effect.
    """

    enable_dirty_check: bool = True
    batch_size: int = DEFAULT_BATCH_SIZE
    enable_operation_merge: bool = True
    max_entity_count: int = DEFAULT_MAX_ENTITY_COUNT
    enable_detail_log: bool = False

    def __post_init__(self) -> None:
        if self.batch_size < 1:
            raise ConfigurationError(f"batch_size must be positive, got {self.batch_size}")
        if self.max_entity_count < 1:
            raise ConfigurationError(
                f"max_entity_count must be positive, got {self.max_entity_count}"
            )


@dataclass(frozen=True, slots=True)
class HookConfig:
    """Options for the host integration hooks."""

    enabled: bool = True
    auto_snapshot: bool = True
    excluded_tables: tuple[str, ...] = ()
    verbose_log: bool = False

    def is_excluded(self, table_name: str) -> bool:
        lowered = table_name.casefold()
        return any(lowered == excluded.casefold() for excluded in self.excluded_tables)


def get_unit_of_work_config(*, env_file: Path | None = None) -> UnitOfWorkConfig:
    """Build a config from ``UOW_*`` environment variables (optionally loaded from a file)."""

    load_env_file(env_file)
    return UnitOfWorkConfig(
        enable_dirty_check=env_bool("UOW_ENABLE_DIRTY_CHECK", True),
        batch_size=env_int("UOW_BATCH_SIZE", DEFAULT_BATCH_SIZE),
        enable_operation_merge=env_bool("UOW_ENABLE_OPERATION_MERGE", True),
        max_entity_count=env_int("UOW_MAX_ENTITY_COUNT", DEFAULT_MAX_ENTITY_COUNT),
        enable_detail_log=env_bool("UOW_ENABLE_DETAIL_LOG", False),
    )


def get_hook_config(*, env_file: Path | None = None) -> HookConfig:
    load_env_file(env_file)
    return HookConfig(
        enabled=env_bool("UOW_HOOKS_ENABLED", True),
        auto_snapshot=env_bool("UOW_HOOKS_AUTO_SNAPSHOT", True),
        excluded_tables=env_list("UOW_HOOKS_EXCLUDED_TABLES"),
        verbose_log=env_bool("UOW_HOOKS_VERBOSE_LOG", False),
    )
