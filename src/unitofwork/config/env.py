"""Environment variable loaders for configuration."""

from __future__ import annotations

import os
from typing import TYPE_CHECKING

from dotenv import load_dotenv

from .errors import ConfigurationError

if TYPE_CHECKING:
    from pathlib import Path

_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})
_FALSE_VALUES = frozenset({"0", "false", "no", "off"})


def load_env_file(path: Path | None) -> None:
    """Load ``path`` into the process environment without overriding set values."""

    if path is None:
        return
    if not path.is_file():
        raise ConfigurationError(f"Environment file not found: {path}")
    load_dotenv(path, override=False)


def env_bool(name: str, default: bool) -> bool:
    """Return a boolean environment variable, falling back to ``default`` when unset."""

    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    normalized = value.strip().lower()
    if normalized in _TRUE_VALUES:
        return True
    if normalized in _FALSE_VALUES:
        return False
    raise ConfigurationError(f"Invalid boolean for {name}: {value!r}")


def env_int(name: str, default: int) -> int:
    """Return an integer environment variable, falling back to ``default`` when unset."""

    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value.strip())
    except ValueError as exc:
        raise ConfigurationError(f"Invalid integer for {name}: {value!r}") from exc


def env_list(name: str) -> tuple[str, ...]:
    """Return a comma separated environment variable as a tuple of stripped items."""

    value = os.getenv(name)
    if value is None:
        return ()
    return tuple(item.strip() for item in value.split(",") if item.strip())
