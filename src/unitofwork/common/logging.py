"""Shared logging helpers for the unit-of-work package."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Final

if TYPE_CHECKING:
    from unitofwork.config import UnitOfWorkConfig

PACKAGE_LOGGER: Final[str] = "unitofwork"
LOG_FORMAT: Final[str] = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(
    *,
    level: int = logging.INFO,
    force: bool = False,
    config: UnitOfWorkConfig | None = None,
) -> None:
    """Initialise the root logger and the package logger.

    The root logger gets a terse format at ``level``; ``force=True`` reconfigures
    it during tests. When ``config.enable_detail_log`` is set the ``unitofwork``
    logger is lowered to DEBUG so per-operation tracing shows up even when the
    root stays at INFO.
    """

    logging.basicConfig(level=level, format=LOG_FORMAT, datefmt="%H:%M:%S", force=force)
    package_logger = logging.getLogger(PACKAGE_LOGGER)
    if config is not None and config.enable_detail_log:
        package_logger.setLevel(logging.DEBUG)
    else:
        package_logger.setLevel(logging.NOTSET)
