"""SQLAlchemy adapter package for unitofwork."""

from __future__ import annotations

from .events import install_session_hooks
from .mappings import (
    UTCDateTime,
    create_all_tables,
    entity_table,
    map_entity,
    mapper_for,
    mapper_registry,
)
from .store import SqlAlchemyStore, SqlAlchemyTransaction

__all__ = [
    "SqlAlchemyStore",
    "SqlAlchemyTransaction",
    "UTCDateTime",
    "create_all_tables",
    "entity_table",
    "install_session_hooks",
    "map_entity",
    "mapper_for",
    "mapper_registry",
]
