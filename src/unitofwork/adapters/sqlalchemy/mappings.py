"""SQLAlchemy mapping helpers for unit-of-work entities.

Hosts map their own entity classes imperatively onto ``mapper_registry``;
``entity_table`` adds the columns the entity capabilities rely on.
sql.func.now() uses UTC for sqlite databases
-> see https://www.sqlite.org/lang_datefunc.html
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import Column, DateTime, Dialect, Integer, Table, TypeDecorator, orm
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.exc import NoInspectionAvailable

if TYPE_CHECKING:
    from sqlalchemy.engine import Engine
    from sqlalchemy.orm import Mapper

    from unitofwork.domain.model import Entity

log = logging.getLogger(__name__)


class UTCDateTime(TypeDecorator[datetime]):
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        _ = dialect
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def process_result_value(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        _ = dialect
        if value is None:
            return None
        return value if value.tzinfo else value.replace(tzinfo=UTC)


mapper_registry = orm.registry()
mapper_registry.metadata.naming_convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_label)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_label)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


def entity_table(
    name: str,
    *columns: Column[Any],
    timestamped: bool = False,
    revisioned: bool = False,
    soft_delete: bool = False,
) -> Table:
    """Declare a table with an integer ``id`` key plus the requested capability columns."""

    standard: list[Column[Any]] = [Column("id", Integer, primary_key=True, autoincrement=True)]
    if timestamped:
        standard.append(Column("created_at", UTCDateTime, nullable=True))
        standard.append(Column("updated_at", UTCDateTime, nullable=True))
    if revisioned:
        standard.append(Column("revision", Integer, nullable=False, default=1))
    if soft_delete:
        standard.append(Column("deleted_at", UTCDateTime, nullable=True))
    return Table(name, mapper_registry.metadata, *standard, *columns)


def map_entity(entity_cls: type[Entity], table: Table, **kwargs: Any) -> Mapper[Any]:
    """Map ``entity_cls`` onto ``table`` unless it is mapped already."""

    existing = mapper_for(entity_cls)
    if existing is not None:
        return existing
    log.debug("Mapping %s onto table %s", entity_cls.__qualname__, table.name)
    return mapper_registry.map_imperatively(entity_cls, table, **kwargs)


def mapper_for(entity_cls: type[Entity]) -> Mapper[Any] | None:
    try:
        return sa_inspect(entity_cls)
    except NoInspectionAvailable:
        return None


def create_all_tables(engine: Engine) -> None:
    """Create database tables for the mapped metadata."""

    log.info("Creating all tables")
    mapper_registry.metadata.create_all(engine)
