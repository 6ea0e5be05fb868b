"""
Base building blocks:
identity, table naming and the optional capability facets an entity may carry.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, ClassVar, Final, Protocol, runtime_checkable

IGNORE_METADATA_KEY: Final[str] = "unitofwork"
IGNORE_METADATA_VALUE: Final[str] = "ignore"


def untracked(**kwargs: Any) -> Any:
    """Declare a dataclass field that snapshots and dirty checks skip."""
    metadata = dict(kwargs.pop("metadata", None) or {})
    metadata[IGNORE_METADATA_KEY] = IGNORE_METADATA_VALUE
    return field(metadata=metadata, **kwargs)


def type_name(entity_type: type) -> str:
    """Stable, fully qualified name used for ordering and snapshot keys."""
    return f"{entity_type.__module__}.{entity_type.__qualname__}"


@dataclass(eq=False, kw_only=True)
class Entity:
    """Record participating in a unit of work.

    ``id`` is assigned by the store; ``None`` (or ``0``) means not yet persisted.
    """

    id: int | None = None

    # class-level table name; subclasses should override
    TABLE_NAME: ClassVar[str] = ""

    @property
    def table_name(self) -> str:
        return self.TABLE_NAME or type(self).__name__.lower()

    @property
    def is_new(self) -> bool:
        return not self.id


@runtime_checkable
class Timestamped(Protocol):
    created_at: datetime | None
    updated_at: datetime | None


@runtime_checkable
class Revisioned(Protocol):
    revision: int

    def next_revision(self) -> int: ...


@runtime_checkable
class SoftDeletable(Protocol):
    deleted_at: datetime | None

    @property
    def is_deleted(self) -> bool: ...


@runtime_checkable
class Validatable(Protocol):
    def validate(self) -> None:
        """Raise ``ValueError`` (or any exception) when the entity is invalid."""
        ...


@dataclass(eq=False, kw_only=True)
class TimestampedMixin:
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(eq=False, kw_only=True)
class RevisionedMixin:
    revision: int = 1

    def next_revision(self) -> int:
        return self.revision + 1


@dataclass(eq=False, kw_only=True)
class SoftDeleteMixin:
    deleted_at: datetime | None = None

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None


class ValidatableMixin:
    def validate(self) -> None:
        """Default: always valid. Override to raise on invalid state."""
        return None


@dataclass(eq=False, kw_only=True)
class BaseEntity(Entity, TimestampedMixin, RevisionedMixin, SoftDeleteMixin, ValidatableMixin):
    """Entity carrying timestamps, an optimistic-lock revision, soft deletion and validation."""


@dataclass(frozen=True, slots=True)
class EntityKey:
    """Registry identity: class plus stored id, or object identity while unsaved."""

    entity_type: type[Entity]
    ident: object

    @classmethod
    def of(cls, entity: Entity) -> EntityKey:
        if entity.is_new:
            return cls(type(entity), ("transient", id(entity)))
        return cls(type(entity), entity.id)
