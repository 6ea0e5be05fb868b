"""Public domain model surface."""

from __future__ import annotations

from unitofwork.domain.model.capabilities import Capabilities, capabilities_of
from unitofwork.domain.model.entity import (
    BaseEntity,
    Entity,
    EntityKey,
    Revisioned,
    RevisionedMixin,
    SoftDeletable,
    SoftDeleteMixin,
    Timestamped,
    TimestampedMixin,
    Validatable,
    ValidatableMixin,
    type_name,
    untracked,
)

__all__ = [  # noqa: RUF022
    # base
    "Entity",
    "BaseEntity",
    "EntityKey",
    "type_name",
    "untracked",
    # capabilities
    "Timestamped",
    "Revisioned",
    "SoftDeletable",
    "Validatable",
    "TimestampedMixin",
    "RevisionedMixin",
    "SoftDeleteMixin",
    "ValidatableMixin",
    "Capabilities",
    "capabilities_of",
]
