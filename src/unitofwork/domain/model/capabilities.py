"""Capability resolution, computed once per entity class."""

from __future__ import annotations

from dataclasses import dataclass, fields, is_dataclass
from functools import cache

from .entity import Entity


@dataclass(frozen=True, slots=True)
class Capabilities:
    timestamped: bool = False
    revisioned: bool = False
    soft_delete: bool = False
    validatable: bool = False


def _declares(entity_type: type, name: str) -> bool:
    if is_dataclass(entity_type) and any(f.name == name for f in fields(entity_type)):
        return True
    return name in getattr(entity_type, "__annotations__", {}) or hasattr(entity_type, name)


@cache
def capabilities_of(entity_type: type[Entity]) -> Capabilities:
    """Return which optional facets ``entity_type`` implements."""
    return Capabilities(
        timestamped=_declares(entity_type, "created_at") and _declares(entity_type, "updated_at"),
        revisioned=_declares(entity_type, "revision")
        and callable(getattr(entity_type, "next_revision", None)),
        soft_delete=_declares(entity_type, "deleted_at"),
        validatable=callable(getattr(entity_type, "validate", None)),
    )
