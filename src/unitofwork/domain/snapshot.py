"""Snapshot engine: point-in-time copies of entity field values for dirty checking.

Dirtiness is deliberately conservative: a field that exists on the live entity
but not in its snapshot marks the entity dirty even when every tracked value is
unchanged.
"""

from __future__ import annotations

import copy
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, fields, is_dataclass
from datetime import UTC, date, datetime, time, timedelta
from decimal import Decimal
from enum import Enum, StrEnum
from typing import TYPE_CHECKING, cast
from uuid import UUID

from unitofwork.domain.model.entity import IGNORE_METADATA_KEY, IGNORE_METADATA_VALUE, type_name

if TYPE_CHECKING:
    from unitofwork.domain.model import Entity

_BY_VALUE_TYPES: tuple[type, ...] = (
    type(None),
    bool,
    int,
    float,
    complex,
    str,
    bytes,
    Decimal,
    UUID,
    Enum,
    datetime,
    date,
    time,
    timedelta,
)


class FieldChangeKind(StrEnum):
    ADDED = "added"
    MODIFIED = "modified"
    DELETED = "deleted"


@dataclass(frozen=True, slots=True)
class FieldChange:
    field_name: str
    old_value: object
    new_value: object
    kind: FieldChangeKind


def _capture(value: object) -> object:
    if isinstance(value, _BY_VALUE_TYPES):
        return value
    return copy.deepcopy(value)


def _ignored_fields(entity: object) -> frozenset[str]:
    if not is_dataclass(entity):
        return frozenset()
    return frozenset(
        f.name
        for f in fields(entity)
        if f.metadata.get(IGNORE_METADATA_KEY) == IGNORE_METADATA_VALUE
    )


def extract_field_values(entity: object) -> dict[str, object]:
    """Return a detached copy of every public, tracked attribute of ``entity``."""

    ignored = _ignored_fields(entity)
    values: dict[str, object] = {}
    if is_dataclass(entity):
        for f in fields(entity):
            if f.name in ignored or f.name.startswith("_"):
                continue
            values[f.name] = _capture(getattr(entity, f.name))
    # attributes attached at runtime count as fields too
    for name, value in getattr(entity, "__dict__", {}).items():
        if name.startswith("_") or name in ignored or name in values:
            continue
        values[name] = _capture(value)
    return values


def deep_equal(left: object, right: object) -> bool:
    """Structural equality that also requires both sides to share a type."""
    return _deep_equal(left, right, set())


def _deep_equal(left: object, right: object, seen: set[tuple[int, int]]) -> bool:
    if left is right:
        return True
    if left is None or right is None:
        return False
    if type(left) is not type(right):
        return False

    pair = (id(left), id(right))
    if pair in seen:
        return True

    if is_dataclass(left) and not isinstance(left, type):
        seen.add(pair)
        return all(
            _deep_equal(getattr(left, f.name), getattr(right, f.name), seen) for f in fields(left)
        )
    if isinstance(left, Mapping):
        seen.add(pair)
        other = cast("Mapping[object, object]", right)
        if left.keys() != other.keys():
            return False
        return all(_deep_equal(left[key], other[key], seen) for key in left)
    if isinstance(left, (list, tuple)):
        seen.add(pair)
        other_seq = cast("Sequence[object]", right)
        if len(left) != len(other_seq):
            return False
        return all(_deep_equal(a, b, seen) for a, b in zip(left, other_seq, strict=True))
    return left == right


@dataclass(slots=True)
class EntitySnapshot:
    """Captured field values of one entity."""

    entity_type: type[Entity]
    entity_id: int | None
    field_values: dict[str, object]
    captured_at: datetime

    @classmethod
    def capture(cls, entity: Entity) -> EntitySnapshot:
        return cls(
            entity_type=type(entity),
            entity_id=entity.id,
            field_values=extract_field_values(entity),
            captured_at=datetime.now(tz=UTC),
        )

    def is_dirty(self, entity: Entity) -> bool:
        if type(entity) is not self.entity_type:
            return True
        if entity.id != self.entity_id:
            return True

        current = extract_field_values(entity)
        for name, original in self.field_values.items():
            if name not in current:
                return True
            if not deep_equal(original, current[name]):
                return True
        return any(name not in self.field_values for name in current)

    def changed_fields(self, entity: Entity) -> dict[str, FieldChange]:
        changes: dict[str, FieldChange] = {}
        if type(entity) is not self.entity_type:
            return changes

        current = extract_field_values(entity)
        for name, original in self.field_values.items():
            if name not in current:
                changes[name] = FieldChange(name, original, None, FieldChangeKind.DELETED)
            elif not deep_equal(original, current[name]):
                changes[name] = FieldChange(name, original, current[name], FieldChangeKind.MODIFIED)
        for name, value in current.items():
            if name not in self.field_values:
                changes[name] = FieldChange(name, None, value, FieldChangeKind.ADDED)
        return changes


def snapshot_key(entity: Entity) -> str:
    return f"{type_name(type(entity))}#{entity.id}"


class SnapshotManager:
    """Holds at most one snapshot per ``type#id`` key; re-snapshotting replaces it."""

    def __init__(self) -> None:
        self._snapshots: dict[str, EntitySnapshot] = {}

    def __len__(self) -> int:
        return len(self._snapshots)

    def take_snapshot(self, entity: Entity) -> EntitySnapshot:
        snapshot = EntitySnapshot.capture(entity)
        self._snapshots[snapshot_key(entity)] = snapshot
        return snapshot

    def snapshot_for(self, entity: Entity) -> EntitySnapshot | None:
        return self._snapshots.get(snapshot_key(entity))

    def snapshots(self) -> tuple[tuple[str, EntitySnapshot], ...]:
        return tuple(self._snapshots.items())

    def is_dirty(self, entity: Entity) -> bool:
        """Entities without a snapshot are never considered dirty."""
        snapshot = self.snapshot_for(entity)
        if snapshot is None:
            return False
        return snapshot.is_dirty(entity)

    def get_changed_fields(self, entity: Entity) -> dict[str, FieldChange]:
        snapshot = self.snapshot_for(entity)
        if snapshot is None:
            return {}
        return snapshot.changed_fields(entity)

    def remove_snapshot(self, entity: Entity) -> None:
        self._snapshots.pop(snapshot_key(entity), None)

    def clear(self) -> None:
        self._snapshots = {}
