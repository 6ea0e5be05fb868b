"""Typed mutation records that execute themselves against a store transaction.

Single-entity operations of the same kind and entity class can be merged into a
bulk operation. Bulk updates still run member by member so each revisioned
entity keeps its own optimistic-lock check.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import UTC, datetime
from enum import StrEnum
from typing import TYPE_CHECKING, ClassVar, cast

from unitofwork.config import DEFAULT_BATCH_SIZE
from unitofwork.domain.errors import (
    OptimisticLockError,
    StoreError,
    UnitOfWorkError,
    ValidationFailedError,
)
from unitofwork.domain.model import (
    EntityKey,
    Revisioned,
    SoftDeletable,
    Timestamped,
    Validatable,
    capabilities_of,
    type_name,
)

if TYPE_CHECKING:
    from collections.abc import Iterator, Mapping, Sequence

    from unitofwork.domain.model import Entity
    from unitofwork.domain.ports import StoreTransaction
    from unitofwork.domain.snapshot import FieldChange


class OperationKind(StrEnum):
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"
    BULK_INSERT = "bulk_insert"
    BULK_UPDATE = "bulk_update"
    BULK_DELETE = "bulk_delete"

    @property
    def is_bulk(self) -> bool:
        return self in _BULK_KINDS

    @property
    def base(self) -> OperationKind:
        """The single-entity kind this kind belongs to."""
        return _BASE_KIND[self]


_BULK_KINDS = frozenset(
    {OperationKind.BULK_INSERT, OperationKind.BULK_UPDATE, OperationKind.BULK_DELETE}
)
_BASE_KIND = {
    OperationKind.INSERT: OperationKind.INSERT,
    OperationKind.BULK_INSERT: OperationKind.INSERT,
    OperationKind.UPDATE: OperationKind.UPDATE,
    OperationKind.BULK_UPDATE: OperationKind.UPDATE,
    OperationKind.DELETE: OperationKind.DELETE,
    OperationKind.BULK_DELETE: OperationKind.DELETE,
}


def _now() -> datetime:
    return datetime.now(tz=UTC)


def _describe_entity(entity: Entity) -> str:
    return f"{type_name(type(entity))} with id {entity.id}"


@contextmanager
def _store_errors(action: str, entity: Entity) -> Iterator[None]:
    try:
        yield
    except UnitOfWorkError:
        raise
    except Exception as exc:
        raise StoreError(f"failed to {action} entity {_describe_entity(entity)}: {exc}") from exc


def _validate(entity: Entity) -> None:
    if not capabilities_of(type(entity)).validatable:
        return
    try:
        cast(Validatable, entity).validate()
    except ValidationFailedError:
        raise
    except Exception as exc:
        raise ValidationFailedError(
            f"validation failed for entity {_describe_entity(entity)}: {exc}"
        ) from exc


def _prepare_insert(entity: Entity) -> None:
    _validate(entity)
    if capabilities_of(type(entity)).timestamped and entity.is_new:
        now = _now()
        stamped = cast(Timestamped, entity)
        stamped.created_at = now
        stamped.updated_at = now


def _execute_update(tx: StoreTransaction, entity: Entity) -> None:
    capabilities = capabilities_of(type(entity))
    _validate(entity)
    if capabilities.timestamped:
        cast(Timestamped, entity).updated_at = _now()

    if not capabilities.revisioned:
        with _store_errors("update", entity):
            tx.save(entity)
        return

    revisioned = cast(Revisioned, entity)
    current_revision = revisioned.revision
    revisioned.revision = revisioned.next_revision()
    with _store_errors("update", entity):
        affected = tx.save_where(entity, {"id": entity.id, "revision": current_revision})
    if affected == 0:
        # the stored row still carries the old revision
        revisioned.revision = current_revision
        raise OptimisticLockError(
            f"optimistic lock failed for entity {_describe_entity(entity)} "
            f"at revision {current_revision}"
        )


def _execute_delete(tx: StoreTransaction, entity: Entity) -> None:
    capabilities = capabilities_of(type(entity))
    if not capabilities.soft_delete:
        with _store_errors("delete", entity):
            tx.delete(entity)
        return

    now = _now()
    cast(SoftDeletable, entity).deleted_at = now
    if capabilities.timestamped:
        cast(Timestamped, entity).updated_at = now
    with _store_errors("soft delete", entity):
        tx.save(entity)


class Operation(ABC):
    """One pending mutation of one entity class."""

    kind: ClassVar[OperationKind]

    @property
    @abstractmethod
    def entities(self) -> tuple[Entity, ...]: ...

    @property
    def entity(self) -> Entity:
        """The target entity; the first member for bulk operations."""
        return self.entities[0]

    @property
    def entity_type(self) -> type[Entity]:
        return type(self.entity)

    @abstractmethod
    def execute(self, tx: StoreTransaction) -> None: ...

    def same_identity(self, other: Operation) -> bool:
        """Bulk operations never take part in identity-based cancellation."""
        _ = other
        return False

    def can_merge(self, other: Operation) -> bool:
        return other.kind.base is self.kind.base and other.entity_type is self.entity_type

    @abstractmethod
    def merge(self, other: Operation) -> Operation: ...

    def describe(self) -> str:
        return f"{self.kind} {_describe_entity(self.entity)}"

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.describe()}>"


class _SingleEntityOperation(Operation):
    def __init__(self, entity: Entity) -> None:
        self._entity = entity

    @property
    def entities(self) -> tuple[Entity, ...]:
        return (self._entity,)

    @property
    def entity(self) -> Entity:
        return self._entity

    def same_identity(self, other: Operation) -> bool:
        if other.kind is not self.kind:
            return False
        return EntityKey.of(other.entity) == EntityKey.of(self._entity)


class _BulkOperation(Operation):
    def __init__(self, entities: Sequence[Entity]) -> None:
        if not entities:
            raise ValueError(f"{type(self).__name__} requires at least one entity")
        entity_type = type(entities[0])
        if any(type(entity) is not entity_type for entity in entities):
            raise ValueError(f"{type(self).__name__} entities must share one type")
        self._entities = tuple(entities)

    @property
    def entities(self) -> tuple[Entity, ...]:
        return self._entities

    def describe(self) -> str:
        return f"{self.kind} {len(self._entities)} x {type_name(self.entity_type)}"


class InsertOperation(_SingleEntityOperation):
    kind = OperationKind.INSERT

    def __init__(self, entity: Entity, *, batch_size: int = DEFAULT_BATCH_SIZE) -> None:
        super().__init__(entity)
        self.batch_size = batch_size

    def execute(self, tx: StoreTransaction) -> None:
        _prepare_insert(self._entity)
        with _store_errors("insert", self._entity):
            tx.create(self._entity)

    def merge(self, other: Operation) -> Operation:
        if not self.can_merge(other):
            return self
        return BulkInsertOperation((self._entity, *other.entities), batch_size=self.batch_size)


class UpdateOperation(_SingleEntityOperation):
    kind = OperationKind.UPDATE

    def __init__(self, entity: Entity, changes: Mapping[str, FieldChange] | None = None) -> None:
        super().__init__(entity)
        self.changes: dict[str, FieldChange] = dict(changes or {})

    def execute(self, tx: StoreTransaction) -> None:
        _execute_update(tx, self._entity)

    def merge(self, other: Operation) -> Operation:
        if not self.can_merge(other):
            return self
        return BulkUpdateOperation((self._entity, *other.entities))


class DeleteOperation(_SingleEntityOperation):
    kind = OperationKind.DELETE

    def execute(self, tx: StoreTransaction) -> None:
        _execute_delete(tx, self._entity)

    def merge(self, other: Operation) -> Operation:
        if not self.can_merge(other):
            return self
        return BulkDeleteOperation((self._entity, *other.entities))


class BulkInsertOperation(_BulkOperation):
    kind = OperationKind.BULK_INSERT

    def __init__(self, entities: Sequence[Entity], *, batch_size: int = DEFAULT_BATCH_SIZE) -> None:
        super().__init__(entities)
        self.batch_size = batch_size

    def execute(self, tx: StoreTransaction) -> None:
        for entity in self._entities:
            _prepare_insert(entity)
        with _store_errors("bulk insert", self.entity):
            tx.bulk_create(self._entities, self.batch_size)

    def merge(self, other: Operation) -> Operation:
        if not self.can_merge(other):
            return self
        return BulkInsertOperation((*self._entities, *other.entities), batch_size=self.batch_size)


class BulkUpdateOperation(_BulkOperation):
    kind = OperationKind.BULK_UPDATE

    def execute(self, tx: StoreTransaction) -> None:
        for entity in self._entities:
            _execute_update(tx, entity)

    def merge(self, other: Operation) -> Operation:
        if not self.can_merge(other):
            return self
        return BulkUpdateOperation((*self._entities, *other.entities))


class BulkDeleteOperation(_BulkOperation):
    kind = OperationKind.BULK_DELETE

    def execute(self, tx: StoreTransaction) -> None:
        if capabilities_of(self.entity_type).soft_delete:
            for entity in self._entities:
                _execute_delete(tx, entity)
            return
        with _store_errors("bulk delete", self.entity):
            tx.bulk_delete(self._entities)

    def merge(self, other: Operation) -> Operation:
        if not self.can_merge(other):
            return self
        return BulkDeleteOperation((*self._entities, *other.entities))
