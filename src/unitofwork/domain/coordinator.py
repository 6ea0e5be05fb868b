"""Unit-of-work coordinator.

Collects entity registrations, turns them into operations, and on commit runs
the dirty-detection sweep, cancels and merges redundant operations, orders them
by type dependencies and executes them inside one store transaction.

One re-entrant lock per instance serialises every registration, ``commit`` and
``rollback``; a commit holds it for its whole duration, including execution.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from enum import StrEnum
from logging import getLogger
from typing import TYPE_CHECKING, Literal

from unitofwork.config import UnitOfWorkConfig
from unitofwork.domain.dependency import DependencyManager
from unitofwork.domain.errors import (
    CapacityExceededError,
    InvalidStateError,
    OperationFailedError,
    UnitOfWorkError,
)
from unitofwork.domain.model import EntityKey, type_name
from unitofwork.domain.operations import (
    DeleteOperation,
    InsertOperation,
    Operation,
    OperationKind,
    UpdateOperation,
)
from unitofwork.domain.snapshot import SnapshotManager

if TYPE_CHECKING:
    from collections.abc import Iterator, Mapping, Sequence
    from types import TracebackType

    from unitofwork.domain.model import Entity
    from unitofwork.domain.ports import RelationalStore
    from unitofwork.domain.snapshot import FieldChange

log = getLogger(__name__)


class UnitOfWorkState(StrEnum):
    OPEN = "open"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


@dataclass(frozen=True, slots=True)
class UnitOfWorkStats:
    """Point-in-time counters, for observability only."""

    new_entities: int
    dirty_entities: int
    removed_entities: int
    clean_entities: int
    total_operations: int
    is_committed: bool
    is_rolled_back: bool


class _Registry:
    """Entities in one lifecycle bucket, keyed by class and identity, in arrival order."""

    def __init__(self) -> None:
        self._entries: dict[EntityKey, Entity] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[Entity]:
        return iter(tuple(self._entries.values()))

    def __contains__(self, entity: Entity) -> bool:
        return EntityKey.of(entity) in self._entries

    def add(self, entity: Entity) -> None:
        self._entries[EntityKey.of(entity)] = entity

    def discard(self, entity: Entity) -> bool:
        return self._entries.pop(EntityKey.of(entity), None) is not None

    def find(self, entity_type: type[Entity], entity_id: object) -> Entity | None:
        return self._entries.get(EntityKey(entity_type, entity_id))

    def clear(self) -> None:
        self._entries = {}


class UnitOfWork:
    """Accumulates entity mutations and persists them as one atomic batch."""

    def __init__(
        self,
        store: RelationalStore,
        config: UnitOfWorkConfig | None = None,
        *,
        dependencies: DependencyManager | None = None,
    ) -> None:
        self.config = config or UnitOfWorkConfig()
        self._store = store
        self._dependencies = dependencies or DependencyManager()
        self._new = _Registry()
        self._dirty = _Registry()
        self._removed = _Registry()
        self._clean = _Registry()
        self._snapshots = SnapshotManager()
        self._operations: list[Operation] = []
        self._state = UnitOfWorkState.OPEN
        self._executing = False
        self._lock = threading.RLock()

    def __enter__(self) -> UnitOfWork:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> Literal[False]:
        if exc_type is not None and self.state is UnitOfWorkState.OPEN:
            self.rollback()
        return False  # don't swallow exceptions

    # -- introspection ---------------------------------------------------------

    @property
    def dependencies(self) -> DependencyManager:
        return self._dependencies

    @property
    def state(self) -> UnitOfWorkState:
        with self._lock:
            return self._state

    @property
    def is_committed(self) -> bool:
        return self.state is UnitOfWorkState.COMMITTED

    @property
    def is_rolled_back(self) -> bool:
        return self.state is UnitOfWorkState.ROLLED_BACK

    @property
    def is_executing(self) -> bool:
        with self._lock:
            return self._executing

    def pending_operations(self) -> tuple[Operation, ...]:
        with self._lock:
            return tuple(self._operations)

    def get_stats(self) -> UnitOfWorkStats:
        with self._lock:
            return UnitOfWorkStats(
                new_entities=len(self._new),
                dirty_entities=len(self._dirty),
                removed_entities=len(self._removed),
                clean_entities=len(self._clean),
                total_operations=len(self._operations),
                is_committed=self._state is UnitOfWorkState.COMMITTED,
                is_rolled_back=self._state is UnitOfWorkState.ROLLED_BACK,
            )

    # -- registration ----------------------------------------------------------

    def register_new(self, entity: Entity) -> None:
        with self._lock:
            self._ensure_open()
            self._require_entity(entity)

            if entity in self._dirty:
                raise InvalidStateError("entity is already marked as dirty")
            if entity in self._removed:
                raise InvalidStateError("entity is already marked for removal")
            if entity in self._new:
                return

            self._check_capacity()
            self._clean.discard(entity)
            self._new.add(entity)
            self._operations.append(InsertOperation(entity, batch_size=self.config.batch_size))
            self._trace("Registered new entity", entity)

    def register_dirty(self, entity: Entity) -> None:
        """Mark ``entity`` for update.

        With dirty checking enabled, an entity is only registered when its snapshot
        shows a change; without a snapshot there is nothing to compare and the call
        is a no-op.
        """
        with self._lock:
            self._ensure_open()
            self._require_entity(entity)

            changes: dict[str, FieldChange] = {}
            if (
                self.config.enable_dirty_check
                and entity not in self._new
                and entity not in self._removed
                and entity not in self._dirty
            ):
                if not self._snapshots.is_dirty(entity):
                    return
                changes = self._snapshots.get_changed_fields(entity)
            self._register_dirty(entity, changes)

    def register_removed(self, entity: Entity) -> None:
        with self._lock:
            self._ensure_open()
            self._require_entity(entity)

            if self._new.discard(entity):
                # created and deleted within this unit of work: nothing reaches the store
                self._withdraw_operations(entity)
                self._trace("Removed new entity from registration", entity)
                return
            if entity in self._removed:
                return

            self._dirty.discard(entity)
            self._withdraw_operations(entity)
            self._clean.discard(entity)
            self._removed.add(entity)
            self._operations.append(DeleteOperation(entity))
            self._trace("Registered entity for removal", entity)

    def register_clean(self, entity: Entity) -> None:
        """Take a baseline snapshot of a loaded entity so later mutation is detected."""
        with self._lock:
            self._ensure_open()
            self._require_entity(entity)
            if not self.config.enable_dirty_check:
                return
            if self._is_tracked(entity) or entity in self._clean:
                return

            self._snapshots.take_snapshot(entity)
            self._clean.add(entity)
            self._trace("Registered clean entity", entity)

    # -- lifecycle -------------------------------------------------------------

    def commit(self, *, cancel_event: threading.Event | None = None) -> None:
        """Persist every pending operation inside one store transaction.

        The first failing operation aborts the commit and is raised as
        ``OperationFailedError``. Pending state is cleared whether or not the
        commit succeeds; only success moves the unit of work to COMMITTED.
        """
        with self._lock:
            self._ensure_can_finish()

            started = time.perf_counter()
            total_entities = self._tracked_count()
            log.info(
                "Starting unit of work commit: new=%s, dirty=%s, removed=%s, operations=%s",
                len(self._new),
                len(self._dirty),
                len(self._removed),
                len(self._operations),
            )

            self._executing = True
            try:
                if self.config.enable_dirty_check:
                    self._detect_dirty_entities()
                    total_entities = self._tracked_count()
                scheduled = self._schedule(self._optimize_operations())
                with self._store.transaction(cancel_event=cancel_event) as tx:
                    for index, operation in enumerate(scheduled):
                        if self.config.enable_detail_log:
                            log.debug("Executing operation %s: %s", index, operation.describe())
                        try:
                            operation.execute(tx)
                        except Exception as exc:
                            raise OperationFailedError(index, operation, exc) from exc
            except Exception:
                log.exception("Unit of work commit failed")
                raise
            finally:
                self._executing = False
                self._clear()

            self._state = UnitOfWorkState.COMMITTED
            log.info(
                "Unit of work committed: entities=%s, operations=%s, duration=%.3fs",
                total_entities,
                len(scheduled),
                time.perf_counter() - started,
            )

    def rollback(self) -> None:
        """Discard all pending work; the store is never touched."""
        with self._lock:
            self._ensure_can_finish()
            self._state = UnitOfWorkState.ROLLED_BACK
            self._clear()
            log.info("Unit of work rolled back")

    # -- internals -------------------------------------------------------------

    def _register_dirty(self, entity: Entity, changes: Mapping[str, FieldChange]) -> None:
        if entity in self._new:
            return  # the insert already persists the current state
        if entity in self._removed:
            raise InvalidStateError("cannot mark removed entity as dirty")
        if entity in self._dirty:
            return

        self._clean.discard(entity)
        self._dirty.add(entity)
        self._operations.append(UpdateOperation(entity, changes))
        if self.config.enable_detail_log:
            log.debug(
                "Registered dirty entity %s with id %s (%s changed fields)",
                type_name(type(entity)),
                entity.id,
                len(changes),
            )

    def _detect_dirty_entities(self) -> None:
        """Promote loaded-and-mutated clean entities to dirty."""
        detected = 0
        snapshots = self._snapshots.snapshots()
        for key, snapshot in snapshots:
            entity = self._find_entity(snapshot.entity_type, snapshot.entity_id)
            if entity is None or self._is_tracked(entity):
                continue
            if not snapshot.is_dirty(entity):
                continue

            changes = snapshot.changed_fields(entity)
            try:
                self._register_dirty(entity, changes)
            except UnitOfWorkError:
                log.warning(
                    "Failed to register automatically detected dirty entity %s",
                    key,
                    exc_info=True,
                )
                continue
            detected += 1
            if self.config.enable_detail_log:
                log.debug("Detected dirty entity %s (%s changed fields)", key, len(changes))

        if self.config.enable_detail_log:
            log.debug(
                "Dirty detection finished: detected=%s, snapshots=%s", detected, len(snapshots)
            )

    def _find_entity(self, entity_type: type[Entity], entity_id: object) -> Entity | None:
        for registry in (self._new, self._dirty, self._removed, self._clean):
            entity = registry.find(entity_type, entity_id)
            if entity is not None:
                return entity
        return None

    def _optimize_operations(self) -> list[Operation]:
        if not self.config.enable_operation_merge:
            return list(self._operations)
        return self._merge_operations(self._cancel_insert_delete_pairs(self._operations))

    def _cancel_insert_delete_pairs(self, operations: Sequence[Operation]) -> list[Operation]:
        cancelled: set[int] = set()
        for i, first in enumerate(operations):
            if i in cancelled or first.kind is not OperationKind.INSERT:
                continue
            first_key = EntityKey.of(first.entity)
            for j in range(i + 1, len(operations)):
                second = operations[j]
                if j in cancelled or second.kind is not OperationKind.DELETE:
                    continue
                if EntityKey.of(second.entity) == first_key:
                    cancelled.update((i, j))
                    if self.config.enable_detail_log:
                        log.debug("Cancelled insert/delete pair for %s", first.describe())
                    break
        return [op for index, op in enumerate(operations) if index not in cancelled]

    def _merge_operations(self, operations: Sequence[Operation]) -> list[Operation]:
        if len(operations) <= 1:
            return list(operations)

        merged: list[Operation] = []
        processed: set[int] = set()
        for i, operation in enumerate(operations):
            if i in processed:
                continue
            current = operation
            for j in range(i + 1, len(operations)):
                if j in processed or not current.can_merge(operations[j]):
                    continue
                current = current.merge(operations[j])
                processed.add(j)
            if self.config.enable_detail_log and current is not operation:
                log.debug("Merged operations into %s", current.describe())
            merged.append(current)
        return merged

    def _schedule(self, operations: Sequence[Operation]) -> list[Operation]:
        """Inserts in dependency order, then updates as they arrived, then deletes."""
        inserts = [op for op in operations if op.kind.base is OperationKind.INSERT]
        updates = [op for op in operations if op.kind.base is OperationKind.UPDATE]
        deletes = [op for op in operations if op.kind.base is OperationKind.DELETE]
        return [
            *self._order_by_dependency(inserts, deletion=False),
            *updates,
            *self._order_by_dependency(deletes, deletion=True),
        ]

    def _order_by_dependency(
        self, operations: Sequence[Operation], *, deletion: bool
    ) -> list[Operation]:
        if len(operations) <= 1:
            return list(operations)

        by_lead = {id(op.entity): op for op in operations}
        leads = [op.entity for op in operations]
        if deletion:
            ordered = self._dependencies.get_deletion_order(leads)
        else:
            ordered = self._dependencies.get_insertion_order(leads)
        return [by_lead[id(entity)] for entity in ordered]

    def _withdraw_operations(self, entity: Entity) -> None:
        key = EntityKey.of(entity)
        self._operations = [
            op for op in self._operations if op.kind.is_bulk or EntityKey.of(op.entity) != key
        ]

    def _is_tracked(self, entity: Entity) -> bool:
        return entity in self._new or entity in self._dirty or entity in self._removed

    def _tracked_count(self) -> int:
        return len(self._new) + len(self._dirty) + len(self._removed)

    def _check_capacity(self) -> None:
        tracked = self._tracked_count()
        if tracked >= self.config.max_entity_count:
            raise CapacityExceededError(tracked, self.config.max_entity_count)

    def _ensure_open(self) -> None:
        if self._state is not UnitOfWorkState.OPEN:
            raise InvalidStateError("unit of work is already finished")

    def _ensure_can_finish(self) -> None:
        if self._state is UnitOfWorkState.COMMITTED:
            raise InvalidStateError("unit of work is already committed")
        if self._state is UnitOfWorkState.ROLLED_BACK:
            raise InvalidStateError("unit of work is already rolled back")

    @staticmethod
    def _require_entity(entity: Entity | None) -> None:
        if entity is None:
            raise InvalidStateError("entity cannot be None")

    def _clear(self) -> None:
        self._new.clear()
        self._dirty.clear()
        self._removed.clear()
        self._clean.clear()
        self._operations = []
        self._snapshots.clear()

    def _trace(self, message: str, entity: Entity) -> None:
        if self.config.enable_detail_log:
            log.debug("%s %s with id %s", message, type_name(type(entity)), entity.id)
