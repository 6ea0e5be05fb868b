from __future__ import annotations

import pytest

from tests.helpers.domain import Note, Order, OrderLine, User
from tests.helpers.stores import RecordingStore
from unitofwork.domain.errors import OptimisticLockError, StoreError, ValidationFailedError
from unitofwork.domain.operations import (
    BulkDeleteOperation,
    BulkInsertOperation,
    BulkUpdateOperation,
    DeleteOperation,
    InsertOperation,
    Operation,
    OperationKind,
    UpdateOperation,
)
from unitofwork.domain.snapshot import FieldChange, FieldChangeKind


def _run(store: RecordingStore, operation: Operation) -> None:
    with store.transaction() as tx:
        operation.execute(tx)


def test_insert_stamps_timestamps_and_creates(recording_store: RecordingStore) -> None:
    order = Order(total=5)

    _run(recording_store, InsertOperation(order))

    assert recording_store.actions == ["create"]
    assert order.created_at is not None
    assert order.updated_at == order.created_at
    assert order.id is not None


def test_insert_validates_first(recording_store: RecordingStore) -> None:
    with pytest.raises(ValidationFailedError):
        _run(recording_store, InsertOperation(User(name="")))

    assert recording_store.calls == []


def test_update_of_revisioned_entity_targets_current_revision(
    recording_store: RecordingStore,
) -> None:
    user = User(id=1, name="A", revision=3)

    _run(recording_store, UpdateOperation(user))

    assert recording_store.actions == ["save_where"]
    assert recording_store.matches == [{"id": 1, "revision": 3}]
    assert user.revision == 4
    assert user.updated_at is not None


def test_update_with_zero_rows_raises_and_restores_revision(
    recording_store: RecordingStore,
) -> None:
    recording_store.save_where_result = 0
    user = User(id=1, name="A", revision=3)

    with pytest.raises(OptimisticLockError):
        _run(recording_store, UpdateOperation(user))

    assert user.revision == 3


def test_update_without_revision_saves_unconditionally(recording_store: RecordingStore) -> None:
    _run(recording_store, UpdateOperation(OrderLine(id=2, sku="a")))

    assert recording_store.actions == ["save"]


def test_update_carries_its_change_set() -> None:
    change = FieldChange("name", "A", "B", FieldChangeKind.MODIFIED)

    operation = UpdateOperation(User(id=1, name="B"), {"name": change})

    assert operation.changes == {"name": change}


def test_hard_delete(recording_store: RecordingStore) -> None:
    _run(recording_store, DeleteOperation(OrderLine(id=2)))

    assert recording_store.actions == ["delete"]


def test_soft_delete_becomes_save(recording_store: RecordingStore) -> None:
    note = Note(id=3, body="x")

    _run(recording_store, DeleteOperation(note))

    assert recording_store.actions == ["save"]
    assert note.is_deleted


def test_store_failure_is_wrapped(recording_store: RecordingStore) -> None:
    recording_store.failures["delete"] = OSError("disk gone")

    with pytest.raises(StoreError) as exc:
        _run(recording_store, DeleteOperation(OrderLine(id=2)))

    assert isinstance(exc.value.__cause__, OSError)
    assert "OrderLine" in str(exc.value)


def test_inserts_of_same_type_merge_into_bulk_insert(recording_store: RecordingStore) -> None:
    first = InsertOperation(Order(total=1), batch_size=50)
    second = InsertOperation(Order(total=2))
    third = InsertOperation(Order(total=3))

    merged = first.merge(second).merge(third)

    assert isinstance(merged, BulkInsertOperation)
    assert merged.kind is OperationKind.BULK_INSERT
    assert len(merged.entities) == 3
    _run(recording_store, merged)
    assert recording_store.actions == ["bulk_create"]
    assert recording_store.batch_sizes == [50]
    assert all(entity.id for entity in merged.entities)


def test_operations_of_different_type_or_kind_do_not_merge() -> None:
    insert = InsertOperation(Order())

    assert not insert.can_merge(InsertOperation(OrderLine()))
    assert not insert.can_merge(DeleteOperation(Order(id=1)))
    assert insert.merge(DeleteOperation(Order(id=1))) is insert


def test_bulk_update_runs_member_by_member(recording_store: RecordingStore) -> None:
    merged = UpdateOperation(User(id=1, name="A")).merge(UpdateOperation(User(id=2, name="B")))

    assert isinstance(merged, BulkUpdateOperation)
    _run(recording_store, merged)
    assert recording_store.actions == ["save_where", "save_where"]


def test_bulk_delete_uses_one_call_for_hard_deletes(recording_store: RecordingStore) -> None:
    merged = DeleteOperation(OrderLine(id=1)).merge(DeleteOperation(OrderLine(id=2)))

    assert isinstance(merged, BulkDeleteOperation)
    _run(recording_store, merged)
    assert recording_store.actions == ["bulk_delete"]


def test_bulk_delete_of_soft_deletable_saves_each(recording_store: RecordingStore) -> None:
    merged = DeleteOperation(Note(id=1)).merge(DeleteOperation(Note(id=2)))

    _run(recording_store, merged)

    assert recording_store.actions == ["save", "save"]


def test_same_identity_rules() -> None:
    user = User(id=1, name="A")

    assert UpdateOperation(user).same_identity(UpdateOperation(User(id=1, name="B")))
    assert not UpdateOperation(user).same_identity(DeleteOperation(user))
    assert not InsertOperation(User(name="A")).same_identity(InsertOperation(User(name="A")))
    bulk = BulkInsertOperation([User(name="A")])
    assert not bulk.same_identity(bulk)


def test_bulk_operations_reject_empty_or_mixed_input() -> None:
    with pytest.raises(ValueError, match="at least one"):
        BulkInsertOperation([])
    with pytest.raises(ValueError, match="share one type"):
        BulkDeleteOperation([Order(id=1), OrderLine(id=2)])


def test_entity_accessors() -> None:
    first = Order(id=1)
    bulk = BulkDeleteOperation([first, Order(id=2)])

    assert bulk.entity is first
    assert bulk.entity_type is Order
    assert "bulk_delete 2 x" in bulk.describe()
