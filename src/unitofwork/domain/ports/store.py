"""Ports for the relational store the coordinator writes through."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence
    from contextlib import AbstractContextManager
    from threading import Event

    from unitofwork.domain.model import Entity


@runtime_checkable
class StoreTransaction(Protocol):
    """Write primitives available inside one ambient transaction."""

    def create(self, entity: Entity) -> None: ...

    def save(self, entity: Entity) -> None: ...

    def save_where(self, entity: Entity, match: Mapping[str, object]) -> int:
        """Persist ``entity`` only where every ``match`` column equals its value.

        Returns the number of affected rows.
        """
        ...

    def delete(self, entity: Entity) -> None:
        """Physically remove the row, ignoring any soft-delete convention."""
        ...

    def bulk_create(self, entities: Sequence[Entity], batch_size: int) -> None: ...

    def bulk_delete(self, entities: Sequence[Entity]) -> None: ...


@runtime_checkable
class RelationalStore(Protocol):
    """Opens transactions; the returned context manager commits or rolls back."""

    def transaction(
        self, *, cancel_event: Event | None = None
    ) -> AbstractContextManager[StoreTransaction]: ...
