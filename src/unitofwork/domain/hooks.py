"""Host integration hooks.

A host persistence layer calls into ``UnitOfWorkHooks`` around its own reads,
writes and transaction boundaries. ``ContextUnitOfWorkHooks`` routes those calls
to a coordinator bound to the current context, so writes issued while a logical
transaction is open are collected instead of hitting the store immediately.
"""

from __future__ import annotations

from contextvars import ContextVar
from enum import StrEnum
from logging import getLogger
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from unitofwork.config import HookConfig

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable
    from contextvars import Token

    from unitofwork.domain.coordinator import UnitOfWork
    from unitofwork.domain.model import Entity

log = getLogger(__name__)


class WriteKind(StrEnum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class TransactionEvent(StrEnum):
    BEGIN = "begin"
    COMMIT = "commit"
    ROLLBACK = "rollback"


@runtime_checkable
class UnitOfWorkHooks(Protocol):
    def before_write(self, kind: WriteKind, entities: Iterable[Entity]) -> bool:
        """Return True when the writes were captured and the host must skip them."""
        ...

    def after_read(self, entities: Iterable[Entity]) -> None: ...

    def on_transaction_boundary(self, event: TransactionEvent) -> None: ...


_current: ContextVar[UnitOfWork | None] = ContextVar("unit_of_work", default=None)


def current_unit_of_work() -> UnitOfWork | None:
    return _current.get()


def bind_unit_of_work(unit_of_work: UnitOfWork | None) -> Token[UnitOfWork | None]:
    return _current.set(unit_of_work)


class ContextUnitOfWorkHooks:
    """Hook implementation that keeps one coordinator per logical transaction."""

    def __init__(
        self,
        factory: Callable[[], UnitOfWork],
        config: HookConfig | None = None,
    ) -> None:
        self._factory = factory
        self.config = config or HookConfig()

    def before_write(self, kind: WriteKind, entities: Iterable[Entity]) -> bool:
        unit_of_work = current_unit_of_work()
        if unit_of_work is None or not self.config.enabled:
            return False
        if unit_of_work.is_executing:
            # the coordinator itself is writing
            return False

        batch = list(entities)
        if any(self.config.is_excluded(entity.table_name) for entity in batch):
            return False

        for entity in batch:
            match kind:
                case WriteKind.CREATE:
                    unit_of_work.register_new(entity)
                case WriteKind.UPDATE:
                    unit_of_work.register_dirty(entity)
                case WriteKind.DELETE:
                    unit_of_work.register_removed(entity)
        if self.config.verbose_log:
            log.info("Captured %s %s write(s) in unit of work", len(batch), kind)
        return True

    def after_read(self, entities: Iterable[Entity]) -> None:
        unit_of_work = current_unit_of_work()
        if unit_of_work is None or not self.config.enabled or not self.config.auto_snapshot:
            return
        if unit_of_work.is_executing:
            return

        for entity in entities:
            if entity is None or entity.is_new or self.config.is_excluded(entity.table_name):
                continue
            unit_of_work.register_clean(entity)

    def on_transaction_boundary(self, event: TransactionEvent) -> None:
        if not self.config.enabled:
            return
        match event:
            case TransactionEvent.BEGIN:
                self._begin()
            case TransactionEvent.COMMIT:
                self._commit()
            case TransactionEvent.ROLLBACK:
                self._rollback()

    def _begin(self) -> None:
        if current_unit_of_work() is not None:
            return
        bind_unit_of_work(self._factory())
        if self.config.verbose_log:
            log.info("Bound unit of work to transaction")

    def _commit(self) -> None:
        unit_of_work = current_unit_of_work()
        if unit_of_work is None or unit_of_work.is_executing:
            return
        bind_unit_of_work(None)
        try:
            unit_of_work.commit()
        except Exception:
            if not unit_of_work.is_committed and not unit_of_work.is_rolled_back:
                unit_of_work.rollback()
            raise
        if self.config.verbose_log:
            log.info("Committed bound unit of work")

    def _rollback(self) -> None:
        unit_of_work = current_unit_of_work()
        if unit_of_work is None or unit_of_work.is_executing:
            return
        bind_unit_of_work(None)
        if not unit_of_work.is_committed and not unit_of_work.is_rolled_back:
            unit_of_work.rollback()
        if self.config.verbose_log:
            log.info("Rolled back bound unit of work")
