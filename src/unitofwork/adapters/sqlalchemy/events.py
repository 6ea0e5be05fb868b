"""Wire SQLAlchemy session events onto unit-of-work hooks.

Only transaction boundaries and entity loads are forwarded. Writes made through
the session (`session.add`, `session.delete`, flushes) are not intercepted; a
host that wants them collected calls `UnitOfWorkHooks.before_write` itself and
skips its own write when that returns True.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from sqlalchemy import event

from unitofwork.domain.hooks import TransactionEvent
from unitofwork.domain.model import Entity

if TYPE_CHECKING:
    from sqlalchemy.orm import Session, SessionTransaction, sessionmaker

    from unitofwork.domain.hooks import UnitOfWorkHooks

log = logging.getLogger(__name__)


def install_session_hooks(
    target: Session | sessionmaker[Session], hooks: UnitOfWorkHooks
) -> None:
    """Forward transaction boundaries and entity loads of ``target`` to ``hooks``.

    Only the outermost session transaction maps to BEGIN/COMMIT/ROLLBACK, so
    savepoints opened while the bound coordinator writes are not reported.
    """

    def after_transaction_create(session: Session, transaction: SessionTransaction) -> None:
        _ = session
        if transaction.parent is None:
            hooks.on_transaction_boundary(TransactionEvent.BEGIN)

    def before_commit(session: Session) -> None:
        _ = session
        hooks.on_transaction_boundary(TransactionEvent.COMMIT)

    def after_soft_rollback(session: Session, previous_transaction: SessionTransaction) -> None:
        _ = session
        if previous_transaction.parent is None:
            hooks.on_transaction_boundary(TransactionEvent.ROLLBACK)

    def loaded_as_persistent(session: Session, instance: Any) -> None:
        _ = session
        if isinstance(instance, Entity):
            hooks.after_read([instance])

    event.listen(target, "after_transaction_create", after_transaction_create)
    event.listen(target, "before_commit", before_commit)
    event.listen(target, "after_soft_rollback", after_soft_rollback)
    event.listen(target, "loaded_as_persistent", loaded_as_persistent)
    log.debug("Installed unit-of-work hooks on %r", target)
