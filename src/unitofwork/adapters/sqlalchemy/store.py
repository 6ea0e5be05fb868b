"""Relational store backed by SQLAlchemy sessions."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from itertools import batched
from typing import TYPE_CHECKING, Any, cast

from sqlalchemy import create_engine, delete, insert, update
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from unitofwork.config import get_database_config
from unitofwork.domain.errors import StoreError, TransactionCancelledError, UnitOfWorkError

from .mappings import mapper_for

if TYPE_CHECKING:
    from collections.abc import Iterator, Mapping, Sequence
    from threading import Event

    from sqlalchemy import Table
    from sqlalchemy.orm import Mapper

    from unitofwork.config import DatabaseConfig
    from unitofwork.domain.model import Entity

log = logging.getLogger(__name__)


def _mapper(entity: Entity) -> Mapper[Any]:
    mapper = mapper_for(type(entity))
    if mapper is None:
        raise StoreError(f"entity class {type(entity).__qualname__} is not mapped")
    return mapper


def _table(entity: Entity) -> Table:
    return _mapper(entity).local_table  # pyright: ignore[reportReturnType]


def _column_values(entity: Entity) -> dict[str, Any]:
    """Column name -> current attribute value, primary key excluded."""

    mapper = _mapper(entity)
    values: dict[str, Any] = {}
    for prop in mapper.column_attrs:
        column = prop.columns[0]
        if column.primary_key:
            continue
        values[column.name] = getattr(entity, prop.key)
    return values


class SqlAlchemyTransaction:
    """``StoreTransaction`` over one session transaction.

    Statements are issued through Core against the mapped table, so they behave
    the same whether or not the entity is attached to the session. Attached
    entities are refreshed after an update and expunged after a delete.
    """

    def __init__(self, session: Session, *, cancel_event: Event | None = None) -> None:
        self.session = session
        self._cancel_event = cancel_event

    def create(self, entity: Entity) -> None:
        self._check_cancelled()
        table = _table(entity)
        values = _column_values(entity)
        if entity.id:
            values["id"] = entity.id
        with self.session.no_autoflush:
            result = self.session.execute(insert(table).values(values))
        if not entity.id:
            entity.id = result.inserted_primary_key[0]  # pyright: ignore[reportOptionalSubscript]

    def save(self, entity: Entity) -> None:
        self._check_cancelled()
        table = _table(entity)
        self._execute_update(entity, table.c.id == entity.id)

    def save_where(self, entity: Entity, match: Mapping[str, object]) -> int:
        self._check_cancelled()
        table = _table(entity)
        criteria = [table.c[name] == value for name, value in match.items()]
        return self._execute_update(entity, *criteria)

    def delete(self, entity: Entity) -> None:
        self._check_cancelled()
        table = _table(entity)
        with self.session.no_autoflush:
            self.session.execute(delete(table).where(table.c.id == entity.id))
        self._forget(entity)

    def bulk_create(self, entities: Sequence[Entity], batch_size: int) -> None:
        if not entities:
            return
        table = _table(entities[0])
        for batch in batched(entities, batch_size):
            self._check_cancelled()
            keyed = [entity for entity in batch if entity.id]
            generated = [entity for entity in batch if not entity.id]
            with self.session.no_autoflush:
                if keyed:
                    self.session.execute(
                        insert(table),
                        [{"id": entity.id, **_column_values(entity)} for entity in keyed],
                    )
                if generated:
                    result = self.session.execute(
                        insert(table).returning(table.c.id, sort_by_parameter_order=True),
                        [_column_values(entity) for entity in generated],
                    )
                    for entity, new_id in zip(generated, result.scalars(), strict=True):
                        entity.id = new_id
            log.debug("Inserted batch of %s rows into %s", len(batch), table.name)

    def bulk_delete(self, entities: Sequence[Entity]) -> None:
        if not entities:
            return
        self._check_cancelled()
        table = _table(entities[0])
        ids = [entity.id for entity in entities]
        with self.session.no_autoflush:
            self.session.execute(delete(table).where(table.c.id.in_(ids)))
        for entity in entities:
            self._forget(entity)

    def _execute_update(self, entity: Entity, *criteria: Any) -> int:
        table = _table(entity)
        with self.session.no_autoflush:
            result = self.session.execute(
                update(table).where(*criteria).values(_column_values(entity))
            )
            affected: int = result.rowcount  # pyright: ignore[reportAttributeAccessIssue]
            if affected and self._is_attached(entity):
                # the row now holds the entity's state; drop the session's pending copy
                self.session.refresh(entity)
        return affected

    def _forget(self, entity: Entity) -> None:
        if self._is_attached(entity):
            self.session.expunge(entity)

    def _is_attached(self, entity: Entity) -> bool:
        state = sa_inspect(entity, raiseerr=False)
        return state is not None and state.session is self.session and state.persistent

    def _check_cancelled(self) -> None:
        if self._cancel_event is not None and self._cancel_event.is_set():
            raise TransactionCancelledError("transaction cancelled")


@contextmanager
def _translate_errors() -> Iterator[None]:
    try:
        yield
    except UnitOfWorkError:
        raise
    except SQLAlchemyError as exc:
        raise StoreError(f"store transaction failed: {exc}") from exc


class SqlAlchemyStore:
    """``RelationalStore`` over either a session factory or a caller-owned session.

    With a factory every transaction opens and closes its own session. With a
    session the transaction is nested as a savepoint when the session already
    has one in progress.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session] | None = None,
        *,
        session: Session | None = None,
    ) -> None:
        if (session_factory is None) == (session is None):
            raise ValueError("provide exactly one of session_factory or session")
        self._session_factory = session_factory
        self._session = session

    @classmethod
    def from_config(cls, config: DatabaseConfig | None = None) -> SqlAlchemyStore:
        database = config or get_database_config()
        engine = create_engine(database.uri, echo=database.echo, future=True)
        return cls(sessionmaker(bind=engine, expire_on_commit=False))

    @contextmanager
    def transaction(self, *, cancel_event: Event | None = None) -> Iterator[SqlAlchemyTransaction]:
        if cancel_event is not None and cancel_event.is_set():
            raise TransactionCancelledError("transaction cancelled before it started")

        if self._session is not None:
            session = self._session
            scope = session.begin_nested() if session.in_transaction() else session.begin()
            with _translate_errors(), scope:
                yield SqlAlchemyTransaction(session, cancel_event=cancel_event)
            return

        # __init__ guarantees a factory whenever no session was given
        session_factory = cast("sessionmaker[Session]", self._session_factory)
        with _translate_errors(), session_factory() as session, session.begin():
            log.debug("Opened store transaction")
            yield SqlAlchemyTransaction(session, cancel_event=cancel_event)
