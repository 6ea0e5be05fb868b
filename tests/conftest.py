from __future__ import annotations

import os
from typing import TYPE_CHECKING, Any

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine  # noqa: TC002
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from tests.helpers.domain import SAMPLE_DEPENDENCIES, start_sample_mappers
from tests.helpers.stores import RecordingStore
from unitofwork.adapters.sqlalchemy import SqlAlchemyStore, create_all_tables
from unitofwork.domain.dependency import DependencyManager

os.environ.setdefault("DATABASE_URI", "sqlite+pysqlite:///:memory:")

if TYPE_CHECKING:
    from collections.abc import Iterator


def _enable_sqlite_transactions(engine: Engine) -> None:
    """Let SQLAlchemy own BEGIN so savepoints work with pysqlite, and enforce foreign keys."""

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection: Any, _: Any) -> None:  # pyright: ignore[reportUnusedFunction]
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(connection: Any) -> None:  # pyright: ignore[reportUnusedFunction]
        connection.exec_driver_sql("BEGIN")


@pytest.fixture
def sqlite_engine() -> Iterator[Engine]:
    engine = create_engine(
        "sqlite+pysqlite://",
        future=True,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    _enable_sqlite_transactions(engine)
    start_sample_mappers()
    create_all_tables(engine)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture
def session_factory(sqlite_engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=sqlite_engine, future=True, expire_on_commit=False)


@pytest.fixture
def sqlite_session(session_factory: sessionmaker[Session]) -> Iterator[Session]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def sqlite_store(session_factory: sessionmaker[Session]) -> SqlAlchemyStore:
    return SqlAlchemyStore(session_factory)


@pytest.fixture
def recording_store() -> RecordingStore:
    return RecordingStore()


@pytest.fixture
def sample_dependencies() -> DependencyManager:
    manager = DependencyManager()
    manager.register_dependencies(SAMPLE_DEPENDENCIES)
    return manager
