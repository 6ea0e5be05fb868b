from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import pytest

from tests.helpers.domain import User
from unitofwork.common import configure_logging
from unitofwork.common.logging import PACKAGE_LOGGER
from unitofwork.config import UnitOfWorkConfig
from unitofwork.domain.coordinator import UnitOfWork

if TYPE_CHECKING:
    from collections.abc import Iterator

    from tests.helpers.stores import RecordingStore


@pytest.fixture(autouse=True)
def restore_package_level() -> Iterator[None]:
    package_logger = logging.getLogger(PACKAGE_LOGGER)
    previous = package_logger.level
    yield
    package_logger.setLevel(previous)


def test_detail_log_lowers_package_logger() -> None:
    configure_logging(force=True, config=UnitOfWorkConfig(enable_detail_log=True))

    assert logging.getLogger(PACKAGE_LOGGER).level == logging.DEBUG


def test_without_detail_log_package_logger_inherits() -> None:
    configure_logging(force=True)

    assert logging.getLogger(PACKAGE_LOGGER).level == logging.NOTSET


def test_detail_tracing_only_when_enabled(
    recording_store: RecordingStore, caplog: pytest.LogCaptureFixture
) -> None:
    caplog.set_level(logging.DEBUG, logger=PACKAGE_LOGGER)

    UnitOfWork(recording_store).register_new(User(name="quiet"))
    assert not [record for record in caplog.records if record.levelno == logging.DEBUG]

    UnitOfWork(recording_store, UnitOfWorkConfig(enable_detail_log=True)).register_new(
        User(name="loud")
    )
    assert any(record.levelno == logging.DEBUG for record in caplog.records)


def test_commit_logs_start_and_end_at_info(
    recording_store: RecordingStore, caplog: pytest.LogCaptureFixture
) -> None:
    caplog.set_level(logging.INFO, logger=PACKAGE_LOGGER)
    uow = UnitOfWork(recording_store)
    uow.register_new(User(name="A"))

    uow.commit()

    messages = [record.getMessage() for record in caplog.records if record.levelno == logging.INFO]
    assert len(messages) >= 2
