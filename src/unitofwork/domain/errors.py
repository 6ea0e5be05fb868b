"""Errors raised by the unit-of-work coordinator and its collaborators.

None of these are retried by the coordinator; they surface to the caller of
``UnitOfWork.commit`` (or of the failing registration call).
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .operations import Operation


class UnitOfWorkError(RuntimeError):
    """Base class for unit-of-work failures."""


class InvalidStateError(UnitOfWorkError):
    """Raised for calls that the current lifecycle state does not allow."""


class CapacityExceededError(UnitOfWorkError):
    """Raised when a registration would exceed ``max_entity_count``."""

    def __init__(self, tracked: int, limit: int) -> None:
        super().__init__(f"entity count limit exceeded: {tracked} >= {limit}")
        self.tracked = tracked
        self.limit = limit


class CircularDependencyError(UnitOfWorkError):
    """Raised when the dependency graph has no topological order for the given types."""

    def __init__(self, unresolved: tuple[str, ...]) -> None:
        names = ", ".join(unresolved)
        super().__init__(f"circular dependency detected between entity types: {names}")
        self.unresolved = unresolved


class ValidationFailedError(UnitOfWorkError):
    """Raised when an entity fails its own ``validate()`` check."""


class OptimisticLockError(UnitOfWorkError):
    """Raised when a revisioned update matched zero rows."""


class StoreError(UnitOfWorkError):
    """Raised when the relational store adapter fails an operation."""


class TransactionCancelledError(StoreError):
    """Raised when the ambient transaction was cancelled before completion."""


class OperationFailedError(UnitOfWorkError):
    """Commit failure, carrying the position of the operation that broke it."""

    def __init__(self, index: int, operation: Operation, cause: BaseException) -> None:
        super().__init__(f"operation {index} ({operation.describe()}) failed: {cause}")
        self.index = index
        self.operation = operation
