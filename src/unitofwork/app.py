"""Application entry points for running work inside a unit of work."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from logging import getLogger
from typing import TYPE_CHECKING

from unitofwork.config import UnitOfWorkConfig
from unitofwork.domain.coordinator import UnitOfWork
from unitofwork.domain.dependency import DependencyManager

if TYPE_CHECKING:
    from threading import Event

    from unitofwork.domain.model import Entity
    from unitofwork.domain.ports import RelationalStore

type EntityType = type[Entity]
type DependencyMap = Mapping[EntityType, Iterable[EntityType]]

log = getLogger(__name__)


class UnitOfWorkManager:
    """Builds configured coordinators and runs callables inside them."""

    def __init__(
        self,
        store: RelationalStore,
        config: UnitOfWorkConfig | None = None,
        *,
        dependencies: DependencyMap | None = None,
        weights: Mapping[EntityType, int] | None = None,
    ) -> None:
        self.store = store
        self.config = config or UnitOfWorkConfig()
        self._dependencies: dict[EntityType, tuple[EntityType, ...]] = {
            dependent: tuple(deps) for dependent, deps in (dependencies or {}).items()
        }
        self._weights = dict(weights or {})

    def register_dependency(self, dependent: EntityType, dependency: EntityType) -> None:
        existing = self._dependencies.get(dependent, ())
        if dependency not in existing:
            self._dependencies[dependent] = (*existing, dependency)

    def register_entity_weight(self, entity_type: EntityType, weight: int) -> None:
        self._weights[entity_type] = weight

    def begin(self) -> UnitOfWork:
        """Return a fresh coordinator; the caller commits or rolls it back."""

        dependency_manager = DependencyManager()
        dependency_manager.register_dependencies(self._dependencies)
        for entity_type, weight in self._weights.items():
            dependency_manager.register_entity_weight(entity_type, weight)
        return UnitOfWork(self.store, self.config, dependencies=dependency_manager)

    def execute[T](
        self,
        fn: Callable[[UnitOfWork], T],
        *,
        cancel_event: Event | None = None,
    ) -> T:
        """Run ``fn`` with a new coordinator, committing on success.

        When ``fn`` raises, the coordinator is rolled back and the error re-raised.
        """

        unit_of_work = self.begin()
        try:
            result = fn(unit_of_work)
        except Exception:
            log.warning("Rolling back unit of work after failure in %r", fn)
            unit_of_work.rollback()
            raise
        unit_of_work.commit(cancel_event=cancel_event)
        return result
