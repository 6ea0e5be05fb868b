"""Dependency graph over entity types and deterministic topological ordering.

Edges point from a dependent type to the types it depends on. Insertion order
puts every dependency before its dependents; deletion order is the exact reverse
of insertion order, so dependents are always removed first.
"""

from __future__ import annotations

from collections import deque
from logging import getLogger
from typing import TYPE_CHECKING

from unitofwork.domain.errors import CircularDependencyError
from unitofwork.domain.model.entity import type_name

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping, Sequence

    from unitofwork.domain.model import Entity

log = getLogger(__name__)

type EntityType = type[Entity]


class DependencyManager:
    """Per-unit-of-work registry of type dependencies and tie-break weights."""

    def __init__(self) -> None:
        self._graph: dict[EntityType, list[EntityType]] = {}
        self._weights: dict[EntityType, int] = {}

    def register_dependency(self, dependent: EntityType, dependency: EntityType) -> None:
        """Record that ``dependent`` must be inserted after ``dependency``."""
        if dependent is dependency:
            return
        dependencies = self._graph.setdefault(dependent, [])
        if dependency not in dependencies:
            dependencies.append(dependency)

    def register_dependencies(self, mapping: Mapping[EntityType, Iterable[EntityType]]) -> None:
        for dependent, dependencies in mapping.items():
            for dependency in dependencies:
                self.register_dependency(dependent, dependency)

    def register_entity_weight(self, entity_type: EntityType, weight: int) -> None:
        self._weights[entity_type] = weight

    def has_dependency(self, dependent: EntityType, dependency: EntityType) -> bool:
        return dependency in self._graph.get(dependent, ())

    def remove_dependency(self, dependent: EntityType, dependency: EntityType) -> None:
        dependencies = self._graph.get(dependent)
        if dependencies and dependency in dependencies:
            dependencies.remove(dependency)

    def dependencies_of(self, dependent: EntityType) -> tuple[EntityType, ...]:
        return tuple(self._graph.get(dependent, ()))

    def all_entity_types(self) -> tuple[EntityType, ...]:
        types: set[EntityType] = set()
        for dependent, dependencies in self._graph.items():
            types.add(dependent)
            types.update(dependencies)
        return tuple(sorted(types, key=type_name))

    def weight_of(self, entity_type: EntityType) -> int:
        return self._weights.get(entity_type, 0)

    def clear(self) -> None:
        self._graph = {}
        self._weights = {}

    def get_insertion_order(self, entities: Sequence[Entity]) -> list[Entity]:
        """Order ``entities`` so that dependencies come before their dependents.

        Ready types are released in (weight, type name) order and entities of one
        type in ``str(id)`` order, so equal inputs always produce equal outputs.
        Raises ``CircularDependencyError`` when the involved types form a cycle.
        """
        if not entities:
            return []

        by_type: dict[EntityType, list[Entity]] = {}
        for entity in entities:
            by_type.setdefault(type(entity), []).append(entity)

        present = set(by_type)
        dependents = self._dependents_within(present)
        in_degree = {
            entity_type: sum(1 for dep in self._graph.get(entity_type, ()) if dep in present)
            for entity_type in present
        }

        queue = deque(self._by_weight(t for t, degree in in_degree.items() if degree == 0))
        resolved: list[EntityType] = []
        while queue:
            current = queue.popleft()
            resolved.append(current)
            ready: list[EntityType] = []
            for dependent in dependents.get(current, ()):
                in_degree[dependent] -= 1
                if in_degree[dependent] == 0:
                    ready.append(dependent)
            queue.extend(self._by_weight(ready))

        if len(resolved) != len(present):
            unresolved = tuple(sorted(type_name(t) for t in present if t not in resolved))
            log.error("Circular dependency detected between %s", ", ".join(unresolved))
            raise CircularDependencyError(unresolved)

        ordered: list[Entity] = []
        for entity_type in resolved:
            ordered.extend(sorted(by_type[entity_type], key=lambda entity: str(entity.id)))
        return ordered

    def get_deletion_order(self, entities: Sequence[Entity]) -> list[Entity]:
        ordered = self.get_insertion_order(entities)
        ordered.reverse()
        return ordered

    def _dependents_within(self, present: set[EntityType]) -> dict[EntityType, list[EntityType]]:
        """Reverse edges (dependency -> dependents) restricted to ``present``."""
        dependents: dict[EntityType, list[EntityType]] = {}
        for dependent, dependencies in self._graph.items():
            if dependent not in present:
                continue
            for dependency in dependencies:
                if dependency in present:
                    dependents.setdefault(dependency, []).append(dependent)
        return dependents

    def _by_weight(self, entity_types: Iterable[EntityType]) -> list[EntityType]:
        return sorted(entity_types, key=lambda t: (self.weight_of(t), type_name(t)))
