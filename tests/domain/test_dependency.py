from __future__ import annotations

from dataclasses import dataclass

import pytest

from tests.helpers.domain import Note, Order, OrderLine, User
from unitofwork.domain.dependency import DependencyManager
from unitofwork.domain.errors import CircularDependencyError
from unitofwork.domain.model import Entity


@dataclass(eq=False, kw_only=True)
class _Alpha(Entity):
    pass


@dataclass(eq=False, kw_only=True)
class _Beta(Entity):
    pass


@dataclass(eq=False, kw_only=True)
class _Gamma(Entity):
    pass


@dataclass(eq=False, kw_only=True)
class _Delta(Entity):
    pass


type _Graph = dict[type[Entity], tuple[type[Entity], ...]]

_ACYCLIC_GRAPHS: dict[str, tuple[_Graph, dict[type[Entity], int]]] = {
    "diamond": ({_Beta: (_Alpha,), _Gamma: (_Alpha,), _Delta: (_Beta, _Gamma)}, {}),
    "disjoint-chains": ({_Beta: (_Alpha,), _Delta: (_Gamma,)}, {}),
    "weighted-fan-out": (
        {_Beta: (_Alpha,), _Gamma: (_Alpha,), _Delta: (_Alpha,)},
        {_Delta: -5, _Beta: 3},
    ),
    "weighted-chain-against-names": ({_Alpha: (_Delta,), _Delta: (_Gamma,)}, {_Gamma: 9}),
    "no-edges": ({}, {_Gamma: -1}),
}


def _types(entities: list[Entity]) -> list[type[Entity]]:
    return [type(entity) for entity in entities]


def _mixed_entities() -> list[Entity]:
    return [
        OrderLine(id=31),
        Order(id=21),
        User(id=12, name="B"),
        OrderLine(id=30),
        User(id=11, name="A"),
        Order(id=20),
    ]


def test_insertion_order_puts_dependencies_first(sample_dependencies: DependencyManager) -> None:
    ordered = sample_dependencies.get_insertion_order(_mixed_entities())

    assert _types(ordered) == [User, User, Order, Order, OrderLine, OrderLine]


def test_entities_of_one_type_are_ordered_by_stringified_id(
    sample_dependencies: DependencyManager,
) -> None:
    ordered = sample_dependencies.get_insertion_order(_mixed_entities())

    assert [entity.id for entity in ordered] == [11, 12, 20, 21, 30, 31]


def test_deletion_order_is_exact_reverse(sample_dependencies: DependencyManager) -> None:
    entities = [*_mixed_entities(), Note(id=1), Note(id=2)]

    insertion = sample_dependencies.get_insertion_order(entities)
    deletion = sample_dependencies.get_deletion_order(entities)

    assert deletion == list(reversed(insertion))
    assert _types(deletion)[:2] == [OrderLine, OrderLine]


def test_unrelated_types_tie_break_by_weight_then_name() -> None:
    manager = DependencyManager()
    entities: list[Entity] = [_Beta(id=1), _Alpha(id=1)]

    assert _types(manager.get_insertion_order(entities)) == [_Alpha, _Beta]

    manager.register_entity_weight(_Alpha, 10)
    assert _types(manager.get_insertion_order(entities)) == [_Beta, _Alpha]


def test_registering_a_dependency_twice_is_idempotent() -> None:
    manager = DependencyManager()
    manager.register_dependency(Order, User)
    manager.register_dependency(Order, User)

    assert manager.dependencies_of(Order) == (User,)
    ordered = manager.get_insertion_order([Order(id=1), User(id=1, name="A")])
    assert _types(ordered) == [User, Order]


def test_self_dependency_is_ignored() -> None:
    manager = DependencyManager()
    manager.register_dependency(User, User)

    assert not manager.has_dependency(User, User)
    assert manager.get_insertion_order([User(id=1, name="A")])[0].id == 1


def test_dependencies_on_absent_types_do_not_block() -> None:
    manager = DependencyManager()
    manager.register_dependency(OrderLine, Order)

    ordered = manager.get_insertion_order([OrderLine(id=1), User(id=1, name="A")])

    assert _types(ordered) == [OrderLine, User]


def test_cycle_raises_circular_dependency_error() -> None:
    manager = DependencyManager()
    manager.register_dependency(_Alpha, _Beta)
    manager.register_dependency(_Beta, _Alpha)

    with pytest.raises(CircularDependencyError) as exc:
        manager.get_insertion_order([_Alpha(id=1), _Beta(id=1)])

    assert len(exc.value.unresolved) == 2


def test_cycle_outside_the_present_types_is_ignored() -> None:
    manager = DependencyManager()
    manager.register_dependency(_Alpha, _Beta)
    manager.register_dependency(_Beta, _Alpha)

    assert manager.get_insertion_order([_Alpha(id=1)])[0].id == 1


def test_empty_input_gives_empty_order(sample_dependencies: DependencyManager) -> None:
    assert sample_dependencies.get_insertion_order([]) == []
    assert sample_dependencies.get_deletion_order([]) == []


def test_graph_management_helpers() -> None:
    manager = DependencyManager()
    manager.register_dependencies({Order: [User], OrderLine: [Order]})

    assert manager.has_dependency(OrderLine, Order)
    assert manager.all_entity_types() == (Order, OrderLine, User)

    manager.remove_dependency(OrderLine, Order)
    assert not manager.has_dependency(OrderLine, Order)

    manager.register_entity_weight(User, 3)
    manager.clear()
    assert manager.all_entity_types() == ()
    assert manager.weight_of(User) == 0


@pytest.mark.parametrize("graph_name", sorted(_ACYCLIC_GRAPHS))
def test_acyclic_graphs_respect_edges_and_reverse_for_deletion(graph_name: str) -> None:
    graph, weights = _ACYCLIC_GRAPHS[graph_name]
    manager = DependencyManager()
    manager.register_dependencies(graph)
    for entity_type, weight in weights.items():
        manager.register_entity_weight(entity_type, weight)
    entities: list[Entity] = [
        entity_type(id=ident)
        for ident in (2, 1)
        for entity_type in (_Delta, _Gamma, _Beta, _Alpha)
    ]

    insertion = manager.get_insertion_order(entities)
    deletion = manager.get_deletion_order(entities)

    assert deletion == list(reversed(insertion))
    assert sorted(map(id, insertion)) == sorted(map(id, entities))
    positions = _types(insertion)
    for dependent, dependencies in graph.items():
        for dependency in dependencies:
            last_dependency = max(i for i, t in enumerate(positions) if t is dependency)
            first_dependent = min(i for i, t in enumerate(positions) if t is dependent)
            assert last_dependency < first_dependent
