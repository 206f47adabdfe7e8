"""Dependency resolution and deterministic ordering.

Edges come from two sources: resource references found anywhere in a node's
attribute values, and explicit ``depends_on`` hints. Ordering is a depth-first
post-order walk that visits roots and dependencies in declaration order, so
independent resources keep the order they were declared in.
"""

from __future__ import annotations

from enum import Enum, auto
from typing import TYPE_CHECKING

from terrarium.domain.errors import CyclicDependencyError

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Mapping

    from terrarium.domain.model import ResourceAddress, StateRecord

    from .graph import ResourceGraph
    from .references import Reference


class _Mark(Enum):
    ACTIVE = auto()
    DONE = auto()


def reference_targets(
    reference: Reference,
    instances_of: Callable[[ResourceAddress], tuple[ResourceAddress, ...]],
) -> tuple[ResourceAddress, ...]:
    """Addresses a reference reads from; splat references fan out to every instance."""

    if reference.splat:
        return instances_of(reference.base)
    return (reference.address,)


def infer_dependencies(
    references: Iterable[Reference],
    explicit: Iterable[ResourceAddress],
    *,
    instances_of: Callable[[ResourceAddress], tuple[ResourceAddress, ...]],
) -> tuple[ResourceAddress, ...]:
    """Combine reference-derived and explicit edges, deduplicated in discovery order."""

    seen: dict[ResourceAddress, None] = {}
    for reference in references:
        for target in reference_targets(reference, instances_of):
            seen.setdefault(target, None)
    for address in explicit:
        seen.setdefault(address, None)
    return tuple(seen)


def depth_first_order(
    addresses: Iterable[ResourceAddress],
    dependencies_of: Callable[[ResourceAddress], Iterable[ResourceAddress]],
) -> tuple[ResourceAddress, ...]:
    """Order ``addresses`` so each one follows all of its dependencies.

    Raises ``CyclicDependencyError`` with the offending path when a cycle exists.
    """

    marks: dict[ResourceAddress, _Mark] = {}
    path: list[ResourceAddress] = []
    order: list[ResourceAddress] = []

    def visit(address: ResourceAddress) -> None:
        mark = marks.get(address)
        if mark is _Mark.DONE:
            return
        if mark is _Mark.ACTIVE:
            start = path.index(address)
            raise CyclicDependencyError((*path[start:], address))
        marks[address] = _Mark.ACTIVE
        path.append(address)
        for dependency in dependencies_of(address):
            visit(dependency)
        path.pop()
        marks[address] = _Mark.DONE
        order.append(address)

    for address in addresses:
        visit(address)
    return tuple(order)


def topological_order(graph: ResourceGraph) -> tuple[ResourceAddress, ...]:
    """Apply order for ``graph``: every dependency precedes its dependents."""

    return depth_first_order(graph.addresses, graph.dependencies_of)


def destroy_order(graph: ResourceGraph) -> tuple[ResourceAddress, ...]:
    """Exact reverse of ``topological_order``."""

    return tuple(reversed(topological_order(graph)))


def order_state_records(
    records: Mapping[ResourceAddress, StateRecord],
    *,
    graph: ResourceGraph | None = None,
) -> tuple[ResourceAddress, ...]:
    """Apply order for recorded resources, using dependencies stored in state.

    When ``graph`` is given, recorded addresses it still declares are visited in
    the graph's order first, so the result matches ``topological_order`` for an
    unchanged configuration.
    """

    def dependencies_of(address: ResourceAddress) -> tuple[ResourceAddress, ...]:
        return tuple(
            dependency for dependency in records[address].dependencies if dependency in records
        )

    seeds: list[ResourceAddress] = []
    if graph is not None:
        seeds.extend(address for address in topological_order(graph) if address in records)
    seeded = set(seeds)
    seeds.extend(
        sorted(
            (address for address in records if address not in seeded),
            key=lambda address: address.sort_key(),
        )
    )
    return depth_first_order(seeds, dependencies_of)
