"""Resource graph arena for one run.

Nodes are addressed by ``ResourceAddress`` rather than linked to each other, so
edges are plain address tuples and the graph can be walked in any direction
without object cycles. Insertion order is declaration order.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from terrarium.domain.model import ResourceAddress, ResourceNode

if TYPE_CHECKING:
    from collections.abc import Iterator


@dataclass(slots=True)
class ResourceGraph:
    """Container of expanded resource nodes and their dependency edges."""

    outputs: dict[str, str] = field(default_factory=dict[str, str])
    _nodes_by_address: dict[ResourceAddress, ResourceNode] = field(
        default_factory=dict["ResourceAddress", "ResourceNode"], repr=False
    )
    _instances_by_base: dict[ResourceAddress, list[ResourceAddress]] = field(
        default_factory=dict["ResourceAddress", "list[ResourceAddress]"], repr=False
    )
    _positions: dict[ResourceAddress, int] = field(
        default_factory=dict["ResourceAddress", "int"], repr=False
    )

    @property
    def nodes(self) -> tuple[ResourceNode, ...]:
        return tuple(self._nodes_by_address.values())

    @property
    def addresses(self) -> tuple[ResourceAddress, ...]:
        return tuple(self._nodes_by_address)

    def __len__(self) -> int:
        return len(self._nodes_by_address)

    def __iter__(self) -> Iterator[ResourceNode]:
        return iter(self._nodes_by_address.values())

    def __contains__(self, address: object) -> bool:
        return address in self._nodes_by_address

    def declare(self, base: ResourceAddress) -> None:
        """Register a declaration before its nodes are added.

        Declaring up front lets ``count = 0`` declarations stay addressable by
        splat references and ``depends_on`` even though they expand to nothing.
        """

        if base in self._instances_by_base:
            raise ValueError(f"Resource {base} declared twice")
        self._instances_by_base[base] = []

    def add(self, node: ResourceNode) -> None:
        address = node.address
        if address in self._nodes_by_address:
            raise ValueError(f"Resource node {address} already in graph")
        instances = self._instances_by_base.setdefault(address.base, [])
        instances.append(address)
        self._positions[address] = len(self._nodes_by_address)
        self._nodes_by_address[address] = node

    def node_for(self, address: ResourceAddress) -> ResourceNode:
        try:
            return self._nodes_by_address[address]
        except KeyError:
            raise KeyError(f"Resource node {address} not in graph") from None

    def get(self, address: ResourceAddress) -> ResourceNode | None:
        return self._nodes_by_address.get(address)

    def declares(self, base: ResourceAddress) -> bool:
        return base in self._instances_by_base

    def instances_of(self, base: ResourceAddress) -> tuple[ResourceAddress, ...]:
        return tuple(self._instances_by_base.get(base, ()))

    def position(self, address: ResourceAddress) -> int:
        """Declaration position of ``address``; used to break ordering ties."""

        return self._positions[address]

    def dependencies_of(self, address: ResourceAddress) -> tuple[ResourceAddress, ...]:
        """Direct dependencies of ``address`` in declaration order."""

        node = self.node_for(address)
        return tuple(sorted(node.dependencies, key=self.position))

    def dependents_of(self, address: ResourceAddress) -> tuple[ResourceAddress, ...]:
        return tuple(
            node.address for node in self._nodes_by_address.values() if address in node.dependencies
        )

    def validate_invariants(self) -> None:
        for address, node in self._nodes_by_address.items():
            if node.address != address:
                raise ValueError(f"Node index mismatch for {address}: {node.address}")
            for dependency in node.dependencies:
                if dependency not in self._nodes_by_address:
                    raise ValueError(f"{address} depends on missing node {dependency}")
        for base, instances in self._instances_by_base.items():
            for address in instances:
                if address.base != base:
                    raise ValueError(f"Instance index mismatch for {base}: {address}")
