"""Declarations, expanded resource nodes and persisted state records."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Mapping

    from .address import ResourceAddress


@dataclass(frozen=True, slots=True, kw_only=True)
class VariableDeclaration:
    name: str
    default: object = None
    has_default: bool = False
    description: str | None = None


@dataclass(frozen=True, slots=True, kw_only=True)
class ResourceDeclaration:
    """One entry of the configuration document before ``count`` expansion."""

    type: str
    name: str
    attributes: Mapping[str, object]
    count: int | str | None = None
    depends_on: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True, kw_only=True)
class Configuration:
    resources: tuple[ResourceDeclaration, ...]
    variables: Mapping[str, VariableDeclaration] = field(default_factory=dict)
    outputs: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True, slots=True, kw_only=True)
class ResourceNode:
    """Desired state of one resource, immutable once the graph is built.

    ``attributes`` may still contain ``${type.name.attribute}`` expressions; they are
    resolved against recorded state while planning and again right before execution.
    """

    address: ResourceAddress
    attributes: Mapping[str, object]
    dependencies: tuple[ResourceAddress, ...] = ()
    explicit_dependencies: tuple[ResourceAddress, ...] = ()
    declaration_order: int = 0

    @property
    def type(self) -> str:
        return self.address.type


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True, slots=True, kw_only=True)
class StateRecord:
    """Last known real-world state of an applied resource."""

    address: ResourceAddress
    resource_type: str
    provider_id: str
    attributes: Mapping[str, object]
    dependencies: tuple[ResourceAddress, ...] = ()
    updated_at: datetime = field(default_factory=_utcnow)
