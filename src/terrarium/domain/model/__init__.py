"""Domain model for resource graphs and recorded state."""

from __future__ import annotations

from .address import ResourceAddress
from .enums import (
    ActionKind,
    AttributeType,
    PlanOperation,
    ProviderErrorKind,
    ResourceStatus,
)
from .resource import (
    Configuration,
    ResourceDeclaration,
    ResourceNode,
    StateRecord,
    VariableDeclaration,
)

__all__ = [
    "ActionKind",
    "AttributeType",
    "Configuration",
    "PlanOperation",
    "ProviderErrorKind",
    "ResourceAddress",
    "ResourceDeclaration",
    "ResourceNode",
    "ResourceStatus",
    "StateRecord",
    "VariableDeclaration",
]
