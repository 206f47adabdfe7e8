"""Domain port definitions for adapters."""

from __future__ import annotations

from .provider import (
    ID_ATTRIBUTE,
    Attributes,
    AttributeSpec,
    ProviderAdapter,
    ProviderRegistry,
    ResourceSchema,
)
from .state import StateSnapshot, StateStore, StateTransaction

__all__ = [
    "ID_ATTRIBUTE",
    "AttributeSpec",
    "Attributes",
    "ProviderAdapter",
    "ProviderRegistry",
    "ResourceSchema",
    "StateSnapshot",
    "StateStore",
    "StateTransaction",
]
