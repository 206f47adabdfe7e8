"""Error taxonomy for planning and applying resource graphs.

Planning-time errors (``ConfigError``, ``CyclicDependencyError``,
``StateLockedError``) abort a run before any provider call. Provider errors
raised while executing are captured as per-resource outcomes by the engine.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from .model.enums import ProviderErrorKind

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from .model.address import ResourceAddress


class TerrariumError(Exception):
    """Base class for all reconciler errors."""


class ConfigError(TerrariumError):
    """Raised when the configuration document cannot be turned into a graph."""


class CyclicDependencyError(ConfigError):
    """Raised when resource dependencies form a cycle."""

    def __init__(self, cycle: Sequence[ResourceAddress]) -> None:
        self.cycle = tuple(cycle)
        rendered = " -> ".join(str(address) for address in self.cycle)
        super().__init__(f"Dependency cycle detected: {rendered}")


class ProviderError(TerrariumError):
    """Raised by provider adapters when a remote call fails."""

    def __init__(
        self,
        message: str,
        *,
        kind: ProviderErrorKind = ProviderErrorKind.PERMANENT,
    ) -> None:
        super().__init__(message)
        self.kind = kind

    @property
    def transient(self) -> bool:
        return self.kind is ProviderErrorKind.TRANSIENT

    @classmethod
    def transient_error(cls, message: str) -> ProviderError:
        return cls(message, kind=ProviderErrorKind.TRANSIENT)


class ResourceNotFoundError(TerrariumError):
    """Raised when a provider id no longer refers to a live resource."""

    def __init__(self, resource_type: str, provider_id: str) -> None:
        super().__init__(f"{resource_type} {provider_id} not found")
        self.resource_type = resource_type
        self.provider_id = provider_id


class UnsupportedUpdateError(TerrariumError):
    """Raised when an in-place update cannot express the change; replace instead."""

    def __init__(self, resource_type: str, attributes: Iterable[str]) -> None:
        self.resource_type = resource_type
        self.attributes = tuple(sorted(attributes))
        names = ", ".join(self.attributes) or "unknown attributes"
        super().__init__(f"{resource_type} requires replacement to change {names}")


class StateLockedError(TerrariumError):
    """Raised when another run already holds the state lock."""

    def __init__(self, holder: str | None = None) -> None:
        self.holder = holder
        detail = f" (held by {holder})" if holder else ""
        super().__init__(f"State is locked by another run{detail}")


class StalePlanError(TerrariumError):
    """Raised when a saved plan no longer matches the state it was computed from."""
