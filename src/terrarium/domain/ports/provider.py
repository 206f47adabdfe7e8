"""Provider adapter contract and the per-type dispatch table."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from terrarium.domain.errors import ConfigError
from terrarium.domain.model import AttributeType

if TYPE_CHECKING:
    from collections.abc import Iterator, Mapping

type Attributes = dict[str, object]


@dataclass(frozen=True, slots=True, kw_only=True)
class AttributeSpec:
    name: str
    type: AttributeType
    required: bool = False
    mutable: bool = True
    computed: bool = False

    def accepts(self, value: object) -> bool:
        """Return whether a literal ``value`` fits this attribute's type."""

        match self.type:
            case AttributeType.STRING:
                return isinstance(value, str)
            case AttributeType.INTEGER:
                return isinstance(value, int) and not isinstance(value, bool)
            case AttributeType.BOOLEAN:
                return isinstance(value, bool)
            case AttributeType.LIST:
                return isinstance(value, list | tuple)
            case AttributeType.MAP:
                return isinstance(value, dict)


ID_ATTRIBUTE = AttributeSpec(name="id", type=AttributeType.STRING, computed=True)


@dataclass(frozen=True, slots=True)
class ResourceSchema:
    """Attribute specification a provider publishes for one resource type."""

    resource_type: str
    attributes: tuple[AttributeSpec, ...] = ()
    _by_name: dict[str, AttributeSpec] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        by_name = {spec.name: spec for spec in self.attributes}
        by_name.setdefault(ID_ATTRIBUTE.name, ID_ATTRIBUTE)
        object.__setattr__(self, "_by_name", by_name)

    def __iter__(self) -> Iterator[AttributeSpec]:
        return iter(self._by_name.values())

    def __contains__(self, name: object) -> bool:
        return name in self._by_name

    def get(self, name: str) -> AttributeSpec | None:
        return self._by_name.get(name)

    def is_mutable(self, name: str) -> bool:
        spec = self._by_name.get(name)
        return spec is None or spec.mutable

    @property
    def required(self) -> tuple[str, ...]:
        return tuple(spec.name for spec in self._by_name.values() if spec.required)


@runtime_checkable
class ProviderAdapter(Protocol):
    """Uniform create/read/update/delete contract for one resource type.

    - ``create`` returns the provider-assigned id and the actual attributes.
    - ``read`` raises ``ResourceNotFoundError`` when the resource is gone.
    - ``update`` raises ``UnsupportedUpdateError`` when the change needs a replace.
    - ``delete`` may raise ``ResourceNotFoundError``; callers treat it as success.

    All four raise ``ProviderError`` (transient or permanent) on remote failures.
    """

    @property
    def schema(self) -> ResourceSchema: ...

    async def create(self, desired: Mapping[str, object]) -> tuple[str, Attributes]: ...

    async def read(self, provider_id: str) -> Attributes: ...

    async def update(self, provider_id: str, desired: Mapping[str, object]) -> Attributes: ...

    async def delete(self, provider_id: str) -> None: ...


@dataclass(slots=True)
class ProviderRegistry:
    """Dispatch table from resource type string to adapter, filled at startup."""

    _adapters: dict[str, ProviderAdapter] = field(
        default_factory=dict["str", "ProviderAdapter"], repr=False
    )

    def register(self, adapter: ProviderAdapter, *, replace: bool = False) -> None:
        resource_type = adapter.schema.resource_type
        if resource_type in self._adapters and not replace:
            raise ValueError(f"Provider for {resource_type!r} already registered")
        self._adapters[resource_type] = adapter

    def get(self, resource_type: str) -> ProviderAdapter:
        adapter = self._adapters.get(resource_type)
        if adapter is None:
            raise ConfigError(f"No provider registered for resource type {resource_type!r}")
        return adapter

    def schema_for(self, resource_type: str) -> ResourceSchema:
        return self.get(resource_type).schema

    @property
    def resource_types(self) -> tuple[str, ...]:
        return tuple(self._adapters)

    def __contains__(self, resource_type: object) -> bool:
        return resource_type in self._adapters
