"""Provider adapters for the control-plane resource types."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from logging import getLogger
from typing import TYPE_CHECKING

from terrarium.domain.errors import ProviderError, UnsupportedUpdateError
from terrarium.domain.model import AttributeType
from terrarium.domain.ports import AttributeSpec, ProviderRegistry, ResourceSchema

from .client import CloudApiClient
from .schema import ResourceState

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Mapping

    from terrarium.config.cloud import CloudConfig
    from terrarium.domain.ports import Attributes

    from .schema import ResourcePayload

log = getLogger(__name__)

STRING = AttributeType.STRING
INTEGER = AttributeType.INTEGER
BOOLEAN = AttributeType.BOOLEAN
LIST = AttributeType.LIST
MAP = AttributeType.MAP


def _required(name: str, kind: AttributeType, *, mutable: bool = False) -> AttributeSpec:
    return AttributeSpec(name=name, type=kind, required=True, mutable=mutable)


def _optional(name: str, kind: AttributeType, *, mutable: bool = True) -> AttributeSpec:
    return AttributeSpec(name=name, type=kind, mutable=mutable)


def _computed(name: str, kind: AttributeType = STRING) -> AttributeSpec:
    return AttributeSpec(name=name, type=kind, computed=True)


_NAME = _required("name", STRING, mutable=True)
_TAGS = _optional("tags", MAP)


@dataclass(frozen=True, slots=True)
class CloudResourceType:
    schema: ResourceSchema
    collection: str

    @property
    def name(self) -> str:
        return self.schema.resource_type


NETWORK = CloudResourceType(
    schema=ResourceSchema(
        "network",
        (_NAME, _required("cidr_block", STRING), _TAGS),
    ),
    collection="networks",
)
SUBNET = CloudResourceType(
    schema=ResourceSchema(
        "subnet",
        (
            _NAME,
            _required("network_id", STRING),
            _required("cidr_block", STRING),
            _optional("zone", STRING, mutable=False),
            _optional("public_ip_on_launch", BOOLEAN),
            _TAGS,
        ),
    ),
    collection="subnets",
)
INTERNET_GATEWAY = CloudResourceType(
    schema=ResourceSchema(
        "internet_gateway",
        (_NAME, _required("network_id", STRING), _TAGS),
    ),
    collection="gateways",
)
ROUTE_TABLE = CloudResourceType(
    schema=ResourceSchema(
        "route_table",
        (
            _NAME,
            _required("network_id", STRING),
            _optional("routes", LIST),
            _optional("subnet_ids", LIST),
            _TAGS,
        ),
    ),
    collection="route-tables",
)
FIREWALL_RULE = CloudResourceType(
    schema=ResourceSchema(
        "firewall_rule",
        (
            _NAME,
            _required("network_id", STRING),
            _optional("description", STRING),
            _optional("ingress", LIST),
            _optional("egress", LIST),
            _TAGS,
        ),
    ),
    collection="firewall-rules",
)
COMPUTE_INSTANCE = CloudResourceType(
    schema=ResourceSchema(
        "compute_instance",
        (
            _NAME,
            _required("image", STRING),
            _required("machine_type", STRING),
            _required("subnet_id", STRING),
            _optional("user_data", STRING, mutable=False),
            _optional("firewall_rule_ids", LIST),
            _optional("public_ip_enabled", BOOLEAN),
            _optional("disk_size_gb", INTEGER),
            _TAGS,
            _computed("public_ip"),
            _computed("private_ip"),
        ),
    ),
    collection="instances",
)

RESOURCE_TYPES: tuple[CloudResourceType, ...] = (
    NETWORK,
    SUBNET,
    INTERNET_GATEWAY,
    ROUTE_TABLE,
    FIREWALL_RULE,
    COMPUTE_INSTANCE,
)


@dataclass(slots=True)
class CloudResourceAdapter:
    """``ProviderAdapter`` for one control-plane collection.

    Creates are followed by polling until the resource leaves ``pending``.
    Updates PATCH only the changed attributes; an immutable change raises
    ``UnsupportedUpdateError`` before any request is sent.
    """

    resource: CloudResourceType
    client: CloudApiClient
    poll_interval_seconds: float = 2.0
    poll_timeout_seconds: float = 600.0
    sleep: Callable[[float], Awaitable[None]] = field(default=asyncio.sleep)

    @property
    def schema(self) -> ResourceSchema:
        return self.resource.schema

    async def create(self, desired: Mapping[str, object]) -> tuple[str, Attributes]:
        payload = await self.client.create(
            self.resource.name, self.resource.collection, self._body(desired)
        )
        log.debug(f"Created {self.resource.name} {payload.id} ({payload.status})")
        ready = await self._wait_until_ready(payload)
        return ready.id, ready.attributes

    async def read(self, provider_id: str) -> Attributes:
        payload = await self.client.read(self.resource.name, self.resource.collection, provider_id)
        return payload.attributes

    async def update(self, provider_id: str, desired: Mapping[str, object]) -> Attributes:
        current = await self.read(provider_id)
        body = self._body(desired)
        changed = {name: value for name, value in body.items() if current.get(name) != value}
        immutable = [name for name in changed if not self.schema.is_mutable(name)]
        if immutable:
            raise UnsupportedUpdateError(self.resource.name, immutable)
        if not changed:
            return current
        payload = await self.client.update(
            self.resource.name, self.resource.collection, provider_id, changed
        )
        ready = await self._wait_until_ready(payload)
        return ready.attributes

    async def delete(self, provider_id: str) -> None:
        await self.client.delete(self.resource.name, self.resource.collection, provider_id)

    def _body(self, desired: Mapping[str, object]) -> dict[str, object]:
        return {
            name: value
            for name, value in desired.items()
            if (spec := self.schema.get(name)) is not None and not spec.computed
        }

    async def _wait_until_ready(self, payload: ResourcePayload) -> ResourcePayload:
        deadline = time.monotonic() + self.poll_timeout_seconds
        while payload.status is ResourceState.PENDING:
            if time.monotonic() >= deadline:
                raise ProviderError.transient_error(
                    f"{self.resource.name} {payload.id} still pending after "
                    f"{self.poll_timeout_seconds:.0f}s"
                )
            await self.sleep(self.poll_interval_seconds)
            payload = await self.client.read(
                self.resource.name, self.resource.collection, payload.id
            )
        if payload.status is ResourceState.FAILED:
            detail = payload.status_message or "provisioning failed"
            raise ProviderError(f"{self.resource.name} {payload.id}: {detail}")
        return payload


def build_cloud_registry(
    config: CloudConfig,
    *,
    client: CloudApiClient | None = None,
    registry: ProviderRegistry | None = None,
) -> ProviderRegistry:
    """Register an adapter for every control-plane resource type."""

    api = client or CloudApiClient(config.resilience)
    target = registry if registry is not None else ProviderRegistry()
    for resource in RESOURCE_TYPES:
        target.register(
            CloudResourceAdapter(
                resource=resource,
                client=api,
                poll_interval_seconds=config.poll_interval_seconds,
                poll_timeout_seconds=config.poll_timeout_seconds,
            )
        )
    return target
