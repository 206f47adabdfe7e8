"""Public interface for the cloud control-plane adapter."""

from __future__ import annotations

from .client import CloudApiClient
from .resources import (
    COMPUTE_INSTANCE,
    FIREWALL_RULE,
    INTERNET_GATEWAY,
    NETWORK,
    RESOURCE_TYPES,
    ROUTE_TABLE,
    SUBNET,
    CloudResourceAdapter,
    CloudResourceType,
    build_cloud_registry,
)
from .schema import ErrorPayload, ResourcePayload, ResourceState

__all__ = [
    "COMPUTE_INSTANCE",
    "FIREWALL_RULE",
    "INTERNET_GATEWAY",
    "NETWORK",
    "RESOURCE_TYPES",
    "ROUTE_TABLE",
    "SUBNET",
    "CloudApiClient",
    "CloudResourceAdapter",
    "CloudResourceType",
    "ErrorPayload",
    "ResourcePayload",
    "ResourceState",
    "build_cloud_registry",
]
