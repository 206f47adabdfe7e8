from __future__ import annotations

import asyncio
import itertools
import json
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import httpx
import pytest

from terrarium.adapters.cloud import (
    COMPUTE_INSTANCE,
    NETWORK,
    RESOURCE_TYPES,
    CloudApiClient,
    CloudResourceAdapter,
    build_cloud_registry,
)
from terrarium.adapters.http_resilience import ResilientClient
from terrarium.config import ResilienceConfig, get_cloud_config
from terrarium.domain.errors import ProviderError, ResourceNotFoundError, UnsupportedUpdateError

if TYPE_CHECKING:
    from aiolimiter import AsyncLimiter

    from terrarium.adapters.cloud import CloudResourceType


@dataclass
class FakeControlPlane:
    """In-memory ``/{collection}`` API; new resources stay pending for ``pending_reads`` GETs."""

    pending_reads: int = 0
    resources: dict[str, dict[str, object]] = field(default_factory=dict)
    requests: list[httpx.Request] = field(default_factory=list)
    replies: dict[tuple[str, str], httpx.Response] = field(default_factory=dict)
    _reads: dict[str, int] = field(default_factory=dict)
    _ids: itertools.count[int] = field(default_factory=lambda: itertools.count(1))

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        canned = self.replies.get((request.method, request.url.path))
        if canned is not None:
            return canned
        parts = request.url.path.strip("/").split("/")
        if request.method == "POST":
            provider_id = f"{parts[-1]}-{next(self._ids)}"
            body = json.loads(request.content)
            self.resources[provider_id] = {**body, "id": provider_id, "private_ip": "10.0.0.9"}
            self._reads[provider_id] = 0
            return httpx.Response(201, json={**self.resources[provider_id], "status": "pending"})
        provider_id = parts[-1]
        current = self.resources.get(provider_id)
        if current is None:
            return httpx.Response(404, json={"error": {"code": "not_found"}})
        if request.method == "GET":
            self._reads[provider_id] = self._reads.get(provider_id, 0) + 1
            status = "pending" if self._reads[provider_id] <= self.pending_reads else "ready"
            return httpx.Response(200, json={**current, "status": status})
        if request.method == "PATCH":
            current.update(json.loads(request.content))
            return httpx.Response(200, json={**current, "status": "ready"})
        del self.resources[provider_id]
        return httpx.Response(204)

    def sent(self, method: str) -> list[httpx.Request]:
        return [request for request in self.requests if request.method == method]


RESILIENCE = ResilienceConfig(name="cloud", base_url="https://api.test/v1")


def _client(api: FakeControlPlane) -> CloudApiClient:
    def factory(config: ResilienceConfig, limiter: AsyncLimiter | None) -> ResilientClient:
        return ResilientClient(config, limiter=limiter, transport=httpx.MockTransport(api.handler))

    return CloudApiClient(RESILIENCE, client_factory=factory)


def _adapter(
    api: FakeControlPlane,
    resource: CloudResourceType = COMPUTE_INSTANCE,
    *,
    sleeps: list[float] | None = None,
    poll_timeout_seconds: float = 60.0,
) -> CloudResourceAdapter:
    recorded = sleeps if sleeps is not None else []

    async def fake_sleep(delay: float) -> None:
        recorded.append(delay)

    return CloudResourceAdapter(
        resource=resource,
        client=_client(api),
        poll_interval_seconds=0.25,
        poll_timeout_seconds=poll_timeout_seconds,
        sleep=fake_sleep,
    )


INSTANCE = {
    "name": "web",
    "image": "ubuntu-22.04",
    "machine_type": "small",
    "subnet_id": "subnets-1",
    "user_data": "#!/bin/sh",
}


def test_create_polls_until_ready_and_returns_computed_attributes() -> None:
    api = FakeControlPlane(pending_reads=2)
    sleeps: list[float] = []
    adapter = _adapter(api, sleeps=sleeps)

    provider_id, attributes = asyncio.run(adapter.create(INSTANCE))

    assert provider_id == "instances-1"
    assert attributes["private_ip"] == "10.0.0.9"
    assert attributes["id"] == provider_id
    assert "status" not in attributes
    assert sleeps == [0.25, 0.25, 0.25]
    post = api.sent("POST")[0]
    assert post.url.path == "/v1/instances"
    assert json.loads(post.content) == INSTANCE


def test_create_drops_computed_and_unknown_attributes_from_body() -> None:
    api = FakeControlPlane()
    adapter = _adapter(api)

    asyncio.run(adapter.create({**INSTANCE, "public_ip": "1.2.3.4", "id": "x"}))

    assert json.loads(api.sent("POST")[0].content) == INSTANCE


def test_create_times_out_as_transient_while_pending() -> None:
    api = FakeControlPlane(pending_reads=100)
    adapter = _adapter(api, poll_timeout_seconds=0)

    with pytest.raises(ProviderError, match="still pending") as excinfo:
        asyncio.run(adapter.create(INSTANCE))

    assert excinfo.value.transient


def test_failed_provisioning_is_permanent() -> None:
    api = FakeControlPlane()
    api.replies[("POST", "/v1/instances")] = httpx.Response(
        201,
        json={"id": "instances-9", "status": "failed", "status_message": "image not found"},
    )

    with pytest.raises(ProviderError, match="image not found") as excinfo:
        asyncio.run(_adapter(api).create(INSTANCE))

    assert not excinfo.value.transient


def test_read_missing_resource_raises_not_found() -> None:
    api = FakeControlPlane()

    with pytest.raises(ResourceNotFoundError):
        asyncio.run(_adapter(api).read("instances-404"))


def test_delete_sends_delete_request() -> None:
    api = FakeControlPlane()
    adapter = _adapter(api, NETWORK)
    provider_id, _attributes = asyncio.run(
        adapter.create({"name": "main", "cidr_block": "10.0.0.0/16"})
    )

    asyncio.run(adapter.delete(provider_id))

    assert api.resources == {}
    assert api.sent("DELETE")[0].url.path == f"/v1/networks/{provider_id}"


def test_update_patches_only_changed_attributes() -> None:
    api = FakeControlPlane()
    adapter = _adapter(api)
    provider_id, _attributes = asyncio.run(adapter.create(INSTANCE))

    attributes = asyncio.run(
        adapter.update(provider_id, {**INSTANCE, "disk_size_gb": 40, "tags": {"env": "prod"}})
    )

    assert attributes["disk_size_gb"] == 40
    assert attributes["machine_type"] == "small"
    patch = api.sent("PATCH")[0]
    assert json.loads(patch.content) == {"disk_size_gb": 40, "tags": {"env": "prod"}}


def test_update_of_immutable_attribute_requires_replacement_without_patch() -> None:
    api = FakeControlPlane()
    adapter = _adapter(api)
    provider_id, _attributes = asyncio.run(adapter.create(INSTANCE))

    with pytest.raises(UnsupportedUpdateError) as excinfo:
        asyncio.run(adapter.update(provider_id, {**INSTANCE, "user_data": "#!/bin/bash"}))

    assert excinfo.value.attributes == ("user_data",)
    assert api.sent("PATCH") == []


def test_conflict_requiring_replacement_maps_to_unsupported_update() -> None:
    api = FakeControlPlane()
    adapter = _adapter(api)
    provider_id, _attributes = asyncio.run(adapter.create(INSTANCE))
    api.replies[("PATCH", f"/v1/instances/{provider_id}")] = httpx.Response(
        409,
        json={
            "error": {
                "code": "requires_replacement",
                "message": "disk cannot shrink while running",
                "attributes": ["disk_size_gb"],
            }
        },
    )

    with pytest.raises(UnsupportedUpdateError) as excinfo:
        asyncio.run(adapter.update(provider_id, {**INSTANCE, "disk_size_gb": 10}))

    assert excinfo.value.attributes == ("disk_size_gb",)
    assert len(api.sent("PATCH")) == 1


@pytest.mark.parametrize(
    ("status", "transient"),
    [(429, True), (500, True), (503, True), (400, False), (403, False), (409, False)],
)
def test_error_statuses_are_classified(status: int, transient: bool) -> None:
    api = FakeControlPlane()
    api.replies[("POST", "/v1/networks")] = httpx.Response(
        status, json={"message": "nope"}
    )

    with pytest.raises(ProviderError, match=f"HTTP {status}: nope") as excinfo:
        asyncio.run(_adapter(api, NETWORK).create({"name": "main", "cidr_block": "10.0.0.0/16"}))

    assert excinfo.value.transient is transient


def test_network_errors_are_transient() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    def factory(config: ResilienceConfig, limiter: AsyncLimiter | None) -> ResilientClient:
        return ResilientClient(config, limiter=limiter, transport=httpx.MockTransport(handler))

    client = CloudApiClient(RESILIENCE, client_factory=factory)

    with pytest.raises(ProviderError, match="connection refused") as excinfo:
        asyncio.run(client.read("network", "networks", "networks-1"))

    assert excinfo.value.transient


def test_malformed_payload_is_a_provider_error() -> None:
    api = FakeControlPlane()
    api.replies[("GET", "/v1/networks/networks-1")] = httpx.Response(200, json={"status": "ready"})

    with pytest.raises(ProviderError, match="unexpected response payload"):
        asyncio.run(_adapter(api, NETWORK).read("networks-1"))


def test_build_cloud_registry_registers_every_resource_type(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("CLOUD_API_URL", "https://api.test/v1/")
    monkeypatch.setenv("CLOUD_API_TOKEN", "secret")
    config = get_cloud_config()

    registry = build_cloud_registry(config)

    assert config.api_url == "https://api.test/v1"
    assert config.resilience.default_headers is not None
    assert config.resilience.default_headers["Authorization"] == "Bearer secret"
    for resource in RESOURCE_TYPES:
        assert registry.schema_for(resource.name) is resource.schema
