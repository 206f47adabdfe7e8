"""HTTP client for the cloud control-plane API."""

from __future__ import annotations

from dataclasses import dataclass, field
from logging import getLogger
from typing import TYPE_CHECKING

import httpx
from pydantic import ValidationError

from terrarium.adapters.http_resilience import ResilientClient, build_limiter
from terrarium.domain.errors import ProviderError, ResourceNotFoundError, UnsupportedUpdateError

from .schema import ErrorPayload, ResourcePayload

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

    from aiolimiter import AsyncLimiter

    from terrarium.config.http_resilience import ResilienceConfig

log = getLogger(__name__)

TRANSIENT_STATUS_CODES = frozenset({408, 425, 429})
REQUIRES_REPLACEMENT = "requires_replacement"

type ClientFactory = Callable[[ResilienceConfig, AsyncLimiter | None], ResilientClient]


def _default_client_factory(
    config: ResilienceConfig,
    limiter: AsyncLimiter | None,
) -> ResilientClient:
    return ResilientClient(config, limiter=limiter)


@dataclass(slots=True)
class CloudApiClient:
    """Resource CRUD against ``/{collection}`` endpoints with error classification.

    One limiter is shared by every request so the configured rate limit holds
    across concurrent workers.
    """

    resilience: ResilienceConfig
    client_factory: ClientFactory = field(default=_default_client_factory)
    _limiter: AsyncLimiter | None = field(init=False, default=None, repr=False)

    def __post_init__(self) -> None:
        self._limiter = build_limiter(self.resilience)

    async def create(
        self, resource_type: str, collection: str, body: Mapping[str, object]
    ) -> ResourcePayload:
        response = await self._request(resource_type, "POST", f"/{collection}", json=dict(body))
        self._raise_for_status(resource_type, None, response)
        return self._parse(resource_type, response)

    async def read(self, resource_type: str, collection: str, provider_id: str) -> ResourcePayload:
        response = await self._request(resource_type, "GET", f"/{collection}/{provider_id}")
        self._raise_for_status(resource_type, provider_id, response)
        return self._parse(resource_type, response)

    async def update(
        self,
        resource_type: str,
        collection: str,
        provider_id: str,
        body: Mapping[str, object],
    ) -> ResourcePayload:
        response = await self._request(
            resource_type, "PATCH", f"/{collection}/{provider_id}", json=dict(body)
        )
        self._raise_for_status(resource_type, provider_id, response)
        return self._parse(resource_type, response)

    async def delete(self, resource_type: str, collection: str, provider_id: str) -> None:
        response = await self._request(resource_type, "DELETE", f"/{collection}/{provider_id}")
        self._raise_for_status(resource_type, provider_id, response)

    async def _request(
        self,
        resource_type: str,
        method: str,
        url: str,
        *,
        json: object = None,
    ) -> httpx.Response:
        async with self.client_factory(self.resilience, self._limiter) as client:
            try:
                if json is None:
                    return await client.request(method, url)
                return await client.request(method, url, json=json)
            except (httpx.TimeoutException, httpx.NetworkError, httpx.RemoteProtocolError) as exc:
                log.warning(f"{method} {url} for {resource_type} failed: {exc!r}")
                raise ProviderError.transient_error(
                    f"{resource_type}: {method} {url} failed: {exc}"
                ) from exc
            except httpx.HTTPError as exc:
                raise ProviderError(f"{resource_type}: {method} {url} failed: {exc}") from exc

    def _raise_for_status(
        self,
        resource_type: str,
        provider_id: str | None,
        response: httpx.Response,
    ) -> None:
        status = response.status_code
        if response.is_success:
            return
        error = _error_payload(response)
        detail = error.message or response.reason_phrase or "request failed"
        request = response.request
        log.error(
            f"{request.method} {request.url.path} for {resource_type} returned {status}: {detail}"
        )
        if status == 404 and provider_id is not None:
            raise ResourceNotFoundError(resource_type, provider_id)
        if status == 409 and error.code == REQUIRES_REPLACEMENT:
            raise UnsupportedUpdateError(resource_type, error.attributes)
        message = f"{resource_type}: HTTP {status}: {detail}"
        if status in TRANSIENT_STATUS_CODES or status >= 500:
            raise ProviderError.transient_error(message)
        raise ProviderError(message)

    def _parse(self, resource_type: str, response: httpx.Response) -> ResourcePayload:
        try:
            return ResourcePayload.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise ProviderError(f"{resource_type}: unexpected response payload: {exc}") from exc


def _error_payload(response: httpx.Response) -> ErrorPayload:
    try:
        payload = response.json()
    except ValueError:
        return ErrorPayload()
    if isinstance(payload, dict) and isinstance(payload.get("error"), dict):
        payload = payload["error"]
    try:
        return ErrorPayload.model_validate(payload)
    except ValidationError:
        return ErrorPayload()
