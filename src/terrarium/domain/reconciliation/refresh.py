"""Read recorded resources back from their providers before planning."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field, replace
from logging import getLogger
from typing import TYPE_CHECKING

from terrarium.domain.errors import ResourceNotFoundError

from .apply import call_with_retry

if TYPE_CHECKING:
    from collections.abc import Mapping

    from terrarium.config.engine import RetryPolicy
    from terrarium.domain.model import ResourceAddress, StateRecord
    from terrarium.domain.ports import ProviderRegistry

    from .apply import Sleep

log = getLogger(__name__)


@dataclass(slots=True, frozen=True)
class RefreshResult:
    """Planning view after refresh.

    ``records`` carry live attributes; ``missing`` holds records whose resource is
    gone; ``drifted`` lists addresses whose recorded attributes no longer match.
    """

    records: dict[ResourceAddress, StateRecord] = field(
        default_factory=dict["ResourceAddress", "StateRecord"]
    )
    missing: dict[ResourceAddress, StateRecord] = field(
        default_factory=dict["ResourceAddress", "StateRecord"]
    )
    drifted: tuple[ResourceAddress, ...] = ()


async def refresh_records(
    records: Mapping[ResourceAddress, StateRecord],
    *,
    registry: ProviderRegistry,
    retry: RetryPolicy,
    sleep: Sleep = asyncio.sleep,
    parallelism: int = 10,
) -> RefreshResult:
    """Read every record through its provider, at most ``parallelism`` at a time.

    Provider errors other than not-found propagate and abort planning.
    """

    semaphore = asyncio.Semaphore(parallelism)

    async def refresh_one(record: StateRecord) -> tuple[StateRecord, StateRecord | None]:
        adapter = registry.get(record.resource_type)
        async with semaphore:
            try:
                actual = await call_with_retry(
                    lambda: adapter.read(record.provider_id),
                    policy=retry,
                    sleep=sleep,
                    label=str(record.address),
                )
            except ResourceNotFoundError:
                log.warning(
                    "%s: %s no longer exists at the provider", record.address, record.provider_id
                )
                return record, None
        attributes = {**record.attributes, **actual, "id": record.provider_id}
        return record, replace(record, attributes=attributes)

    outcomes = await asyncio.gather(*(refresh_one(record) for record in records.values()))

    result = RefreshResult()
    drifted: list[ResourceAddress] = []
    for original, refreshed in outcomes:
        if refreshed is None:
            result.missing[original.address] = original
            continue
        result.records[original.address] = refreshed
        if refreshed.attributes != original.attributes:
            drifted.append(original.address)
    for address in drifted:
        log.info("%s: live attributes differ from recorded state", address)
    log.debug(
        "Refreshed %d record(s): %d missing, %d drifted",
        len(records),
        len(result.missing),
        len(drifted),
    )
    return replace(result, drifted=tuple(drifted))
