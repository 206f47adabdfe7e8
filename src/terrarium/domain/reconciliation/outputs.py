"""Evaluate named output expressions against recorded state."""

from __future__ import annotations

from typing import TYPE_CHECKING

from .references import UNKNOWN, resolve_attributes

if TYPE_CHECKING:
    from collections.abc import Mapping

    from terrarium.domain.model import ResourceAddress, StateRecord

    from .references import Reference


def evaluate_outputs(
    outputs: Mapping[str, str],
    records: Mapping[ResourceAddress, StateRecord],
) -> dict[str, object]:
    """Resolve each output; values of resources not yet applied stay ``UNKNOWN``."""

    def instances_of(base: ResourceAddress) -> list[ResourceAddress]:
        instances = [
            address for address in records if address.base == base and address.index is not None
        ]
        return sorted(instances, key=lambda address: address.index or 0)

    def value_of(address: ResourceAddress, attribute: str) -> object:
        record = records.get(address)
        if record is None:
            return UNKNOWN
        return record.attributes.get(attribute, UNKNOWN)

    def lookup(reference: Reference) -> object:
        if reference.splat:
            targets = instances_of(reference.base)
            return [value_of(address, reference.attribute) for address in targets]
        return value_of(reference.address, reference.attribute)

    return resolve_attributes(outputs, lookup)
