from __future__ import annotations

from terrarium.domain.model import ResourceAddress, StateRecord
from terrarium.domain.reconciliation import UNKNOWN, evaluate_outputs


def _record(text: str, **attributes: object) -> StateRecord:
    address = ResourceAddress.parse(text)
    return StateRecord(
        address=address,
        resource_type=address.type,
        provider_id=str(attributes.get("id", text)),
        attributes=attributes,
    )


def test_evaluate_outputs_resolves_recorded_attributes() -> None:
    records = {
        record.address: record
        for record in (
            _record("compute_instance.web", id="i-1", public_ip="203.0.113.7"),
            _record("subnet.public[1]", id="sn-2"),
            _record("subnet.public[0]", id="sn-1"),
        )
    }

    values = evaluate_outputs(
        {
            "url": "http://${compute_instance.web.public_ip}:8080",
            "subnets": "${subnet.public[*].id}",
        },
        records,
    )

    assert values == {"url": "http://203.0.113.7:8080", "subnets": ["sn-1", "sn-2"]}


def test_evaluate_outputs_leaves_unapplied_values_unknown() -> None:
    values = evaluate_outputs({"ip": "${compute_instance.web.public_ip}"}, {})

    assert values["ip"] is UNKNOWN
