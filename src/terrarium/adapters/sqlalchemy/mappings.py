"""SQLAlchemy table metadata for recorded resource state."""

from __future__ import annotations

import json
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import (
    Column,
    DateTime,
    Dialect,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    TypeDecorator,
)

from terrarium.domain.model import ResourceAddress, StateRecord

if TYPE_CHECKING:
    from collections.abc import Mapping

    from sqlalchemy.engine import Engine

metadata = MetaData()


class UTCDateTime(TypeDecorator[datetime]):
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        _ = dialect
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def process_result_value(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        _ = dialect
        if value is None:
            return None
        return value if value.tzinfo else value.replace(tzinfo=UTC)


class JSONText(TypeDecorator[Any]):
    """JSON document stored as text with stable key order."""

    impl = Text
    cache_ok = True

    def process_bind_param(self, value: Any, dialect: Dialect) -> str | None:
        _ = dialect
        if value is None:
            return None
        return json.dumps(value, sort_keys=True)

    def process_result_value(self, value: str | None, dialect: Dialect) -> Any:
        _ = dialect
        if value is None:
            return None
        return json.loads(value)


class AddressType(TypeDecorator[ResourceAddress]):
    impl = String(255)
    cache_ok = True

    def process_bind_param(self, value: ResourceAddress | None, dialect: Dialect) -> str | None:
        _ = dialect
        return None if value is None else str(value)

    def process_result_value(self, value: str | None, dialect: Dialect) -> ResourceAddress | None:
        _ = dialect
        return None if value is None else ResourceAddress.parse(value)


class AddressList(TypeDecorator[tuple[ResourceAddress, ...]]):
    impl = Text
    cache_ok = True

    def process_bind_param(
        self, value: tuple[ResourceAddress, ...] | None, dialect: Dialect
    ) -> str:
        _ = dialect
        return json.dumps([str(address) for address in value or ()])

    def process_result_value(
        self, value: str | None, dialect: Dialect
    ) -> tuple[ResourceAddress, ...]:
        _ = dialect
        if not value:
            return ()
        return tuple(ResourceAddress.parse(item) for item in json.loads(value))


state_record_table = Table(
    "state_record",
    metadata,
    Column("address", AddressType, primary_key=True),
    Column("resource_type", String(128), nullable=False),
    Column("provider_id", String(255), nullable=False),
    Column("attributes", JSONText, nullable=False),
    Column("dependencies", AddressList, nullable=False),
    Column("updated_at", UTCDateTime, nullable=False),
)

state_lock_table = Table(
    "state_lock",
    metadata,
    Column("name", String(32), primary_key=True),
    Column("holder", String(255), nullable=False),
    Column("acquired_at", UTCDateTime, nullable=False),
)

state_meta_table = Table(
    "state_meta",
    metadata,
    Column("key", String(64), primary_key=True),
    Column("value", Integer, nullable=False),
)


def create_all_tables(engine: Engine) -> None:
    metadata.create_all(engine)


def record_to_row(record: StateRecord) -> dict[str, object]:
    return {
        "address": record.address,
        "resource_type": record.resource_type,
        "provider_id": record.provider_id,
        "attributes": dict(record.attributes),
        "dependencies": tuple(record.dependencies),
        "updated_at": record.updated_at,
    }


def row_to_record(row: Mapping[str, Any]) -> StateRecord:
    return StateRecord(
        address=row["address"],
        resource_type=row["resource_type"],
        provider_id=row["provider_id"],
        attributes=row["attributes"] or {},
        dependencies=tuple(row["dependencies"] or ()),
        updated_at=row["updated_at"],
    )
