from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from terrarium.adapters.sqlalchemy import SqlAlchemyStateStore, build_state_store
from terrarium.config import StateConfig
from terrarium.domain.errors import StateLockedError
from terrarium.domain.model import ResourceAddress

if TYPE_CHECKING:
    from pathlib import Path

    from sqlalchemy.engine import Engine

NETWORK = ResourceAddress("network", "main")
SUBNET = ResourceAddress("subnet", "public", 0)


def _record_network(store: SqlAlchemyStateStore) -> None:
    with store.begin_transaction() as transaction:
        transaction.record(
            NETWORK,
            resource_type="network",
            provider_id="net-1",
            attributes={"name": "main", "tags": {"env": "dev"}, "id": "net-1"},
        )
        transaction.commit()


def test_empty_store_loads_serial_zero(state_store: SqlAlchemyStateStore) -> None:
    snapshot = state_store.load()

    assert snapshot.records == {}
    assert snapshot.serial == 0


def test_commit_persists_records_and_bumps_serial(state_store: SqlAlchemyStateStore) -> None:
    _record_network(state_store)
    with state_store.begin_transaction() as transaction:
        transaction.record(
            SUBNET,
            resource_type="subnet",
            provider_id="sn-1",
            attributes={"network_id": "net-1", "id": "sn-1"},
            dependencies=(NETWORK,),
        )
        transaction.commit()

    snapshot = state_store.load()

    assert snapshot.serial == 2
    assert snapshot.records[NETWORK].attributes == {
        "name": "main",
        "tags": {"env": "dev"},
        "id": "net-1",
    }
    assert snapshot.records[SUBNET].dependencies == (NETWORK,)
    assert snapshot.records[SUBNET].address == SUBNET


def test_commit_without_changes_keeps_serial(state_store: SqlAlchemyStateStore) -> None:
    _record_network(state_store)

    with state_store.begin_transaction() as transaction:
        transaction.commit()

    assert state_store.load().serial == 1


def test_uncommitted_changes_are_discarded(state_store: SqlAlchemyStateStore) -> None:
    _record_network(state_store)

    with pytest.raises(RuntimeError), state_store.begin_transaction() as transaction:
        transaction.remove(NETWORK)
        assert transaction.get(NETWORK) is None
        raise RuntimeError("worker crashed")

    assert NETWORK in state_store.load().records


def test_transaction_reads_its_own_writes(state_store: SqlAlchemyStateStore) -> None:
    _record_network(state_store)

    with state_store.begin_transaction() as transaction:
        assert not transaction.recorded(NETWORK)
        transaction.remove(NETWORK)
        record = transaction.record(
            NETWORK, resource_type="network", provider_id="net-2", attributes={"id": "net-2"}
        )

        assert transaction.get(NETWORK) == record
        assert transaction.recorded(NETWORK)
        assert transaction.pending == 1
        transaction.commit()

    assert state_store.load().records[NETWORK].provider_id == "net-2"


def test_remove_deletes_committed_record(state_store: SqlAlchemyStateStore) -> None:
    _record_network(state_store)

    with state_store.begin_transaction() as transaction:
        transaction.remove(NETWORK)
        transaction.commit()

    snapshot = state_store.load()
    assert snapshot.records == {}
    assert snapshot.serial == 2


def test_lock_is_exclusive_across_stores(sqlite_engine: Engine) -> None:
    first = SqlAlchemyStateStore(sqlite_engine, holder="first")
    second = SqlAlchemyStateStore(sqlite_engine, holder="second")

    with first.lock():
        with pytest.raises(StateLockedError, match="held by first"):
            with second.lock():
                pass
        assert second.current_holder() == "first"

    assert first.current_holder() is None
    with second.lock():
        assert first.current_holder() == "second"


def test_lock_is_released_when_body_raises(state_store: SqlAlchemyStateStore) -> None:
    with pytest.raises(ValueError, match="boom"), state_store.lock():
        raise ValueError("boom")

    assert state_store.current_holder() is None


def test_force_unlock_clears_stale_lock(sqlite_engine: Engine) -> None:
    crashed = SqlAlchemyStateStore(sqlite_engine, holder="crashed")
    crashed._acquire()  # noqa: SLF001  # type: ignore[reportPrivateUsage]
    store = SqlAlchemyStateStore(sqlite_engine, holder="operator")

    assert store.force_unlock()
    assert not store.force_unlock()
    with store.lock():
        assert store.current_holder() == "operator"


def test_build_state_store_uses_configured_uri(tmp_path: Path) -> None:
    uri = f"sqlite+pysqlite:///{tmp_path / 'configured.db'}"

    store = build_state_store(StateConfig(uri=uri), holder="cli")

    assert store.holder == "cli"
    assert store.load().serial == 0
    assert (tmp_path / "configured.db").exists()
