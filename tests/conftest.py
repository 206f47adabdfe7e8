from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
from sqlalchemy import create_engine

from terrarium.adapters.sqlalchemy import SqlAlchemyStateStore
from terrarium.config import EngineConfig, RetryPolicy
from terrarium.domain.reconciliation import ReconciliationEngine
from tests.helpers.providers import FakeCloud, make_registry

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path

    from sqlalchemy.engine import Engine

    from terrarium.domain.ports import ProviderRegistry


@pytest.fixture
def sqlite_engine(tmp_path: Path) -> Iterator[Engine]:
    engine = create_engine(f"sqlite+pysqlite:///{tmp_path / 'state.db'}", future=True)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture
def state_store(sqlite_engine: Engine) -> SqlAlchemyStateStore:
    return SqlAlchemyStateStore(sqlite_engine, holder="test-run")


@pytest.fixture
def cloud() -> FakeCloud:
    return FakeCloud()


@pytest.fixture
def registry(cloud: FakeCloud) -> ProviderRegistry:
    return make_registry(cloud)


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def engine(
    registry: ProviderRegistry,
    state_store: SqlAlchemyStateStore,
    sleeps: list[float],
) -> ReconciliationEngine:
    async def fake_sleep(delay: float) -> None:
        sleeps.append(delay)

    return ReconciliationEngine(
        registry=registry,
        state=state_store,
        config=EngineConfig(
            parallelism=4,
            retry=RetryPolicy(attempts=3, backoff_factor=0.5),
            poll_interval_seconds=0.01,
        ),
        sleep=fake_sleep,
    )


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    for name in (
        "TERRARIUM_STATE_URI",
        "TERRARIUM_PARALLELISM",
        "TERRARIUM_RETRY_ATTEMPTS",
        "TERRARIUM_RETRY_BACKOFF",
        "TERRARIUM_RUN_TIMEOUT",
        "CLOUD_API_URL",
        "CLOUD_API_TOKEN",
        "CLOUD_API_RATE_LIMIT",
        "CLOUD_API_POLL_INTERVAL",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("TERRARIUM_DATA_DIR", str(tmp_path / "data"))
