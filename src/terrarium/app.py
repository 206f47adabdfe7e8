"""Application orchestration entry points."""

from __future__ import annotations

from dataclasses import dataclass, field
from logging import getLogger
from typing import TYPE_CHECKING

from terrarium.adapters.cloud import build_cloud_registry
from terrarium.adapters.document import load_configuration
from terrarium.adapters.sqlalchemy import build_state_store
from terrarium.config import get_cloud_config, get_engine_config, get_state_config
from terrarium.domain.reconciliation import ReconciliationEngine, build_graph, evaluate_outputs

if TYPE_CHECKING:
    from collections.abc import Mapping
    from pathlib import Path

    from terrarium.domain.ports import ProviderRegistry, StateStore
    from terrarium.domain.reconciliation import Plan, ResourceGraph, RunReport

log = getLogger(__name__)


@dataclass(slots=True, frozen=True)
class RunResult:
    plan: Plan
    report: RunReport
    outputs: dict[str, object] = field(default_factory=dict["str", "object"])


def build_engine(
    *,
    state_path: str | None = None,
    parallelism: int | None = None,
    registry: ProviderRegistry | None = None,
    state: StateStore | None = None,
) -> ReconciliationEngine:
    """Wire the engine with the cloud provider and the SQLAlchemy state store."""

    return ReconciliationEngine(
        registry=registry or build_cloud_registry(get_cloud_config()),
        state=state or build_state_store(get_state_config(state_path=state_path)),
        config=get_engine_config(parallelism=parallelism),
    )


def load_graph(
    path: Path | str,
    *,
    registry: ProviderRegistry,
    variables: Mapping[str, object] | None = None,
) -> ResourceGraph:
    configuration = load_configuration(path)
    graph = build_graph(configuration, schema_for=registry.schema_for, variables=variables)
    log.info(f"Loaded {len(graph)} resource(s) from {path}")
    return graph


def plan_changes(
    engine: ReconciliationEngine,
    graph: ResourceGraph,
    *,
    refresh: bool = True,
    destroy: bool = False,
) -> Plan:
    if destroy:
        return engine.plan_destroy(graph)
    return engine.plan(graph, refresh=refresh)


def apply_changes(
    engine: ReconciliationEngine,
    graph: ResourceGraph,
    *,
    refresh: bool = True,
) -> RunResult:
    """Apply ``graph`` and evaluate its outputs against the committed state."""

    plan, report = engine.apply(graph, refresh=refresh)
    return RunResult(plan=plan, report=report, outputs=read_outputs(engine, graph))


def destroy_resources(
    engine: ReconciliationEngine,
    graph: ResourceGraph | None = None,
) -> RunResult:
    plan, report = engine.destroy(graph)
    return RunResult(plan=plan, report=report)


def read_outputs(engine: ReconciliationEngine, graph: ResourceGraph) -> dict[str, object]:
    snapshot = engine.state.load()
    return evaluate_outputs(graph.outputs, snapshot.records)
