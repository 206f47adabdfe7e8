"""Orchestrator for plan/apply/destroy runs.

The engine composes a provider registry and a state store but does not pick
concrete adapters. Every public run holds the state lock from the first state
read until the transaction is committed.
"""

from __future__ import annotations

import asyncio
import threading
import time
from dataclasses import dataclass, field
from logging import getLogger
from typing import TYPE_CHECKING

from terrarium.config.engine import EngineConfig
from terrarium.domain.errors import StalePlanError
from terrarium.domain.model import ActionKind

from .apply import PlanExecutor
from .plan import build_apply_plan, build_destroy_plan
from .refresh import refresh_records

if TYPE_CHECKING:
    from collections.abc import Mapping

    from terrarium.domain.model import ResourceAddress
    from terrarium.domain.ports import ProviderRegistry, StateStore, StateTransaction

    from .apply import Sleep
    from .contracts import RunReport
    from .graph import ResourceGraph
    from .plan import Plan


log = getLogger(__name__)


@dataclass(slots=True)
class ReconciliationEngine:
    """Plan and execute resource graphs against providers and recorded state."""

    registry: ProviderRegistry
    state: StateStore
    config: EngineConfig = field(default_factory=EngineConfig)
    sleep: Sleep = asyncio.sleep
    _cancel: threading.Event = field(default_factory=threading.Event, init=False, repr=False)

    def cancel(self) -> None:
        """Stop dispatching new provider calls; safe to call from a signal handler."""

        log.warning("Cancellation requested")
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def plan(self, graph: ResourceGraph, *, refresh: bool = True) -> Plan:
        """Diff ``graph`` against (optionally refreshed) state; no side effects."""

        with self.state.lock():
            return asyncio.run(self._plan(graph, refresh=refresh))

    def plan_destroy(self, graph: ResourceGraph | None = None) -> Plan:
        with self.state.lock():
            snapshot = self.state.load()
            return build_destroy_plan(
                snapshot.records,
                graph=graph,
                state_serial=snapshot.serial,
            )

    def apply(self, graph: ResourceGraph, *, refresh: bool = True) -> tuple[Plan, RunReport]:
        """Plan and execute in one locked run."""

        self._cancel.clear()
        with self.state.lock():
            return asyncio.run(self._plan_and_execute(graph, refresh=refresh))

    def destroy(self, graph: ResourceGraph | None = None) -> tuple[Plan, RunReport]:
        """Delete every recorded resource in reverse dependency order."""

        self._cancel.clear()
        with self.state.lock():
            snapshot = self.state.load()
            plan = build_destroy_plan(
                snapshot.records,
                graph=graph,
                state_serial=snapshot.serial,
            )
            return plan, asyncio.run(self._execute(plan))

    def execute(self, plan: Plan) -> RunReport:
        """Execute a previously built plan if state has not moved since."""

        self._cancel.clear()
        with self.state.lock():
            snapshot = self.state.load()
            if plan.state_serial is not None and plan.state_serial != snapshot.serial:
                raise StalePlanError(
                    f"Plan was built against state serial {plan.state_serial}, "
                    f"current serial is {snapshot.serial}"
                )
            return asyncio.run(self._execute(plan))

    async def _plan(self, graph: ResourceGraph, *, refresh: bool) -> Plan:
        snapshot = self.state.load()
        records = dict(snapshot.records)
        missing = {}
        if refresh and records:
            refreshed = await refresh_records(
                records,
                registry=self.registry,
                retry=self.config.retry,
                sleep=self.sleep,
                parallelism=self.config.parallelism,
            )
            records, missing = refreshed.records, refreshed.missing
        return build_apply_plan(
            graph,
            records,
            schema_for=self.registry.schema_for,
            missing=missing,
            state_serial=snapshot.serial,
        )

    async def _plan_and_execute(
        self, graph: ResourceGraph, *, refresh: bool
    ) -> tuple[Plan, RunReport]:
        plan = await self._plan(graph, refresh=refresh)
        return plan, await self._execute(plan)

    async def _execute(self, plan: Plan) -> RunReport:
        timeout = self.config.run_timeout_seconds
        deadline = time.monotonic() + timeout if timeout is not None else None
        log.info(
            "Starting %s run: %d action(s), %d change(s), parallelism=%d",
            plan.operation,
            len(plan.actions),
            len(plan.changes),
            self.config.parallelism,
        )
        with self.state.begin_transaction() as transaction:
            executor = PlanExecutor(
                registry=self.registry,
                transaction=transaction,
                retry=self.config.retry,
                parallelism=self.config.parallelism,
                sleep=self.sleep,
                cancel_event=self._cancel,
                deadline=deadline,
                poll_interval=self.config.poll_interval_seconds,
            )
            report = await executor.run(plan)
            forced: dict[ResourceAddress, tuple[str, ...]] = {}
            while plan.graph is not None and not report.cancelled:
                rejected = {
                    address: attributes
                    for address, attributes in report.rejected_updates().items()
                    if address not in forced
                }
                if not rejected:
                    break
                forced.update(rejected)
                follow_up = self._replan(plan, plan.graph, report, transaction, forced)
                log.info(
                    "Replacing %d resource(s) whose update was refused: %d follow-up change(s)",
                    len(rejected),
                    len(follow_up.changes),
                )
                report = report.merged(await executor.run(follow_up))
            transaction.commit()
        report.committed = True
        log.info(
            f"Finished {plan.operation} run: applied={len(report.changed)}, "
            f"failed={len(report.failed)}, skipped={len(report.skipped)}, "
            f"cancelled={report.cancelled}"
        )
        return report

    def _replan(
        self,
        plan: Plan,
        graph: ResourceGraph,
        report: RunReport,
        transaction: StateTransaction,
        forced: Mapping[ResourceAddress, tuple[str, ...]],
    ) -> Plan:
        """Plan the replacement of refused updates against what this run already did."""

        records = dict(plan.baseline)
        missing = dict(plan.missing)
        for result in report.succeeded:
            if result.action is ActionKind.NOOP:
                continue
            missing.pop(result.address, None)
            record = transaction.get(result.address)
            if record is None:
                records.pop(result.address, None)
            else:
                records[result.address] = record
        return build_apply_plan(
            graph,
            records,
            schema_for=self.registry.schema_for,
            missing=missing,
            force_replace=forced,
            state_serial=plan.state_serial,
        )
