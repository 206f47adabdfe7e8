"""Execute a plan against provider adapters.

Responsibilities of this stage:
- split actions into apply/delete steps and order them
  (applies follow their dependencies, old dependents are deleted before what
  they used, the create half of a replace follows its delete half)
- run independent steps concurrently, bounded by ``parallelism``
- retry transient provider errors with exponential backoff
- record successful steps in the state transaction (never commit here)
- mark dependents of a failed step as skipped; keep independent work going
- stop dispatching on cancellation while letting in-flight steps finish
- report updates the provider refuses in place, for the engine to replace
"""

from __future__ import annotations

import asyncio
import heapq
import time
from collections import defaultdict
from dataclasses import dataclass, field
from logging import getLogger
from typing import TYPE_CHECKING

from terrarium.domain.errors import ProviderError, ResourceNotFoundError, TerrariumError
from terrarium.domain.errors import UnsupportedUpdateError
from terrarium.domain.model import ActionKind, ResourceStatus

from .contracts import ResourceResult, RunReport, StepKey, StepKind, StepOutcome
from .references import UNKNOWN, contains_unknown, resolve_attributes

if TYPE_CHECKING:
    import threading
    from collections.abc import Awaitable, Callable, Mapping

    from terrarium.config.engine import RetryPolicy
    from terrarium.domain.model import ResourceAddress
    from terrarium.domain.ports import ProviderAdapter, ProviderRegistry, StateTransaction

    from .plan import Plan, PlannedAction
    from .references import Reference

log = getLogger(__name__)

type Sleep = Callable[[float], Awaitable[None]]


@dataclass(slots=True)
class Attempts:
    count: int = 0


async def call_with_retry[T](
    call: Callable[[], Awaitable[T]],
    *,
    policy: RetryPolicy,
    sleep: Sleep,
    label: str,
    attempts: Attempts | None = None,
) -> T:
    """Await ``call``; retry transient ``ProviderError`` up to ``policy.attempts`` times.

    Every call gets the full budget. ``attempts`` only accumulates the total across
    calls for reporting.
    """

    attempt = 0
    while True:
        attempt += 1
        if attempts is not None:
            attempts.count += 1
        try:
            return await call()
        except ProviderError as exc:
            if not exc.transient or attempt >= policy.attempts:
                raise
            delay = policy.delay(attempt)
            log.warning(
                "%s: transient error on attempt %d/%d: %s; retrying in %.2fs",
                label,
                attempt,
                policy.attempts,
                exc,
                delay,
            )
            await sleep(delay)


@dataclass(slots=True)
class _Step:
    key: StepKey
    action: PlannedAction
    order: int
    waits_for: set[StepKey] = field(default_factory=set["StepKey"])
    dependents: set[StepKey] = field(default_factory=set["StepKey"])


def build_steps(plan: Plan) -> dict[StepKey, _Step]:
    """Expand plan actions into ordered steps with wait edges.

    Applies wait for the applies of their configured dependencies and for their
    own delete half. Deletes wait for the deletes of whatever recorded state says
    depends on them, so an old dependent is gone before what it used.
    """

    steps: dict[StepKey, _Step] = {}
    for action in plan.actions:
        if action.kind in {ActionKind.DELETE, ActionKind.REPLACE}:
            key = StepKey(action.address, StepKind.DELETE)
            steps[key] = _Step(key=key, action=action, order=len(steps))
        if action.kind in {ActionKind.CREATE, ActionKind.UPDATE, ActionKind.REPLACE}:
            key = StepKey(action.address, StepKind.APPLY)
            steps[key] = _Step(key=key, action=action, order=len(steps))

    recorded_dependents: dict[ResourceAddress, list[ResourceAddress]] = defaultdict(list)
    for action in plan.actions:
        for dependency in action.recorded_dependencies:
            recorded_dependents[dependency].append(action.address)

    def link(before: StepKey, after: StepKey) -> None:
        if before in steps:
            steps[after].waits_for.add(before)
            steps[before].dependents.add(after)

    for key, step in steps.items():
        if key.kind is StepKind.APPLY:
            for dependency in step.action.dependencies:
                link(StepKey(dependency, StepKind.APPLY), key)
            link(StepKey(key.address, StepKind.DELETE), key)
        else:
            for dependent in recorded_dependents.get(key.address, ()):
                link(StepKey(dependent, StepKind.DELETE), key)
    return steps


class PlanExecutor:
    """Run one plan's steps with a bounded pool of concurrent workers."""

    def __init__(
        self,
        *,
        registry: ProviderRegistry,
        transaction: StateTransaction,
        retry: RetryPolicy,
        parallelism: int = 10,
        sleep: Sleep = asyncio.sleep,
        cancel_event: threading.Event | None = None,
        deadline: float | None = None,
        poll_interval: float = 0.1,
    ) -> None:
        self._registry = registry
        self._transaction = transaction
        self._retry = retry
        self._parallelism = parallelism
        self._sleep = sleep
        self._cancel_event = cancel_event
        self._deadline = deadline
        self._poll_interval = poll_interval

    async def run(self, plan: Plan) -> RunReport:
        steps = build_steps(plan)
        outcomes: dict[StepKey, StepOutcome] = {}
        remaining = {key: len(step.waits_for) for key, step in steps.items()}
        ready = [(step.order, key) for key, step in steps.items() if not step.waits_for]
        heapq.heapify(ready)
        running: dict[asyncio.Task[StepOutcome], StepKey] = {}
        cancelled = False

        while ready or running:
            if not cancelled and self._should_stop():
                cancelled = True
                log.warning(
                    "Run cancelled; waiting for %d in-flight action(s) to finish", len(running)
                )
            while ready and not cancelled and len(running) < self._parallelism:
                _order, key = heapq.heappop(ready)
                if key in outcomes:
                    continue
                task = asyncio.create_task(self._run_step(plan, steps[key]), name=str(key))
                running[task] = key
            if not running:
                break
            done, _pending = await asyncio.wait(
                running,
                timeout=self._poll_interval,
                return_when=asyncio.FIRST_COMPLETED,
            )
            for task in done:
                key = running.pop(task)
                outcome = task.result()
                outcomes[key] = outcome
                if outcome.status is ResourceStatus.APPLIED:
                    for dependent in steps[key].dependents:
                        remaining[dependent] -= 1
                        if remaining[dependent] == 0 and dependent not in outcomes:
                            heapq.heappush(ready, (steps[dependent].order, dependent))
                else:
                    _skip_dependents(steps, key, outcomes)

        for key in steps:
            if key not in outcomes:
                outcomes[key] = StepOutcome(
                    key=key, status=ResourceStatus.SKIPPED, reason="cancelled before start"
                )

        return RunReport(
            operation=plan.operation,
            results=_collect_results(plan, outcomes),
            cancelled=cancelled,
        )

    def _should_stop(self) -> bool:
        if self._cancel_event is not None and self._cancel_event.is_set():
            return True
        return self._deadline is not None and time.monotonic() >= self._deadline

    async def _run_step(self, plan: Plan, step: _Step) -> StepOutcome:
        key = step.key
        attempts = Attempts()
        log.info("%s: %s started", key.address, _verb(step))
        try:
            if key.kind is StepKind.DELETE:
                await self._delete(step.action, attempts)
            else:
                await self._apply(plan, step.action, attempts)
        except UnsupportedUpdateError as exc:
            log.warning("%s: %s; planning a replacement", key.address, exc)
            return StepOutcome(
                key=key,
                status=ResourceStatus.FAILED,
                attempts=attempts.count,
                error=str(exc),
                requires_replacement=exc.attributes,
            )
        except TerrariumError as exc:
            log.error(
                "%s: %s failed after %d attempt(s): %s",
                key.address,
                _verb(step),
                attempts.count,
                exc,
            )
            return StepOutcome(
                key=key,
                status=ResourceStatus.FAILED,
                attempts=attempts.count,
                error=str(exc),
            )
        log.info("%s: %s complete", key.address, _verb(step))
        return StepOutcome(key=key, status=ResourceStatus.APPLIED, attempts=attempts.count)

    async def _delete(self, action: PlannedAction, attempts: Attempts) -> None:
        adapter = self._registry.get(action.resource_type)
        record = self._transaction.get(action.address)
        provider_id = record.provider_id if record is not None else action.provider_id
        if provider_id is not None:
            try:
                await call_with_retry(
                    lambda: adapter.delete(provider_id),
                    policy=self._retry,
                    sleep=self._sleep,
                    label=str(action.address),
                    attempts=attempts,
                )
            except ResourceNotFoundError:
                log.info("%s: already deleted (%s)", action.address, provider_id)
        self._transaction.remove(action.address)

    async def _apply(self, plan: Plan, action: PlannedAction, attempts: Attempts) -> None:
        """Create or update ``action``'s resource.

        A refused update raises ``UnsupportedUpdateError``; the engine plans the
        replacement together with the resource's dependents.
        """

        adapter = self._registry.get(action.resource_type)
        desired = resolve_attributes(
            action.desired or {}, lambda reference: self._lookup(plan, reference)
        )
        unresolved = sorted(name for name, value in desired.items() if contains_unknown(value))
        if unresolved:
            raise ProviderError(
                f"{action.address}: unresolved references in {', '.join(unresolved)}"
            )

        record = self._transaction.get(action.address)
        provider_id = record.provider_id if record is not None else action.provider_id
        if action.kind is not ActionKind.UPDATE or provider_id is None:
            await self._create(adapter, action, desired, attempts)
            return
        actual = await call_with_retry(
            lambda: adapter.update(provider_id, desired),
            policy=self._retry,
            sleep=self._sleep,
            label=str(action.address),
            attempts=attempts,
        )
        self._record(action, provider_id, desired, actual)

    async def _create(
        self,
        adapter: ProviderAdapter,
        action: PlannedAction,
        desired: Mapping[str, object],
        attempts: Attempts,
    ) -> None:
        if self._transaction.recorded(action.address):
            log.debug("%s: already created in this run", action.address)
            return
        provider_id, actual = await call_with_retry(
            lambda: adapter.create(desired),
            policy=self._retry,
            sleep=self._sleep,
            label=str(action.address),
            attempts=attempts,
        )
        self._record(action, provider_id, desired, actual)

    def _record(
        self,
        action: PlannedAction,
        provider_id: str,
        desired: Mapping[str, object],
        actual: Mapping[str, object],
    ) -> None:
        self._transaction.record(
            action.address,
            resource_type=action.resource_type,
            provider_id=provider_id,
            attributes={**desired, **actual, "id": provider_id},
            dependencies=action.dependencies,
        )

    def _lookup(self, plan: Plan, reference: Reference) -> object:
        if reference.splat:
            targets = plan.instances_of(reference.base)
            return [self._recorded_value(target, reference.attribute) for target in targets]
        return self._recorded_value(reference.address, reference.attribute)

    def _recorded_value(self, address: ResourceAddress, attribute: str) -> object:
        record = self._transaction.get(address)
        if record is None:
            return UNKNOWN
        return record.attributes.get(attribute, UNKNOWN)


def _verb(step: _Step) -> str:
    if step.key.kind is StepKind.DELETE:
        return "delete"
    return str(step.action.kind)


def _skip_dependents(
    steps: Mapping[StepKey, _Step],
    failed: StepKey,
    outcomes: dict[StepKey, StepOutcome],
) -> None:
    queue = list(steps[failed].dependents)
    while queue:
        key = queue.pop()
        if key in outcomes:
            continue
        outcomes[key] = StepOutcome(
            key=key,
            status=ResourceStatus.SKIPPED,
            reason=f"dependency {failed.address} did not complete",
        )
        log.warning("%s: skipped because %s did not complete", key.address, failed.address)
        queue.extend(steps[key].dependents)


def _collect_results(
    plan: Plan,
    outcomes: Mapping[StepKey, StepOutcome],
) -> tuple[ResourceResult, ...]:
    results: list[ResourceResult] = []
    for action in plan.actions:
        step_outcomes = [
            outcomes[key]
            for key in (
                StepKey(action.address, StepKind.DELETE),
                StepKey(action.address, StepKind.APPLY),
            )
            if key in outcomes
        ]
        if not step_outcomes:
            results.append(
                ResourceResult(
                    address=action.address,
                    action=action.kind,
                    status=ResourceStatus.APPLIED,
                )
            )
            continue
        failed = next((o for o in step_outcomes if o.status is ResourceStatus.FAILED), None)
        skipped = next((o for o in step_outcomes if o.status is ResourceStatus.SKIPPED), None)
        if failed is not None:
            status, error, reason = ResourceStatus.FAILED, failed.error, None
        elif skipped is not None:
            status, error, reason = ResourceStatus.SKIPPED, None, skipped.reason
        else:
            status, error, reason = ResourceStatus.APPLIED, None, None
        results.append(
            ResourceResult(
                address=action.address,
                action=action.kind,
                status=status,
                attempts=sum(outcome.attempts for outcome in step_outcomes),
                error=error,
                reason=reason,
                requires_replacement=failed.requires_replacement if failed else None,
            )
        )
    return tuple(results)
