"""Structured execution results.

Provider failures are carried as values through the executor rather than raised
past it, so a partially applied run still yields a complete per-resource report.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import StrEnum
from typing import TYPE_CHECKING

from terrarium.domain.model import ActionKind, ResourceStatus

if TYPE_CHECKING:
    from terrarium.domain.model import PlanOperation, ResourceAddress


class StepKind(StrEnum):
    """Half of an action: creates/updates apply, deletes (and replace halves) delete."""

    APPLY = "apply"
    DELETE = "delete"


@dataclass(frozen=True, slots=True)
class StepKey:
    address: ResourceAddress
    kind: StepKind

    def __str__(self) -> str:
        return f"{self.kind} {self.address}"


@dataclass(slots=True, kw_only=True)
class StepOutcome:
    key: StepKey
    status: ResourceStatus
    attempts: int = 0
    error: str | None = None
    reason: str | None = None
    requires_replacement: tuple[str, ...] | None = None


@dataclass(frozen=True, slots=True, kw_only=True)
class ResourceResult:
    """Final status of one resource after a run."""

    address: ResourceAddress
    action: ActionKind
    status: ResourceStatus
    attempts: int = 0
    error: str | None = None
    reason: str | None = None
    requires_replacement: tuple[str, ...] | None = None


@dataclass(slots=True)
class RunReport:
    operation: PlanOperation
    results: tuple[ResourceResult, ...] = ()
    cancelled: bool = False
    committed: bool = False

    def _with_status(self, status: ResourceStatus) -> tuple[ResourceResult, ...]:
        return tuple(result for result in self.results if result.status is status)

    @property
    def succeeded(self) -> tuple[ResourceResult, ...]:
        return self._with_status(ResourceStatus.APPLIED)

    @property
    def failed(self) -> tuple[ResourceResult, ...]:
        return self._with_status(ResourceStatus.FAILED)

    @property
    def skipped(self) -> tuple[ResourceResult, ...]:
        return self._with_status(ResourceStatus.SKIPPED)

    @property
    def ok(self) -> bool:
        return all(result.status is ResourceStatus.APPLIED for result in self.results)

    @property
    def changed(self) -> tuple[ResourceResult, ...]:
        return tuple(
            result
            for result in self.succeeded
            if result.action is not ActionKind.NOOP
        )

    def result_for(self, address: ResourceAddress) -> ResourceResult | None:
        for result in self.results:
            if result.address == address:
                return result
        return None

    def rejected_updates(self) -> dict[ResourceAddress, tuple[str, ...]]:
        """Updates the provider refused in place, with the attributes it named."""

        return {
            result.address: result.requires_replacement
            for result in self.results
            if result.requires_replacement is not None
        }

    def merged(self, follow_up: RunReport) -> RunReport:
        """Combine with a follow-up pass over the same transaction.

        Resources the follow-up acted on take its result (attempts add up); the
        rest keep the result from this pass.
        """

        later = {
            result.address: result
            for result in follow_up.results
            if result.action is not ActionKind.NOOP
        }
        results: list[ResourceResult] = []
        for result in self.results:
            replacement = later.pop(result.address, None)
            if replacement is None:
                results.append(result)
            else:
                results.append(
                    replace(replacement, attempts=result.attempts + replacement.attempts)
                )
        results.extend(later.values())
        return RunReport(
            operation=self.operation,
            results=tuple(results),
            cancelled=self.cancelled or follow_up.cancelled,
        )
