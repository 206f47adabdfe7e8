"""Plain-text rendering of plans, run reports and outputs."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

from terrarium.domain.model import ActionKind, ResourceStatus
from terrarium.domain.reconciliation.references import contains_unknown

if TYPE_CHECKING:
    from collections.abc import Mapping

    from terrarium.domain.reconciliation import Plan, PlannedAction, RunReport

_SYMBOLS: dict[ActionKind, str] = {
    ActionKind.CREATE: "+",
    ActionKind.UPDATE: "~",
    ActionKind.REPLACE: "-/+",
    ActionKind.DELETE: "-",
    ActionKind.NOOP: " ",
}


def format_plan(plan: Plan) -> str:
    if plan.is_empty:
        return "No changes. Recorded state matches the configuration."
    lines = [_format_action(action) for action in plan.changes]
    counts = plan.summary()
    lines.append(
        f"Plan: {counts[ActionKind.CREATE]} to create, {counts[ActionKind.UPDATE]} to update, "
        f"{counts[ActionKind.REPLACE]} to replace, {counts[ActionKind.DELETE]} to delete."
    )
    return "\n".join(lines)


def _format_action(action: PlannedAction) -> str:
    detail: list[str] = []
    if action.kind is ActionKind.REPLACE and action.replace_attributes:
        detail.append("forces replacement: " + ", ".join(action.replace_attributes))
    elif action.kind is ActionKind.UPDATE:
        detail.append(", ".join(action.changed_attributes))
    if action.reason:
        detail.append(action.reason)
    suffix = f" ({'; '.join(detail)})" if detail else ""
    return f"{_SYMBOLS[action.kind]:>3} {action.address} {action.kind}{suffix}"


def format_report(report: RunReport) -> str:
    lines: list[str] = []
    for result in report.results:
        if result.status is ResourceStatus.APPLIED and result.action is ActionKind.NOOP:
            continue
        line = f"{result.address}: {result.action} {result.status}"
        if result.attempts > 1:
            line += f" after {result.attempts} attempts"
        if result.error:
            line += f": {result.error}"
        elif result.reason:
            line += f" ({result.reason})"
        lines.append(line)
    summary = (
        f"{report.operation.capitalize()} finished: {len(report.changed)} changed, "
        f"{len(report.failed)} failed, {len(report.skipped)} skipped"
    )
    if report.cancelled:
        summary += " (cancelled)"
    lines.append(summary)
    return "\n".join(lines)


def format_outputs(outputs: Mapping[str, object]) -> str:
    return "\n".join(f"{name} = {_format_value(value)}" for name, value in outputs.items())


def _format_value(value: object) -> str:
    if contains_unknown(value):
        return "(known after apply)"
    if isinstance(value, str):
        return value
    return json.dumps(value, sort_keys=True)
