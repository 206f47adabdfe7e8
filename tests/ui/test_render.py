from __future__ import annotations

from terrarium.domain.model import ActionKind, PlanOperation, ResourceAddress, ResourceStatus
from terrarium.domain.reconciliation import UNKNOWN, Plan, PlannedAction, ResourceResult, RunReport
from terrarium.ui.render import format_outputs, format_plan, format_report

INSTANCE = ResourceAddress("compute_instance", "web")
SUBNET = ResourceAddress("subnet", "public", 0)


def test_format_plan_lists_changes_with_reasons() -> None:
    plan = Plan(
        operation=PlanOperation.APPLY,
        actions=(
            PlannedAction(
                address=SUBNET,
                kind=ActionKind.NOOP,
                resource_type="subnet",
            ),
            PlannedAction(
                address=INSTANCE,
                kind=ActionKind.REPLACE,
                resource_type="compute_instance",
                replace_attributes=("image",),
                changed_attributes=("image", "tags"),
            ),
        ),
    )

    assert format_plan(plan).splitlines() == [
        "-/+ compute_instance.web replace (forces replacement: image)",
        "Plan: 0 to create, 0 to update, 1 to replace, 0 to delete.",
    ]


def test_format_report_hides_untouched_resources() -> None:
    report = RunReport(
        operation=PlanOperation.APPLY,
        results=(
            ResourceResult(address=SUBNET, action=ActionKind.NOOP, status=ResourceStatus.APPLIED),
            ResourceResult(
                address=INSTANCE,
                action=ActionKind.CREATE,
                status=ResourceStatus.APPLIED,
                attempts=2,
            ),
        ),
        cancelled=True,
    )

    assert format_report(report).splitlines() == [
        "compute_instance.web: create applied after 2 attempts",
        "Apply finished: 1 changed, 0 failed, 0 skipped (cancelled)",
    ]


def test_format_outputs_marks_unknown_values() -> None:
    rendered = format_outputs({"ip": UNKNOWN, "ids": ["a", "b"], "name": "web"})

    assert rendered.splitlines() == [
        "ip = (known after apply)",
        'ids = ["a", "b"]',
        "name = web",
    ]
