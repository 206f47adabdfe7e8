"""Plan types and the diff that produces them.

The plan is the contract between planning (read-only: graph + recorded state)
and execution (provider calls + state transaction). It is built fresh for every
run and discarded afterwards.

Diff rules per node, in dependency order:
- no record -> CREATE
- configured attribute differs on an immutable field -> REPLACE
- configured attribute differs on mutable fields only -> UPDATE
- otherwise -> NOOP

Only attributes present in the configuration are compared; provider defaults and
computed outputs in the record are ignored. A reference to a resource that is
itself being created or replaced is unknown at plan time and counts as a change.
Records that no configured node claims any more are deleted after everything
else, in reverse dependency order.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from logging import getLogger
from typing import TYPE_CHECKING

from terrarium.domain.model import ActionKind, PlanOperation

from .references import UNKNOWN, contains_unknown, resolve_attributes
from .resolve import order_state_records, reference_targets, topological_order

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

    from terrarium.domain.model import ResourceAddress, StateRecord
    from terrarium.domain.ports import ResourceSchema

    from .graph import ResourceGraph
    from .references import Reference

log = getLogger(__name__)


@dataclass(slots=True, frozen=True, kw_only=True)
class PlannedAction:
    """One resource's action within a plan.

    ``desired`` keeps unresolved reference expressions for execution; ``after`` is
    the preview with references resolved where already known. ``dependencies``
    come from the configuration, ``recorded_dependencies`` from the state record
    and order deletes.
    """

    address: ResourceAddress
    kind: ActionKind
    resource_type: str
    provider_id: str | None = None
    before: Mapping[str, object] | None = None
    desired: Mapping[str, object] | None = None
    after: Mapping[str, object] | None = None
    changed_attributes: tuple[str, ...] = ()
    replace_attributes: tuple[str, ...] = ()
    dependencies: tuple[ResourceAddress, ...] = ()
    recorded_dependencies: tuple[ResourceAddress, ...] = ()
    reason: str | None = None

    @property
    def is_change(self) -> bool:
        return self.kind is not ActionKind.NOOP


@dataclass(slots=True)
class Plan:
    """Ordered actions for one run, one per resource.

    Apply plans keep the graph and the state view they were diffed against so a
    follow-up pass can be planned in the same run.
    """

    operation: PlanOperation
    actions: tuple[PlannedAction, ...] = ()
    state_serial: int | None = None
    graph: ResourceGraph | None = field(default=None, repr=False, compare=False)
    baseline: Mapping[ResourceAddress, StateRecord] = field(
        default_factory=dict["ResourceAddress", "StateRecord"], repr=False, compare=False
    )
    missing: Mapping[ResourceAddress, StateRecord] = field(
        default_factory=dict["ResourceAddress", "StateRecord"], repr=False, compare=False
    )
    _by_address: dict[ResourceAddress, PlannedAction] = field(
        init=False, repr=False, default_factory=dict["ResourceAddress", "PlannedAction"]
    )

    def __post_init__(self) -> None:
        self._by_address = {action.address: action for action in self.actions}
        if len(self._by_address) != len(self.actions):
            raise ValueError("Plan contains more than one action for the same resource")

    @property
    def changes(self) -> tuple[PlannedAction, ...]:
        return tuple(action for action in self.actions if action.is_change)

    @property
    def is_empty(self) -> bool:
        return not self.changes

    def for_address(self, address: ResourceAddress) -> PlannedAction | None:
        return self._by_address.get(address)

    def summary(self) -> dict[ActionKind, int]:
        counts = Counter(action.kind for action in self.actions)
        return {kind: counts.get(kind, 0) for kind in ActionKind}

    def instances_of(self, base: ResourceAddress) -> tuple[ResourceAddress, ...]:
        """Counted instances of ``base`` in this plan, by index."""

        instances = [
            action.address
            for action in self.actions
            if action.address.base == base and action.address.index is not None
        ]
        return tuple(sorted(instances, key=lambda address: address.index or 0))


type SchemaLookup = Callable[[str], ResourceSchema]


def build_apply_plan(
    graph: ResourceGraph,
    records: Mapping[ResourceAddress, StateRecord],
    *,
    schema_for: SchemaLookup,
    missing: Mapping[ResourceAddress, StateRecord] | None = None,
    force_replace: Mapping[ResourceAddress, tuple[str, ...]] | None = None,
    state_serial: int | None = None,
) -> Plan:
    """Diff ``graph`` against ``records`` (the refreshed planning view).

    ``missing`` holds records whose live resource vanished during refresh. Nodes
    that map to one are recreated; orphaned ones still get a DELETE so that the
    stale record is dropped (the provider delete is idempotent).

    ``force_replace`` names resources whose provider refused an in-place update;
    they are replaced even when only mutable attributes differ.
    """

    gone = missing or {}
    forced = force_replace or {}
    planned_values: dict[ResourceAddress, Mapping[str, object]] = {}
    pending: set[ResourceAddress] = set()

    def lookup(reference: Reference) -> object:
        targets = reference_targets(reference, graph.instances_of)
        values = [planned_value(target, reference.attribute) for target in targets]
        if reference.splat:
            return values
        return values[0]

    def planned_value(target: ResourceAddress, attribute: str) -> object:
        planned = planned_values.get(target)
        if planned is not None and attribute in planned:
            return planned[attribute]
        if target in pending:
            return UNKNOWN
        record = records.get(target)
        if record is None:
            return UNKNOWN
        return record.attributes.get(attribute, UNKNOWN)

    actions: list[PlannedAction] = []
    for address in topological_order(graph):
        node = graph.node_for(address)
        schema = schema_for(node.type)
        after = resolve_attributes(node.attributes, lookup)
        record = records.get(address)
        if record is None:
            action = PlannedAction(
                address=address,
                kind=ActionKind.CREATE,
                resource_type=node.type,
                before=gone[address].attributes if address in gone else None,
                desired=node.attributes,
                after=after,
                changed_attributes=tuple(after),
                dependencies=node.dependencies,
                reason="missing from provider" if address in gone else None,
            )
            pending.add(address)
            planned_values[address] = _known_only(after)
        else:
            changed = _changed_attributes(after, record.attributes)
            replace = tuple(name for name in changed if not schema.is_mutable(name))
            if address in forced:
                replace = forced[address] or changed or replace
            if replace:
                kind = ActionKind.REPLACE
                pending.add(address)
                planned_values[address] = _known_only(after)
            elif changed:
                kind = ActionKind.UPDATE
                planned_values[address] = {**record.attributes, **_known_only(after)}
            else:
                kind = ActionKind.NOOP
            action = PlannedAction(
                address=address,
                kind=kind,
                resource_type=node.type,
                provider_id=record.provider_id,
                before=record.attributes,
                desired=node.attributes,
                after=after,
                changed_attributes=changed,
                replace_attributes=replace,
                dependencies=node.dependencies,
                recorded_dependencies=record.dependencies,
                reason="provider refused in-place update" if address in forced else None,
            )
        actions.append(action)

    orphans = {
        address: record
        for address, record in {**gone, **records}.items()
        if address not in graph
    }
    for address in reversed(order_state_records(orphans)):
        record = orphans[address]
        actions.append(
            PlannedAction(
                address=address,
                kind=ActionKind.DELETE,
                resource_type=record.resource_type,
                provider_id=record.provider_id,
                before=record.attributes,
                dependencies=record.dependencies,
                recorded_dependencies=record.dependencies,
                reason="already gone" if address in gone else "no longer configured",
            )
        )

    plan = Plan(
        operation=PlanOperation.APPLY,
        actions=tuple(actions),
        state_serial=state_serial,
        graph=graph,
        baseline=dict(records),
        missing=dict(gone),
    )
    log.debug("Apply plan: %s", _format_summary(plan))
    return plan


def build_destroy_plan(
    records: Mapping[ResourceAddress, StateRecord],
    *,
    graph: ResourceGraph | None = None,
    state_serial: int | None = None,
) -> Plan:
    """Delete every recorded resource in the exact reverse of its apply order."""

    actions = tuple(
        PlannedAction(
            address=address,
            kind=ActionKind.DELETE,
            resource_type=records[address].resource_type,
            provider_id=records[address].provider_id,
            before=records[address].attributes,
            dependencies=records[address].dependencies,
            recorded_dependencies=records[address].dependencies,
        )
        for address in reversed(order_state_records(records, graph=graph))
    )
    plan = Plan(operation=PlanOperation.DESTROY, actions=actions, state_serial=state_serial)
    log.debug("Destroy plan: %s", _format_summary(plan))
    return plan


def _changed_attributes(
    after: Mapping[str, object],
    before: Mapping[str, object],
) -> tuple[str, ...]:
    changed: list[str] = []
    for name, value in after.items():
        if contains_unknown(value):
            changed.append(name)
        elif name not in before or _normalize(before[name]) != _normalize(value):
            changed.append(name)
    return tuple(changed)


def _normalize(value: object) -> object:
    if isinstance(value, list | tuple):
        return [_normalize(item) for item in value]
    if isinstance(value, dict):
        return {key: _normalize(item) for key, item in value.items()}
    return value


def _known_only(values: Mapping[str, object]) -> dict[str, object]:
    return {name: value for name, value in values.items() if not contains_unknown(value)}


def _format_summary(plan: Plan) -> str:
    return ", ".join(f"{kind}={count}" for kind, count in plan.summary().items() if count)
