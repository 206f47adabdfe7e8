"""Expand a configuration into a validated resource graph.

Stages, all read-only and all raising ``ConfigError`` on bad input:
1) resolve variables (declared defaults overridden by caller-supplied values)
2) evaluate each declaration's ``count`` and register the declaration
3) expand declarations into nodes, substituting ``var.*`` and ``count.index``
4) validate attributes against the provider schema for the resource type
5) validate references and ``depends_on``; infer dependency edges
6) order the graph once so cycles surface before any provider is called
"""

from __future__ import annotations

from logging import getLogger
from typing import TYPE_CHECKING

from terrarium.domain.errors import ConfigError
from terrarium.domain.model import ResourceAddress, ResourceNode

from .graph import ResourceGraph
from .references import (
    COUNT_INDEX,
    VARIABLE_PREFIX,
    iter_expressions,
    iter_references,
    keep_expression,
    render,
)
from .resolve import infer_dependencies, topological_order

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

    from terrarium.domain.model import Configuration, ResourceDeclaration, VariableDeclaration
    from terrarium.domain.ports import ResourceSchema

    from .references import Reference

log = getLogger(__name__)

type SchemaLookup = Callable[[str], ResourceSchema]


def build_graph(
    configuration: Configuration,
    *,
    schema_for: SchemaLookup,
    variables: Mapping[str, object] | None = None,
) -> ResourceGraph:
    """Build the resource graph for ``configuration``."""

    values = resolve_variables(configuration.variables, variables or {})
    graph = ResourceGraph()
    counts: dict[ResourceAddress, int | None] = {}

    for declaration in configuration.resources:
        base = ResourceAddress(declaration.type, declaration.name)
        if graph.declares(base):
            raise ConfigError(f"Resource {base} is declared more than once")
        schema_for(declaration.type)
        count = _evaluate_count(declaration, values)
        counts[base] = count
        graph.declare(base)

    position = 0
    pending: list[tuple[ResourceDeclaration, ResourceAddress, dict[str, object]]] = []
    for declaration in configuration.resources:
        base = ResourceAddress(declaration.type, declaration.name)
        for address in _instances(base, counts[base]):
            attributes = _expand_attributes(declaration.attributes, values, address)
            _validate_attributes(address, attributes, schema_for(address.type))
            pending.append((declaration, address, attributes))

    # splat targets must be known before any node is added to the graph
    expanded = {base: _instances(base, count) for base, count in counts.items()}

    def lookup_instances(base: ResourceAddress) -> tuple[ResourceAddress, ...]:
        return expanded.get(base, ())

    staged: list[ResourceNode] = []
    for declaration, address, attributes in pending:
        references = tuple(iter_references(attributes))
        for reference in references:
            _validate_reference(reference, counts, schema_for, owner=str(address))
        explicit = _explicit_dependencies(declaration.depends_on, counts, owner=address)
        dependencies = infer_dependencies(
            references,
            explicit,
            instances_of=lookup_instances,
        )
        staged.append(
            ResourceNode(
                address=address,
                attributes=attributes,
                dependencies=dependencies,
                explicit_dependencies=explicit,
                declaration_order=position,
            )
        )
        position += 1

    for node in staged:
        graph.add(node)

    for name, expression in configuration.outputs.items():
        rendered = _substitute(expression, values, index=None, owner=f"output {name}")
        if not isinstance(rendered, str):
            raise ConfigError(f"Output {name} must be a string expression")
        for reference in iter_references(rendered):
            _validate_reference(reference, counts, schema_for, owner=f"output {name}")
        graph.outputs[name] = rendered

    topological_order(graph)
    log.debug("Built resource graph with %d node(s)", len(graph))
    return graph


def resolve_variables(
    declarations: Mapping[str, VariableDeclaration],
    overrides: Mapping[str, object],
) -> dict[str, object]:
    unknown = sorted(set(overrides) - set(declarations))
    if unknown:
        raise ConfigError(f"Values given for undeclared variables: {', '.join(unknown)}")

    values: dict[str, object] = {}
    missing: list[str] = []
    for name, declaration in declarations.items():
        if name in overrides:
            values[name] = overrides[name]
        elif declaration.has_default:
            values[name] = declaration.default
        else:
            missing.append(name)
    if missing:
        raise ConfigError(f"No value for required variables: {', '.join(sorted(missing))}")
    return values


def _instances(base: ResourceAddress, count: int | None) -> tuple[ResourceAddress, ...]:
    if count is None:
        return (base,)
    return tuple(base.with_index(index) for index in range(count))


def _evaluate_count(declaration: ResourceDeclaration, values: Mapping[str, object]) -> int | None:
    raw = declaration.count
    if raw is None:
        return None
    owner = f"{declaration.type}.{declaration.name}"
    count = _substitute(raw, values, index=None, owner=owner) if isinstance(raw, str) else raw
    if isinstance(count, str) and count.strip().isdigit():
        count = int(count)
    if not isinstance(count, int) or isinstance(count, bool):
        raise ConfigError(f"count for {owner} must be an integer, got {count!r}")
    if count < 0:
        raise ConfigError(f"count for {owner} must not be negative, got {count}")
    return count


def _expand_attributes(
    attributes: Mapping[str, object],
    values: Mapping[str, object],
    address: ResourceAddress,
) -> dict[str, object]:
    return {
        name: _substitute(value, values, index=address.index, owner=str(address))
        for name, value in attributes.items()
    }


def _substitute(
    value: object,
    values: Mapping[str, object],
    *,
    index: int | None,
    owner: str,
) -> object:
    """Replace ``var.*`` and ``count.index``; leave resource references in place."""

    def resolve(expression: str) -> object:
        if expression == COUNT_INDEX:
            if index is None:
                raise ConfigError(f"{owner} uses count.index but has no count")
            return index
        if expression.startswith(VARIABLE_PREFIX):
            name = expression.removeprefix(VARIABLE_PREFIX)
            if name not in values:
                raise ConfigError(f"{owner} references undeclared variable {name!r}")
            return values[name]
        return keep_expression(expression)

    return render(value, resolve)


def _validate_attributes(
    address: ResourceAddress,
    attributes: Mapping[str, object],
    schema: ResourceSchema,
) -> None:
    for name, value in attributes.items():
        spec = schema.get(name)
        if spec is None:
            raise ConfigError(f"{address}: unknown attribute {name!r} for {schema.resource_type}")
        if spec.computed:
            raise ConfigError(f"{address}: attribute {name!r} is computed and cannot be set")
        if _is_expression(value):
            continue
        if not spec.accepts(value):
            raise ConfigError(
                f"{address}: attribute {name!r} expects {spec.type}, got {type(value).__name__}"
            )
    missing = [name for name in schema.required if name not in attributes]
    if missing:
        raise ConfigError(f"{address}: missing required attributes: {', '.join(missing)}")


def _is_expression(value: object) -> bool:
    return isinstance(value, str) and any(True for _ in iter_expressions(value))


def _validate_reference(
    reference: Reference,
    counts: Mapping[ResourceAddress, int | None],
    schema_for: SchemaLookup,
    *,
    owner: str,
) -> None:
    base = reference.base
    if base not in counts:
        raise ConfigError(f"{owner} references undeclared resource {base}")
    count = counts[base]
    if not reference.splat:
        if count is None and reference.index is not None:
            raise ConfigError(f"{owner}: {base} has no count and cannot be indexed")
        if count is not None and reference.index is None:
            raise ConfigError(f"{owner}: {base} uses count; reference an index or [*]")
        if count is not None and reference.index is not None and reference.index >= count:
            raise ConfigError(f"{owner}: index {reference.index} out of range for {base}")
    schema = schema_for(base.type)
    if reference.attribute not in schema:
        raise ConfigError(
            f"{owner} references unknown attribute {reference.attribute!r} of {base.type}"
        )


def _explicit_dependencies(
    depends_on: tuple[str, ...],
    counts: Mapping[ResourceAddress, int | None],
    *,
    owner: ResourceAddress,
) -> tuple[ResourceAddress, ...]:
    addresses: list[ResourceAddress] = []
    for entry in depends_on:
        try:
            target = ResourceAddress.parse(entry)
        except ValueError as exc:
            raise ConfigError(f"{owner}: {exc}") from exc
        base = target.base
        if base not in counts:
            raise ConfigError(f"{owner} depends on undeclared resource {base}")
        count = counts[base]
        if target.index is None:
            if count is None:
                addresses.append(base)
            else:
                addresses.extend(base.with_index(i) for i in range(count))
        elif count is None or target.index >= count:
            raise ConfigError(f"{owner} depends on missing instance {target}")
        else:
            addresses.append(target)
    return tuple(addresses)
