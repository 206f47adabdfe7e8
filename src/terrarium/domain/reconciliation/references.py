"""Reference expressions embedded in attribute values.

Attribute values are literals, lists/maps of literals, or strings containing
``${...}`` expressions. Three expression forms exist:

- ``var.NAME``: configuration variable, substituted by the builder
- ``count.index``: index of a ``count``-expanded node, substituted by the builder
- ``type.name.attr`` / ``type.name[i].attr`` / ``type.name[*].attr``: reference to
  another resource's attribute, resolved against state while planning and executing

A string that consists of exactly one expression takes the expression's value
with its type intact; otherwise values are rendered into the surrounding text.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Final

from terrarium.domain.errors import ConfigError
from terrarium.domain.model import ResourceAddress

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator, Mapping

INTERPOLATION: Final[re.Pattern[str]] = re.compile(r"\$\{([^}]*)\}")
REFERENCE_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"^(?P<type>[a-z][a-z0-9_]*)\.(?P<name>[A-Za-z_][A-Za-z0-9_-]*)"
    r"(?:\[(?P<index>\d+|\*)\])?\.(?P<attribute>[a-z_][a-z0-9_]*)$"
)
VARIABLE_PREFIX: Final[str] = "var."
COUNT_INDEX: Final[str] = "count.index"
RESERVED_TYPES: Final[frozenset[str]] = frozenset({"var", "count"})


class Unknown:
    """Placeholder for a value that only exists after a pending action completes."""

    _instance: Unknown | None = None

    def __new__(cls) -> Unknown:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "(known after apply)"

    def __bool__(self) -> bool:
        return False


UNKNOWN: Final[Unknown] = Unknown()


@dataclass(frozen=True, slots=True)
class Reference:
    type: str
    name: str
    attribute: str
    index: int | None = None
    splat: bool = False

    @property
    def base(self) -> ResourceAddress:
        return ResourceAddress(self.type, self.name)

    @property
    def address(self) -> ResourceAddress:
        """Target node address; only meaningful for non-splat references."""

        return ResourceAddress(self.type, self.name, self.index)

    def __str__(self) -> str:
        if self.splat:
            return f"{self.type}.{self.name}[*].{self.attribute}"
        return f"{self.address}.{self.attribute}"


def parse_reference(expression: str) -> Reference:
    match = REFERENCE_PATTERN.match(expression.strip())
    if match is None or match.group("type") in RESERVED_TYPES:
        raise ConfigError(f"Invalid reference expression: ${{{expression}}}")
    index = match.group("index")
    return Reference(
        type=match.group("type"),
        name=match.group("name"),
        attribute=match.group("attribute"),
        index=int(index) if index not in {None, "*"} else None,
        splat=index == "*",
    )


def iter_expressions(value: object) -> Iterator[str]:
    """Yield every ``${...}`` expression body found in ``value`` (recursively)."""

    if isinstance(value, str):
        for match in INTERPOLATION.finditer(value):
            yield match.group(1).strip()
    elif isinstance(value, dict):
        for item in value.values():
            yield from iter_expressions(item)
    elif isinstance(value, list | tuple):
        for item in value:
            yield from iter_expressions(item)


def iter_references(value: object) -> Iterator[Reference]:
    for expression in iter_expressions(value):
        yield parse_reference(expression)


def render(value: object, resolve: Callable[[str], object]) -> object:
    """Replace expressions in ``value`` with ``resolve(expression)``.

    ``resolve`` may hand back the expression wrapped in ``${}`` again to leave it
    untouched. An ``UNKNOWN`` result inside surrounding text makes the whole string
    ``UNKNOWN``.
    """

    if isinstance(value, str):
        return _render_string(value, resolve)
    if isinstance(value, dict):
        return {key: render(item, resolve) for key, item in value.items()}
    if isinstance(value, list | tuple):
        return [render(item, resolve) for item in value]
    return value


def _render_string(text: str, resolve: Callable[[str], object]) -> object:
    whole = INTERPOLATION.fullmatch(text)
    if whole is not None:
        return resolve(whole.group(1).strip())

    unknown = False

    def substitute(match: re.Match[str]) -> str:
        nonlocal unknown
        resolved = resolve(match.group(1).strip())
        if resolved is UNKNOWN:
            unknown = True
            return ""
        return _stringify(resolved)

    rendered = INTERPOLATION.sub(substitute, text)
    return UNKNOWN if unknown else rendered


def _stringify(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return ""
    return str(value)


def keep_expression(expression: str) -> str:
    return f"${{{expression}}}"


def contains_unknown(value: object) -> bool:
    if value is UNKNOWN:
        return True
    if isinstance(value, dict):
        return any(contains_unknown(item) for item in value.values())
    if isinstance(value, list | tuple):
        return any(contains_unknown(item) for item in value)
    return False


type ReferenceLookup = Callable[[Reference], object]


def resolve_attributes(
    attributes: Mapping[str, object],
    lookup: ReferenceLookup,
) -> dict[str, object]:
    """Resolve every resource reference in ``attributes`` through ``lookup``."""

    def resolve(expression: str) -> object:
        return lookup(parse_reference(expression))

    return {name: render(value, resolve) for name, value in attributes.items()}
