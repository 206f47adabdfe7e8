"""Read configuration documents from JSON, TOML or YAML files."""

from __future__ import annotations

import json
import tomllib
from logging import getLogger
from pathlib import Path
from typing import TYPE_CHECKING

import yaml
from pydantic import ValidationError

from terrarium.domain.errors import ConfigError
from terrarium.domain.model import Configuration, ResourceDeclaration, VariableDeclaration

from .schema import ConfigurationDocument

if TYPE_CHECKING:
    from collections.abc import Callable

log = getLogger(__name__)


def _parse_yaml(text: str) -> object:
    return yaml.safe_load(text)


_PARSERS: dict[str, Callable[[str], object]] = {
    ".json": json.loads,
    ".toml": tomllib.loads,
    ".yaml": _parse_yaml,
    ".yml": _parse_yaml,
}

SUPPORTED_SUFFIXES = tuple(_PARSERS)


def load_configuration(path: Path | str) -> Configuration:
    """Load and validate the configuration document at ``path``."""

    source = Path(path)
    parser = _PARSERS.get(source.suffix.lower())
    if parser is None:
        raise ConfigError(
            f"Unsupported configuration format {source.suffix!r} for {source}; "
            f"expected one of {', '.join(SUPPORTED_SUFFIXES)}"
        )
    try:
        text = source.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigError(f"Cannot read configuration {source}: {exc}") from exc
    try:
        raw = parser(text)
    except (json.JSONDecodeError, tomllib.TOMLDecodeError, yaml.YAMLError) as exc:
        raise ConfigError(f"Cannot parse configuration {source}: {exc}") from exc
    log.debug(f"Loaded configuration document {source}")
    return parse_configuration(raw, source=str(source))


def parse_configuration(raw: object, *, source: str = "<document>") -> Configuration:
    """Validate an already-decoded document and translate it into the domain model."""

    if raw is None:
        raw = {}
    try:
        document = ConfigurationDocument.model_validate(raw)
    except ValidationError as exc:
        raise ConfigError(f"Invalid configuration {source}:\n{exc}") from exc
    return Configuration(
        resources=tuple(
            ResourceDeclaration(
                type=entry.type,
                name=entry.name,
                attributes=entry.attributes,
                count=entry.count,
                depends_on=tuple(entry.depends_on),
            )
            for entry in document.resources
        ),
        variables={
            name: VariableDeclaration(
                name=name,
                default=entry.default,
                has_default=entry.has_default,
                description=entry.description,
            )
            for name, entry in document.variables.items()
        },
        outputs=document.output_expressions(),
    )
