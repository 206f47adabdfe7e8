"""Domain enums (pure, dependency-light)."""

from __future__ import annotations

from enum import StrEnum


class ActionKind(StrEnum):
    CREATE = "create"
    UPDATE = "update"
    REPLACE = "replace"
    DELETE = "delete"
    NOOP = "noop"


class ResourceStatus(StrEnum):
    """Per-resource lifecycle within one run."""

    PLANNED = "planned"
    IN_PROGRESS = "in_progress"
    APPLIED = "applied"
    FAILED = "failed"
    SKIPPED = "skipped"


class ProviderErrorKind(StrEnum):
    TRANSIENT = "transient"
    PERMANENT = "permanent"


class PlanOperation(StrEnum):
    APPLY = "apply"
    DESTROY = "destroy"


class AttributeType(StrEnum):
    STRING = "string"
    INTEGER = "integer"
    BOOLEAN = "boolean"
    LIST = "list"
    MAP = "map"
