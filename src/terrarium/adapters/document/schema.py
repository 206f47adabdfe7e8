"""Pydantic models describing the configuration document."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, StrictInt, field_validator

_TYPE_PATTERN = r"^[a-z][a-z0-9_]*$"
_NAME_PATTERN = r"^[A-Za-z_][A-Za-z0-9_-]*$"


class DocumentModel(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)


class VariableEntry(DocumentModel):
    default: Any = None
    description: str | None = None

    @property
    def has_default(self) -> bool:
        return "default" in self.model_fields_set


class OutputEntry(DocumentModel):
    value: str
    description: str | None = None


class ResourceEntry(DocumentModel):
    type: str = Field(pattern=_TYPE_PATTERN)
    name: str = Field(pattern=_NAME_PATTERN)
    attributes: dict[str, Any] = Field(default_factory=dict)
    count: StrictInt | str | None = None
    depends_on: list[str] = Field(default_factory=list)


class ConfigurationDocument(DocumentModel):
    variables: dict[str, VariableEntry] = Field(default_factory=dict)
    resources: list[ResourceEntry] = Field(default_factory=list)
    outputs: dict[str, str | OutputEntry] = Field(default_factory=dict)

    @field_validator("variables", "outputs", mode="before")
    @classmethod
    def _none_to_empty(cls, value: object) -> object:
        return {} if value is None else value

    @field_validator("resources", mode="before")
    @classmethod
    def _none_to_list(cls, value: object) -> object:
        return [] if value is None else value

    def output_expressions(self) -> dict[str, str]:
        return {
            name: entry if isinstance(entry, str) else entry.value
            for name, entry in self.outputs.items()
        }
