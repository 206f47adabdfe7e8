"""Pydantic models describing control-plane API payloads."""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field


class ResourceState(StrEnum):
    PENDING = "pending"
    READY = "ready"
    FAILED = "failed"


class ResourcePayload(BaseModel):
    """A resource as returned by the API: ``id``, ``status`` and its attributes, flat."""

    model_config = ConfigDict(extra="allow")

    id: str = Field(min_length=1)
    status: ResourceState = ResourceState.READY
    status_message: str | None = None

    @property
    def attributes(self) -> dict[str, object]:
        extra = dict(self.model_extra or {})
        extra["id"] = self.id
        return extra


class ErrorPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    code: str | None = None
    message: str | None = None
    attributes: list[str] = Field(default_factory=list)
