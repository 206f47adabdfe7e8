"""Stable resource identities used as arena keys throughout a run."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Final

_IDENTIFIER: Final[str] = r"[A-Za-z_][A-Za-z0-9_-]*"
_TYPE: Final[str] = r"[a-z][a-z0-9_]*"
ADDRESS_PATTERN: Final[re.Pattern[str]] = re.compile(
    rf"^(?P<type>{_TYPE})\.(?P<name>{_IDENTIFIER})(?:\[(?P<index>\d+)\])?$"
)


@dataclass(frozen=True, slots=True)
class ResourceAddress:
    """Identity of a resource node: ``type.name`` or ``type.name[index]``."""

    type: str
    name: str
    index: int | None = None

    def __str__(self) -> str:
        if self.index is None:
            return f"{self.type}.{self.name}"
        return f"{self.type}.{self.name}[{self.index}]"

    @property
    def base(self) -> ResourceAddress:
        """Address of the declaration this node was expanded from."""

        if self.index is None:
            return self
        return ResourceAddress(self.type, self.name)

    def with_index(self, index: int) -> ResourceAddress:
        return ResourceAddress(self.type, self.name, index)

    @classmethod
    def parse(cls, text: str) -> ResourceAddress:
        match = ADDRESS_PATTERN.match(text.strip())
        if match is None:
            raise ValueError(f"Invalid resource address: {text!r}")
        index = match.group("index")
        return cls(
            type=match.group("type"),
            name=match.group("name"),
            index=int(index) if index is not None else None,
        )

    def sort_key(self) -> tuple[str, str, int]:
        return (self.type, self.name, -1 if self.index is None else self.index)
