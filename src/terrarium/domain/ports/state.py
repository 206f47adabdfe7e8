"""State store ports: durable record of applied resources.

The engine never mutates ``StateRecord`` rows directly. It reads a snapshot with
``load()`` and writes through a ``StateTransaction`` whose changes become visible
all at once on ``commit()``. Concurrent runs are serialized by ``lock()``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Mapping
    from contextlib import AbstractContextManager
    from types import TracebackType

    from terrarium.domain.model import ResourceAddress, StateRecord


@dataclass(slots=True, frozen=True)
class StateSnapshot:
    """Records as of one committed serial."""

    records: Mapping[ResourceAddress, StateRecord] = field(
        default_factory=dict["ResourceAddress", "StateRecord"]
    )
    serial: int = 0


@runtime_checkable
class StateTransaction(Protocol):
    """Buffered set of record/remove changes for one run."""

    def get(self, address: ResourceAddress) -> StateRecord | None: ...

    def recorded(self, address: ResourceAddress) -> bool:
        """Return whether ``address`` was recorded earlier in this transaction."""
        ...

    def record(
        self,
        address: ResourceAddress,
        *,
        resource_type: str,
        provider_id: str,
        attributes: Mapping[str, object],
        dependencies: tuple[ResourceAddress, ...] = (),
    ) -> StateRecord: ...

    def remove(self, address: ResourceAddress) -> None: ...

    def commit(self) -> None: ...

    def rollback(self) -> None: ...

    def __enter__(self) -> StateTransaction: ...

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> bool: ...


@runtime_checkable
class StateStore(Protocol):
    def load(self) -> StateSnapshot: ...

    def lock(self) -> AbstractContextManager[None]:
        """Hold the advisory lock; raise ``StateLockedError`` if already held."""
        ...

    def force_unlock(self) -> bool: ...

    def begin_transaction(self) -> StateTransaction: ...
