"""SQLAlchemy-backed state store and its run transaction."""

from __future__ import annotations

import os
import socket
import threading
from contextlib import contextmanager
from datetime import UTC, datetime
from logging import getLogger
from typing import TYPE_CHECKING, Literal

from sqlalchemy import create_engine, delete, insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from terrarium.config.storage import get_state_config
from terrarium.domain.errors import StateLockedError
from terrarium.domain.model import StateRecord
from terrarium.domain.ports import StateSnapshot

from .mappings import (
    create_all_tables,
    record_to_row,
    row_to_record,
    state_lock_table,
    state_meta_table,
    state_record_table,
)

if TYPE_CHECKING:
    from collections.abc import Iterator, Mapping
    from types import TracebackType

    from sqlalchemy.engine import Engine

    from terrarium.config.storage import StateConfig
    from terrarium.domain.model import ResourceAddress

log = getLogger(__name__)

LOCK_NAME = "state"
SERIAL_KEY = "serial"


def _default_holder() -> str:
    return f"{socket.gethostname()}:{os.getpid()}"


class SqlAlchemyStateStore:
    """State store on a relational database, normally a local SQLite file."""

    def __init__(self, engine: Engine, *, holder: str | None = None) -> None:
        self.engine = engine
        self.holder = holder or _default_holder()
        self.session_factory: sessionmaker[Session] = sessionmaker(
            bind=engine, expire_on_commit=False
        )
        create_all_tables(engine)

    def load(self) -> StateSnapshot:
        with self.session_factory() as session:
            rows = session.execute(select(state_record_table)).mappings().all()
            serial = _read_serial(session)
        records = {row["address"]: row_to_record(row) for row in rows}
        return StateSnapshot(records=records, serial=serial)

    @contextmanager
    def lock(self) -> Iterator[None]:
        self._acquire()
        try:
            yield
        finally:
            self._release()

    def force_unlock(self) -> bool:
        with self.session_factory.begin() as session:
            result = session.execute(
                delete(state_lock_table).where(state_lock_table.c.name == LOCK_NAME)
            )
        removed = bool(result.rowcount)
        if removed:
            log.warning("Removed state lock")
        return removed

    def current_holder(self) -> str | None:
        with self.session_factory() as session:
            return session.execute(
                select(state_lock_table.c.holder).where(state_lock_table.c.name == LOCK_NAME)
            ).scalar_one_or_none()

    def begin_transaction(self) -> SqlAlchemyStateTransaction:
        return SqlAlchemyStateTransaction(self.session_factory, self.load())

    def _acquire(self) -> None:
        try:
            with self.session_factory.begin() as session:
                session.execute(
                    insert(state_lock_table).values(
                        name=LOCK_NAME,
                        holder=self.holder,
                        acquired_at=datetime.now(UTC),
                    )
                )
        except IntegrityError as exc:
            raise StateLockedError(self.current_holder()) from exc
        log.debug(f"Acquired state lock as {self.holder}")

    def _release(self) -> None:
        with self.session_factory.begin() as session:
            session.execute(
                delete(state_lock_table).where(
                    state_lock_table.c.name == LOCK_NAME,
                    state_lock_table.c.holder == self.holder,
                )
            )
        log.debug(f"Released state lock held by {self.holder}")


class SqlAlchemyStateTransaction:
    """Buffer record/remove calls for one run and write them in a single commit.

    Buffer access is guarded by a mutex since workers record results concurrently.
    """

    def __init__(self, session_factory: sessionmaker[Session], snapshot: StateSnapshot) -> None:
        self._session_factory = session_factory
        self._base: dict[ResourceAddress, StateRecord] = dict(snapshot.records)
        self.serial = snapshot.serial
        self._upserts: dict[ResourceAddress, StateRecord] = {}
        self._removals: set[ResourceAddress] = set()
        self._mutex = threading.Lock()

    def __enter__(self) -> SqlAlchemyStateTransaction:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> Literal[False]:
        if exc_type is not None:
            self.rollback()
        return False

    def get(self, address: ResourceAddress) -> StateRecord | None:
        with self._mutex:
            if address in self._upserts:
                return self._upserts[address]
            if address in self._removals:
                return None
            return self._base.get(address)

    def recorded(self, address: ResourceAddress) -> bool:
        with self._mutex:
            return address in self._upserts

    def record(
        self,
        address: ResourceAddress,
        *,
        resource_type: str,
        provider_id: str,
        attributes: Mapping[str, object],
        dependencies: tuple[ResourceAddress, ...] = (),
    ) -> StateRecord:
        record = StateRecord(
            address=address,
            resource_type=resource_type,
            provider_id=provider_id,
            attributes=dict(attributes),
            dependencies=tuple(dependencies),
        )
        with self._mutex:
            self._upserts[address] = record
            self._removals.discard(address)
        return record

    def remove(self, address: ResourceAddress) -> None:
        with self._mutex:
            self._upserts.pop(address, None)
            self._removals.add(address)

    @property
    def pending(self) -> int:
        with self._mutex:
            return len(self._upserts) + len(self._removals)

    def commit(self) -> None:
        with self._mutex:
            upserts = list(self._upserts.values())
            removals = [address for address in self._removals if address in self._base]
            self._upserts.clear()
            self._removals.clear()
        if not upserts and not removals:
            log.debug("No state changes to commit")
            return

        with self._session_factory.begin() as session:
            stale = [*removals, *(record.address for record in upserts)]
            session.execute(
                delete(state_record_table).where(state_record_table.c.address.in_(stale))
            )
            if upserts:
                session.execute(
                    insert(state_record_table), [record_to_row(record) for record in upserts]
                )
            self.serial = _bump_serial(session)

        for address in removals:
            self._base.pop(address, None)
        self._base.update({record.address: record for record in upserts})
        log.info(
            f"Committed state serial {self.serial}: "
            f"{len(upserts)} recorded, {len(removals)} removed"
        )

    def rollback(self) -> None:
        with self._mutex:
            discarded = len(self._upserts) + len(self._removals)
            self._upserts.clear()
            self._removals.clear()
        if discarded:
            log.warning(f"Discarded {discarded} uncommitted state change(s)")


def _read_serial(session: Session) -> int:
    value = session.execute(
        select(state_meta_table.c.value).where(state_meta_table.c.key == SERIAL_KEY)
    ).scalar_one_or_none()
    return value or 0


def _bump_serial(session: Session) -> int:
    current = session.execute(
        select(state_meta_table.c.value).where(state_meta_table.c.key == SERIAL_KEY)
    ).scalar_one_or_none()
    if current is None:
        session.execute(insert(state_meta_table).values(key=SERIAL_KEY, value=1))
        return 1
    session.execute(
        update(state_meta_table)
        .where(state_meta_table.c.key == SERIAL_KEY)
        .values(value=current + 1)
    )
    return current + 1


def build_state_store(
    config: StateConfig | None = None,
    *,
    engine: Engine | None = None,
    holder: str | None = None,
) -> SqlAlchemyStateStore:
    """Create a state store for ``config`` (or the environment's default)."""

    resolved_engine = engine or create_engine((config or get_state_config()).uri, future=True)
    return SqlAlchemyStateStore(resolved_engine, holder=holder)


if TYPE_CHECKING:
    from terrarium.domain.ports import StateStore, StateTransaction

    _store_check: StateStore = SqlAlchemyStateStore(create_engine("sqlite://"))
    _transaction_check: StateTransaction = _store_check.begin_transaction()
