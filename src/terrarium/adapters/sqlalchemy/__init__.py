"""SQLAlchemy adapter package for terrarium state."""

from __future__ import annotations

from .mappings import (
    create_all_tables,
    metadata,
    state_lock_table,
    state_meta_table,
    state_record_table,
)
from .unit_of_work import (
    SqlAlchemyStateStore,
    SqlAlchemyStateTransaction,
    build_state_store,
)

__all__ = [
    "SqlAlchemyStateStore",
    "SqlAlchemyStateTransaction",
    "build_state_store",
    "create_all_tables",
    "metadata",
    "state_lock_table",
    "state_meta_table",
    "state_record_table",
]
