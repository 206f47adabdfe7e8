"""State storage configuration helpers."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Final

DEFAULT_DATA_DIR: Final[str] = ".terrarium"
DEFAULT_STATE_FILENAME: Final[str] = "terrarium.db"


@dataclass(frozen=True, slots=True)
class StorageConfig:
    data_dir: Path
    state_filename: str = DEFAULT_STATE_FILENAME

    def resolve_data_dir(self) -> Path:
        return self.data_dir.expanduser().resolve()

    def ensure_data_dir(self) -> Path:
        data_dir = self.resolve_data_dir()
        data_dir.mkdir(parents=True, exist_ok=True)
        return data_dir

    def state_path(self, *, ensure: bool = True) -> Path:
        base = self.ensure_data_dir() if ensure else self.resolve_data_dir()
        return base / self.state_filename

    def state_uri(self) -> str:
        return f"sqlite+pysqlite:///{self.state_path()}"


@dataclass(frozen=True, slots=True)
class StateConfig:
    uri: str


def get_storage_config() -> StorageConfig:
    env_dir = os.getenv("TERRARIUM_DATA_DIR")
    return StorageConfig(data_dir=Path(env_dir or DEFAULT_DATA_DIR))


def get_state_config(
    *,
    state_path: str | None = None,
    storage: StorageConfig | None = None,
) -> StateConfig:
    """Resolve the state database URI.

    An explicit ``state_path`` (CLI ``--state``) wins over ``TERRARIUM_STATE_URI``,
    which wins over the SQLite file inside the data directory.
    """

    if state_path:
        path = Path(state_path).expanduser().resolve()
        path.parent.mkdir(parents=True, exist_ok=True)
        return StateConfig(uri=f"sqlite+pysqlite:///{path}")
    env_uri = os.getenv("TERRARIUM_STATE_URI")
    if env_uri:
        return StateConfig(uri=env_uri)
    storage_config = storage or get_storage_config()
    return StateConfig(uri=storage_config.state_uri())
