from __future__ import annotations

from pathlib import Path  # noqa: TC003

import pytest  # noqa: TC002

from terrarium.config import get_state_config, get_storage_config
from terrarium.config.storage import DEFAULT_STATE_FILENAME


def test_storage_config_uses_data_dir_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    custom = tmp_path / "custom-data"
    monkeypatch.setenv("TERRARIUM_DATA_DIR", str(custom))

    assert get_storage_config().resolve_data_dir() == custom.resolve()


def test_state_config_defaults_to_sqlite_in_data_dir(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    monkeypatch.setenv("TERRARIUM_DATA_DIR", str(tmp_path / "data-dir"))

    uri = get_state_config().uri

    expected_path = (tmp_path / "data-dir" / DEFAULT_STATE_FILENAME).resolve()
    assert uri == f"sqlite+pysqlite:///{expected_path}"
    assert expected_path.parent.exists()


def test_state_config_env_uri_overrides_data_dir(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TERRARIUM_STATE_URI", "sqlite:///override.db")

    assert get_state_config().uri == "sqlite:///override.db"


def test_explicit_state_path_wins(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("TERRARIUM_STATE_URI", "sqlite:///override.db")
    target = tmp_path / "nested" / "state.db"

    uri = get_state_config(state_path=str(target)).uri

    assert uri == f"sqlite+pysqlite:///{target.resolve()}"
    assert target.parent.exists()
