from __future__ import annotations

import pytest

from terrarium.config import (
    ConfigurationError,
    EngineConfig,
    MissingConfigurationError,
    RetryPolicy,
    get_cloud_config,
    get_engine_config,
    require_env_vars,
)


def test_require_env_vars_returns_values(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("EXAMPLE_VAR", "value")

    result = require_env_vars(["EXAMPLE_VAR"])

    assert result["EXAMPLE_VAR"] == "value"


def test_require_env_vars_reports_missing_and_blank(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("MISSING_VAR", raising=False)
    monkeypatch.setenv("BLANK_VAR", "   ")

    with pytest.raises(MissingConfigurationError) as exc:
        require_env_vars(["MISSING_VAR", "BLANK_VAR"])

    assert str(exc.value) == "Missing configuration for: BLANK_VAR, MISSING_VAR"


def test_engine_config_defaults() -> None:
    config = get_engine_config()

    assert config.parallelism == 10
    assert config.retry == RetryPolicy()
    assert config.run_timeout_seconds is None


def test_engine_config_reads_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TERRARIUM_PARALLELISM", "4")
    monkeypatch.setenv("TERRARIUM_RETRY_ATTEMPTS", "5")
    monkeypatch.setenv("TERRARIUM_RETRY_BACKOFF", "0.1")
    monkeypatch.setenv("TERRARIUM_RUN_TIMEOUT", "90")

    config = get_engine_config()

    assert config.parallelism == 4
    assert config.retry.attempts == 5
    assert config.retry.backoff_factor == pytest.approx(0.1)
    assert config.run_timeout_seconds == pytest.approx(90.0)


def test_explicit_parallelism_wins_over_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TERRARIUM_PARALLELISM", "4")

    assert get_engine_config(parallelism=2).parallelism == 2


def test_engine_config_rejects_bad_values(monkeypatch: pytest.MonkeyPatch) -> None:
    with pytest.raises(ConfigurationError, match="Parallelism"):
        EngineConfig(parallelism=0)
    with pytest.raises(ConfigurationError, match="attempts"):
        RetryPolicy(attempts=0)

    monkeypatch.setenv("TERRARIUM_PARALLELISM", "many")
    with pytest.raises(ConfigurationError, match="TERRARIUM_PARALLELISM must be an integer"):
        get_engine_config()


def test_retry_delay_doubles_up_to_cap() -> None:
    policy = RetryPolicy(attempts=6, backoff_factor=0.5, max_backoff=3.0)

    assert [policy.delay(attempt) for attempt in range(1, 6)] == [0.5, 1.0, 2.0, 3.0, 3.0]


def test_cloud_config_requires_credentials() -> None:
    with pytest.raises(MissingConfigurationError, match="CLOUD_API_TOKEN, CLOUD_API_URL"):
        get_cloud_config()


def test_cloud_config_rate_limit_can_be_disabled(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CLOUD_API_URL", "https://api.test")
    monkeypatch.setenv("CLOUD_API_TOKEN", "token")
    monkeypatch.setenv("CLOUD_API_RATE_LIMIT", "0")
    monkeypatch.setenv("CLOUD_API_POLL_INTERVAL", "0.5")

    config = get_cloud_config()

    assert config.resilience.ratelimit is None
    assert config.resilience.base_url == "https://api.test"
    assert config.poll_interval_seconds == pytest.approx(0.5)
