"""Execution defaults for the reconciliation engine."""

from __future__ import annotations

from dataclasses import dataclass, field

from .env import optional_float, optional_int
from .errors import ConfigurationError

DEFAULT_PARALLELISM = 10
DEFAULT_RETRY_ATTEMPTS = 3
DEFAULT_RETRY_BACKOFF_SECONDS = 0.5
DEFAULT_MAX_BACKOFF_SECONDS = 30.0


@dataclass(slots=True, frozen=True)
class RetryPolicy:
    """Bounded exponential backoff for transient provider failures."""

    attempts: int = DEFAULT_RETRY_ATTEMPTS
    backoff_factor: float = DEFAULT_RETRY_BACKOFF_SECONDS
    max_backoff: float = DEFAULT_MAX_BACKOFF_SECONDS

    def __post_init__(self) -> None:
        if self.attempts < 1:
            raise ConfigurationError("Retry attempts must be at least 1")
        if self.backoff_factor < 0 or self.max_backoff < 0:
            raise ConfigurationError("Retry backoff values must be non-negative")

    def delay(self, attempt: int) -> float:
        """Seconds to wait after failed ``attempt`` (1-based) before the next one."""

        return min(self.max_backoff, self.backoff_factor * 2 ** (attempt - 1))


@dataclass(slots=True, frozen=True)
class EngineConfig:
    parallelism: int = DEFAULT_PARALLELISM
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    run_timeout_seconds: float | None = None
    poll_interval_seconds: float = 0.1

    def __post_init__(self) -> None:
        if self.parallelism < 1:
            raise ConfigurationError("Parallelism must be at least 1")
        if self.run_timeout_seconds is not None and self.run_timeout_seconds <= 0:
            raise ConfigurationError("Run timeout must be positive")


def get_engine_config(*, parallelism: int | None = None) -> EngineConfig:
    retry = RetryPolicy(
        attempts=optional_int("TERRARIUM_RETRY_ATTEMPTS", DEFAULT_RETRY_ATTEMPTS),
        backoff_factor=optional_float(
            "TERRARIUM_RETRY_BACKOFF", DEFAULT_RETRY_BACKOFF_SECONDS
        )
        or 0.0,
    )
    return EngineConfig(
        parallelism=parallelism or optional_int("TERRARIUM_PARALLELISM", DEFAULT_PARALLELISM),
        retry=retry,
        run_timeout_seconds=optional_float("TERRARIUM_RUN_TIMEOUT", None),
    )
