"""Application configuration helpers."""

from __future__ import annotations

from .cloud import CloudConfig, get_cloud_config
from .engine import EngineConfig, RetryPolicy, get_engine_config
from .env import require_env_vars
from .errors import ConfigurationError, MissingConfigurationError
from .http_resilience import RateLimit, ResilienceConfig
from .logging import configure_logging
from .storage import StateConfig, StorageConfig, get_state_config, get_storage_config

__all__ = [
    "CloudConfig",
    "ConfigurationError",
    "EngineConfig",
    "MissingConfigurationError",
    "RateLimit",
    "ResilienceConfig",
    "RetryPolicy",
    "StateConfig",
    "StorageConfig",
    "configure_logging",
    "get_cloud_config",
    "get_engine_config",
    "get_state_config",
    "get_storage_config",
    "require_env_vars",
]
