"""Cloud control-plane API configuration values."""

from __future__ import annotations

from dataclasses import dataclass

from .env import optional_float, optional_int, require_env_vars
from .http_resilience import RateLimit, ResilienceConfig

CLOUD_TIMEOUT_SECONDS = 30.0
DEFAULT_CLOUD_RATE_LIMIT = 10
DEFAULT_POLL_INTERVAL_SECONDS = 2.0
DEFAULT_POLL_TIMEOUT_SECONDS = 600.0


@dataclass(frozen=True, slots=True)
class CloudConfig:
    """Holds control-plane API configuration values."""

    api_url: str
    resilience: ResilienceConfig
    poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS
    poll_timeout_seconds: float = DEFAULT_POLL_TIMEOUT_SECONDS


def get_cloud_config(*, resilience: ResilienceConfig | None = None) -> CloudConfig:
    values = require_env_vars(("CLOUD_API_URL", "CLOUD_API_TOKEN"))
    api_url = values["CLOUD_API_URL"].rstrip("/")
    rate = optional_int("CLOUD_API_RATE_LIMIT", DEFAULT_CLOUD_RATE_LIMIT)
    return CloudConfig(
        api_url=api_url,
        resilience=resilience
        or ResilienceConfig(
            name="cloud",
            base_url=api_url,
            timeout_seconds=CLOUD_TIMEOUT_SECONDS,
            ratelimit=RateLimit(max_calls=rate, per_seconds=1.0) if rate > 0 else None,
            default_headers={
                "Authorization": f"Bearer {values['CLOUD_API_TOKEN']}",
                "Accept": "application/json",
            },
        ),
        poll_interval_seconds=optional_float(
            "CLOUD_API_POLL_INTERVAL", DEFAULT_POLL_INTERVAL_SECONDS
        )
        or DEFAULT_POLL_INTERVAL_SECONDS,
    )
