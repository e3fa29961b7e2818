"""Factory for resolving counter client backends from settings."""

from __future__ import annotations

from typing import Any

from redis.asyncio import from_url

from field_quota.adapters.rate_limit.base import AbstractCounterClient
from field_quota.adapters.rate_limit.in_memory import InMemoryFixedWindowCounter
from field_quota.adapters.rate_limit.redis_counter import RedisFixedWindowCounter
from field_quota.core.config import RateLimitSettings, settings
from field_quota.core.errors import ConfigurationError


def create_counter_backend(
    rate_limit_settings: RateLimitSettings | None = None,
) -> tuple[type[AbstractCounterClient], dict[str, Any]]:
    """Resolve the counter client class and its constructor options.

    Reads configuration from ``settings.rate_limit`` unless overridden.
    The Redis connection is created once here and shared by every counter
    client the registry builds.

    Returns:
        Tuple of (counter client class, limiter options).

    Raises:
        ConfigurationError: If the backend is unknown.
    """
    cfg = rate_limit_settings or settings.rate_limit
    backend = cfg.backend.lower()

    if backend == "memory":
        return InMemoryFixedWindowCounter, {"key_prefix": cfg.key_prefix}

    if backend == "redis":
        # from_url is sync; the pool connects lazily on first command
        store_client = from_url(cfg.redis_url, encoding="utf-8", decode_responses=True)
        return RedisFixedWindowCounter, {
            "store_client": store_client,
            "key_prefix": cfg.key_prefix,
        }

    raise ConfigurationError(
        f"Unknown rate limit backend: '{backend}'. Supported backends: memory, redis",
    )
