"""Counter client adapters.

This package provides a small abstraction layer so the engine can start with
an in-memory counter and move to Redis or another shared store without
changing the interception pipeline.
"""

from field_quota.adapters.rate_limit.base import (
    AbstractCounterClient,
    RateLimitRejection,
    RateLimitResult,
)
from field_quota.adapters.rate_limit.factory import create_counter_backend
from field_quota.adapters.rate_limit.in_memory import InMemoryFixedWindowCounter
from field_quota.adapters.rate_limit.redis_counter import RedisFixedWindowCounter

__all__ = [
    "AbstractCounterClient",
    "InMemoryFixedWindowCounter",
    "RateLimitRejection",
    "RateLimitResult",
    "RedisFixedWindowCounter",
    "create_counter_backend",
]
