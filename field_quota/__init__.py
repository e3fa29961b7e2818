"""Field-level admission control for GraphQL and HTTP operations."""

from field_quota.adapters.rate_limit import (
    AbstractCounterClient,
    InMemoryFixedWindowCounter,
    RateLimitRejection,
    RateLimitResult,
    RedisFixedWindowCounter,
)
from field_quota.core.errors import (
    AppError,
    ConfigurationError,
    InfrastructureError,
    RateLimitExceededError,
    RateLimitServiceError,
)
from field_quota.core.engine import RateLimitEngine, create_rate_limit_engine
from field_quota.core.keys import (
    Invocation,
    KeyGenerator,
    create_composite_key_generator,
    create_ip_key_generator,
    create_user_key_generator,
    default_key_generator,
)
from field_quota.core.registry import LimiterRegistry
from field_quota.core.validation import QuotaSpec, validate_quota
from field_quota.schema import RATE_LIMIT_DIRECTIVE_TYPE_DEFS, create_rate_limit_directive

__version__ = "0.1.0"

__all__ = [
    "AbstractCounterClient",
    "AppError",
    "ConfigurationError",
    "InMemoryFixedWindowCounter",
    "InfrastructureError",
    "Invocation",
    "KeyGenerator",
    "LimiterRegistry",
    "QuotaSpec",
    "RATE_LIMIT_DIRECTIVE_TYPE_DEFS",
    "RateLimitEngine",
    "RateLimitExceededError",
    "RateLimitRejection",
    "RateLimitResult",
    "RateLimitServiceError",
    "RedisFixedWindowCounter",
    "create_composite_key_generator",
    "create_ip_key_generator",
    "create_rate_limit_directive",
    "create_rate_limit_engine",
    "create_user_key_generator",
    "default_key_generator",
    "validate_quota",
]
