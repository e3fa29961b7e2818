"""Quota declaration validation.

A quota is re-checked on every invocation rather than once at schema build
time, so values supplied dynamically are covered as well as statically
declared ones.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping, NoReturn

from field_quota.core.errors import ConfigurationError

logger = logging.getLogger(__name__)

MAX_QUOTA = 1_000_000
MAX_WINDOW_SECONDS = 31_536_000  # one year


@dataclass(frozen=True)
class QuotaSpec:
    """Quota shape attached to a protected operation.

    Attributes:
        quota: Maximum number of calls allowed per window.
        window_seconds: Window length in seconds.
    """

    quota: int
    window_seconds: int

    @classmethod
    def from_directive_args(cls, args: Mapping[str, Any]) -> "QuotaSpec":
        """Build a spec from ``@rateLimit(limit, duration)`` arguments."""
        return cls(quota=args["limit"], window_seconds=args["duration"])

    @property
    def cache_key(self) -> str:
        """Registry key shared by every spec with the same shape."""
        return f"{self.window_seconds}:{self.quota}"


def _is_positive_int(value: Any) -> bool:
    # bool is an int subclass but never a meaningful quota
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def _reject(message: str, **details: Any) -> NoReturn:
    logger.warning("quota_validation.rejected", extra={"reason": message, **details})
    raise ConfigurationError(message, details=details)  # type: ignore[arg-type]


def validate_quota(spec: QuotaSpec) -> None:
    """Reject malformed or abusive quota declarations.

    Args:
        spec: Quota to check.

    Raises:
        ConfigurationError: If quota or window is not a positive integer or
            exceeds the allowed maximum.
    """

    if not _is_positive_int(spec.quota):
        _reject(
            f"Invalid rate limit: {spec.quota!r}. Must be a positive integer.",
            field="limit",
            actual_value=spec.quota,
        )

    if not _is_positive_int(spec.window_seconds):
        _reject(
            f"Invalid duration: {spec.window_seconds!r}. Must be a positive integer (seconds).",
            field="duration",
            actual_value=spec.window_seconds,
        )

    if spec.window_seconds > MAX_WINDOW_SECONDS:
        _reject(
            f"Invalid duration: {spec.window_seconds}. "
            f"Maximum allowed is {MAX_WINDOW_SECONDS} seconds (1 year).",
            field="duration",
            actual_value=spec.window_seconds,
            max_value=MAX_WINDOW_SECONDS,
        )

    if spec.quota > MAX_QUOTA:
        _reject(
            f"Invalid limit: {spec.quota}. Maximum allowed is {MAX_QUOTA}.",
            field="limit",
            actual_value=spec.quota,
            max_value=MAX_QUOTA,
        )
