"""Classification of counter store failures into caller-facing errors.

The store contract does not type its rejections, so a quota rejection is
recognised by shape: it carries a numeric ``ms_before_next``. Anything else
raised by ``consume`` is treated as the store being unavailable.
"""

from __future__ import annotations

import math

from field_quota.core.errors import (
    AppError,
    RateLimitExceededError,
    RateLimitServiceError,
)


def get_ms_before_next(exc: BaseException) -> int | float | None:
    """Return the retry hint carried by a store rejection, if any."""

    value = getattr(exc, "ms_before_next", None)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not math.isfinite(value):
        return None
    return value


def classify_consume_error(exc: Exception) -> AppError:
    """Translate a failure raised by ``consume`` into a domain error.

    Args:
        exc: Exception raised by the counter client.

    Returns:
        RateLimitExceededError when the failure carries a numeric retry hint,
        RateLimitServiceError otherwise.
    """

    ms_before_next = get_ms_before_next(exc)
    if ms_before_next is not None:
        return RateLimitExceededError(
            retry_after_seconds=max(0, math.ceil(ms_before_next / 1000)),
        )

    return RateLimitServiceError(details={"error_type": type(exc).__name__})
