"""HTTP middleware binding admission logs and quota headers to a request.

Usage:
    app.middleware("http")(rate_limit_context_middleware)

Routes guarded by ``create_rate_limit_dependency`` leave their
``RateLimitResult`` on ``request.state.rate_limit``; the middleware turns it
into ``X-RateLimit-*`` response headers.
"""

from __future__ import annotations

import uuid

from fastapi import Request, Response

from field_quota.adapters.rate_limit.base import RateLimitResult
from field_quota.core.config import settings
from field_quota.core.logging import clear_request_id, set_request_id

RATE_LIMIT_STATE_ATTR = "rate_limit"


def rate_limit_headers(result: RateLimitResult) -> dict[str, str]:
    """Quota headers for an admitted request."""
    return {
        "X-RateLimit-Limit": str(result.quota),
        "X-RateLimit-Remaining": str(result.remaining_points),
        "X-RateLimit-Reset": str(result.retry_after_seconds),
    }


async def rate_limit_context_middleware(request: Request, call_next) -> Response:
    """Correlate admission logs with the request and report remaining quota."""

    header_name = settings.log.request_id_header
    request_id = request.headers.get(header_name) or uuid.uuid4().hex
    set_request_id(request_id)
    try:
        response: Response = await call_next(request)
    finally:
        clear_request_id()

    response.headers[header_name] = request_id
    result = getattr(request.state, RATE_LIMIT_STATE_ATTR, None)
    if result is not None and settings.rate_limit.include_headers:
        response.headers.update(rate_limit_headers(result))
    return response
