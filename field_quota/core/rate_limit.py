"""Rate limiting dependency for FastAPI routes.

Lets plain HTTP routes share an engine (and its limiter registry) with the
GraphQL schema. The FastAPI ``Request`` is the invocation context, so key
generators can read headers or the client address from it:

    engine = create_rate_limit_engine(
        key_generator=create_ip_key_generator(
            lambda request: request.client.host if request.client else None
        ),
    )

    @router.post(
        "/invites",
        dependencies=[Depends(create_rate_limit_dependency(engine, limit=5, duration=60))],
    )
    async def send_invite(...): ...

Rejections raise domain errors; ``setup_exception_handlers`` turns them into
429 / 503 responses. Admitted requests get ``X-RateLimit-*`` headers from
``rate_limit_context_middleware``.
"""

from __future__ import annotations

from typing import Awaitable, Callable

from fastapi import Request

from field_quota.core.engine import RateLimitEngine
from field_quota.core.keys import Invocation
from field_quota.core.middleware import RATE_LIMIT_STATE_ATTR
from field_quota.core.validation import QuotaSpec

HTTP_PARENT_TYPE = "HTTP"


def create_rate_limit_dependency(
    engine: RateLimitEngine,
    *,
    limit: int,
    duration: int,
    operation: str | None = None,
) -> Callable[[Request], Awaitable[None]]:
    """Build a FastAPI dependency enforcing a quota on a route.

    Args:
        engine: Engine to admit requests through.
        limit: Maximum requests per window.
        duration: Window length in seconds.
        operation: Operation name used by key generators; defaults to
            ``"<METHOD> <path>"`` of the request.

    Returns:
        Async dependency consuming one point per request. The admission
        result is left on ``request.state.rate_limit`` for the quota headers.
    """

    spec = QuotaSpec(quota=limit, window_seconds=duration)

    async def enforce_rate_limit(request: Request) -> None:
        invocation = Invocation(
            parent_type_name=HTTP_PARENT_TYPE,
            field_name=operation or f"{request.method} {request.url.path}",
            context=request,
            args=dict(request.query_params),
        )
        result = await engine.admit(spec, invocation)
        setattr(request.state, RATE_LIMIT_STATE_ATTR, result)

    return enforce_rate_limit
