"""Global exception handlers for consistent HTTP error responses.

Design:
- AppError subclasses -> their own HTTP status (429, 503, 500)
- Body is ``AppError.to_payload()``, the same shape GraphQL clients get
- RateLimitExceededError -> Retry-After header when enabled in settings
- Unexpected Exception -> generic 500 (safety net)
- ``extensions.requestId`` carries the correlation id for tracing
"""

import logging
from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse

from field_quota.core.config import settings
from field_quota.core.errors import AppError, RateLimitExceededError
from field_quota.core.logging import get_request_id

logger = logging.getLogger(__name__)

INTERNAL_ERROR_CODE = "INTERNAL_SERVER_ERROR"


def _with_request_id(payload: dict[str, Any]) -> dict[str, Any]:
    request_id = get_request_id()
    if request_id:
        payload["extensions"]["requestId"] = request_id
    return payload


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Render admission-control errors as ``{"message", "extensions"}``.

    ``extensions`` holds ``code``, ``httpStatus``, ``retryAfterSeconds`` for
    rate limited requests, ``requestId`` and, when present, ``details``.

    Args:
        request: FastAPI request object.
        exc: AppError instance (or subclass).

    Returns:
        JSONResponse with the error's HTTP status.
    """
    status_code = exc.http_status

    logger.warning(
        "app_error_handled",
        extra={
            "error_code": exc.code,
            "status_code": status_code,
            "has_details": bool(exc.details),
            "request_path": request.url.path,
        },
    )

    payload = _with_request_id(exc.to_payload())
    if exc.details:
        payload["extensions"]["details"] = exc.details

    headers: dict[str, str] = {}
    if isinstance(exc, RateLimitExceededError) and settings.rate_limit.include_headers:
        headers["Retry-After"] = str(exc.retry_after_seconds)

    return JSONResponse(status_code=status_code, content=payload, headers=headers or None)


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Fallback handler for unexpected errors (safety net).

    Logs detailed information for debugging while returning a generic message,
    so no stack traces or store addresses reach the client.
    """
    logger.error(
        "unhandled_exception",
        extra={
            "error_type": type(exc).__name__,
            "error_msg": str(exc),
            "request_path": request.url.path,
            "request_method": request.method,
        },
    )

    payload = _with_request_id(
        {
            "message": "An unexpected error occurred. Please try again later.",
            "extensions": {"code": INTERNAL_ERROR_CODE, "httpStatus": 500},
        }
    )
    return JSONResponse(status_code=500, content=payload)


def setup_exception_handlers(app) -> None:
    """Register all exception handlers with a FastAPI app.

    Example:
        >>> from fastapi import FastAPI
        >>> app = FastAPI()
        >>> setup_exception_handlers(app)
    """
    app.exception_handler(AppError)(app_error_handler)
    app.exception_handler(Exception)(general_exception_handler)
