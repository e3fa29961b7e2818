"""Application factory for FastAPI apps protected by the engine.

Centralizes the transport wiring (logging, quota header middleware, exception
handlers) so services only add their routes.
"""

from __future__ import annotations

from typing import Any

from fastapi import FastAPI

from field_quota.core.config import settings
from field_quota.core.exception_handlers import setup_exception_handlers
from field_quota.core.logging import configure_logging
from field_quota.core.middleware import rate_limit_context_middleware


def create_app(*, configure_logs: bool = True, **fastapi_kwargs: Any) -> FastAPI:
    """Create a FastAPI application with admission-control error handling.

    Args:
        configure_logs: Install the JSON logging configuration first.
        **fastapi_kwargs: Forwarded to ``FastAPI`` (title, version, ...).

    Returns:
        Configured FastAPI app; routes are added by the caller.
    """
    # Logging first so subsequent init logs are formatted as desired
    if configure_logs:
        configure_logging(settings.log)

    app = FastAPI(**fastapi_kwargs)
    app.middleware("http")(rate_limit_context_middleware)
    setup_exception_handlers(app)
    return app
