"""Admission-control exception types.

This module defines the errors raised by the rate limit engine, enabling
consistent error handling, logging, and caller-facing payloads across the
GraphQL and HTTP transports.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar, NotRequired, TypedDict


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients.

    Fields are optional so each error only carries what it knows.
    """

    hint: str
    field: str
    actual_value: Any
    max_value: int
    quota: int
    window_seconds: int
    operation: str
    error_type: str
    context: NotRequired[dict[str, Any]]


@dataclass(eq=False)
class AppError(Exception):
    """Base error for admission-control failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    http_status: ClassVar[int] = 500

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)

    @property
    def extensions(self) -> dict[str, Any]:
        """Machine-readable extensions shared by every transport.

        graphql-core copies this onto the GraphQLError it builds when a
        resolver raises, so the code reaches GraphQL clients unchanged.
        """

        return {"code": self.code, "httpStatus": self.http_status}

    def to_payload(self) -> dict[str, Any]:
        """Render the caller-facing error payload.

        Returns:
            dict with ``message`` and ``extensions`` keys.
        """

        return {"message": self.message, "extensions": self.extensions}


class ConfigurationError(AppError):
    """Raised when a quota declaration is malformed or abusive.

    Never retried and never reaches the protected operation.
    """

    def __init__(self, message: str, details: ErrorDetails | None = None) -> None:
        super().__init__(code="RATE_LIMIT_CONFIG_ERROR", message=message, details=details)


class RateLimitExceededError(AppError):
    """Raised when the counter store rejects a call for exceeding its quota."""

    http_status: ClassVar[int] = 429

    def __init__(
        self,
        retry_after_seconds: int,
        message: str = "Rate limit exceeded",
        details: ErrorDetails | None = None,
    ) -> None:
        self.retry_after_seconds = retry_after_seconds
        super().__init__(code="RATE_LIMITED", message=message, details=details)

    @property
    def extensions(self) -> dict[str, Any]:
        extensions = dict(super().extensions)
        extensions["retryAfterSeconds"] = self.retry_after_seconds
        return extensions


class RateLimitServiceError(AppError):
    """Raised when the counter store fails for reasons other than quota."""

    http_status: ClassVar[int] = 503

    def __init__(
        self,
        message: str = "Rate limiting service unavailable",
        details: ErrorDetails | None = None,
    ) -> None:
        super().__init__(code="RATE_LIMIT_SERVICE_ERROR", message=message, details=details)


class InfrastructureError(RateLimitServiceError):
    """Raised when a counter client cannot be constructed."""
