"""Admission-control engine wrapping protected operations.

Each call to a protected operation goes through the same strictly ordered
steps before the operation is allowed to run:

1. validate the quota declaration
2. derive the subject key
3. acquire the counter client for the quota shape
4. consume one point for the subject key
5. delegate to the original operation

A rejection at any step is terminal for that call: nothing is retried and the
operation never runs. A consumed point is never given back, including when
the surrounding task is cancelled while waiting on the store.
"""

from __future__ import annotations

import functools
import inspect
import logging
from typing import Any, Awaitable, Callable, Mapping, TypeVar

from field_quota.adapters.rate_limit.base import RateLimitResult
from field_quota.adapters.rate_limit.factory import create_counter_backend
from field_quota.core.classifier import classify_consume_error
from field_quota.core.config import RateLimitSettings, settings
from field_quota.core.errors import (
    AppError,
    RateLimitExceededError,
    RateLimitServiceError,
)
from field_quota.core.keys import Invocation, KeyGenerator, default_key_generator
from field_quota.core.logging import hash_subject_key, operation_scope
from field_quota.core.registry import DEFAULT_CAPACITY, LimiterFactory, LimiterRegistry
from field_quota.core.validation import QuotaSpec, validate_quota

logger = logging.getLogger(__name__)

T = TypeVar("T")

ErrorTranslator = Callable[[AppError], Exception]

# Set on resolvers returned by wrap_resolver; holds the QuotaSpec they enforce
RATE_LIMIT_SPEC_ATTR = "__rate_limit_spec__"


async def _resolve_value(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class RateLimitEngine:
    """Check-then-proceed gate shared by every operation it protects.

    One engine owns one limiter registry; engines never share state, so
    independently configured engines can coexist (e.g. in tests).

    Args:
        limiter_factory: Counter client class or callable accepting
            ``window_seconds``, ``quota`` and ``limiter_options``.
        limiter_options: Passed through to every counter client, typically
            the store connection (``store_client``) and ``key_prefix``.
        key_generator: Maps an invocation to a subject key. Defaults to
            ``default_key_generator`` (one quota per operation).
        cache_size: Maximum number of distinct quota shapes kept.
        owns_store_client: Close ``limiter_options["store_client"]`` in
            ``aclose``. Set by ``create_rate_limit_engine``, which opens the
            connection itself; leave unset for connections managed elsewhere.
    """

    def __init__(
        self,
        limiter_factory: LimiterFactory,
        limiter_options: Mapping[str, Any] | None = None,
        key_generator: KeyGenerator | None = None,
        cache_size: int = DEFAULT_CAPACITY,
        owns_store_client: bool = False,
    ) -> None:
        self.key_generator = key_generator or default_key_generator
        self.registry = LimiterRegistry(
            limiter_factory,
            limiter_options,
            capacity=cache_size,
        )
        self._store_client = (limiter_options or {}).get("store_client")
        self._owns_store_client = owns_store_client
        self._closed = False

    async def admit(self, spec: QuotaSpec, invocation: Invocation[Any]) -> RateLimitResult:
        """Consume one point for the invocation or reject it.

        Args:
            spec: Quota declared on the operation.
            invocation: The call being admitted.

        Returns:
            RateLimitResult reported by the counter client.

        Raises:
            ConfigurationError: If the quota declaration is invalid.
            InfrastructureError: If the counter client cannot be built.
            RateLimitExceededError: If the subject is over quota.
            RateLimitServiceError: If the counter store failed.
        """

        with operation_scope(invocation.operation_id):
            return await self._admit(spec, invocation)

    async def _admit(self, spec: QuotaSpec, invocation: Invocation[Any]) -> RateLimitResult:
        validate_quota(spec)
        subject_key = self.key_generator(spec, invocation)
        limiter = self.registry.acquire(spec)

        log_extra = {
            "operation": invocation.operation_id,
            "key_hash": hash_subject_key(subject_key),
            "limit": spec.quota,
            "window_s": spec.window_seconds,
        }

        try:
            result = await limiter.consume(subject_key)
        except Exception as exc:
            error = classify_consume_error(exc)
            if isinstance(error, RateLimitExceededError):
                logger.warning(
                    "rate_limit.exceeded",
                    extra={**log_extra, "retry_after_s": error.retry_after_seconds},
                )
            else:
                logger.error(
                    "rate_limit.service_error",
                    extra={
                        **log_extra,
                        "error_type": type(exc).__name__,
                        "error_msg": str(exc),
                    },
                )
            raise error from exc

        logger.debug(
            "rate_limit.allowed",
            extra={**log_extra, "remaining": result.remaining_points},
        )
        return result

    def wrap_resolver(
        self,
        resolve: Callable[..., Any],
        spec: QuotaSpec,
        translate_error: ErrorTranslator | None = None,
    ) -> Callable[..., Awaitable[Any]]:
        """Wrap a GraphQL-style resolver ``(source, info, **args)``.

        The wrapper is always async; the original resolver may be sync or
        async and its result or failure is passed through untouched.

        Args:
            resolve: Original resolver.
            spec: Quota declared on the field.
            translate_error: Optional hook converting admission errors
                (exceeded / service) to a transport error type.
        """

        @functools.wraps(resolve)
        async def rate_limited_resolve(source: Any, info: Any, **args: Any) -> Any:
            invocation = Invocation(
                parent_type_name=info.parent_type.name,
                field_name=info.field_name,
                context=info.context,
                source=source,
                args=args,
                info=info,
            )
            try:
                await self.admit(spec, invocation)
            except (RateLimitExceededError, RateLimitServiceError) as exc:
                if translate_error is None:
                    raise
                raise translate_error(exc) from exc

            return await _resolve_value(resolve(source, info, **args))

        setattr(rate_limited_resolve, RATE_LIMIT_SPEC_ATTR, spec)
        return rate_limited_resolve

    def protect(
        self,
        spec: QuotaSpec,
        *,
        parent_type_name: str = "Operation",
        field_name: str | None = None,
    ) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
        """Decorate an async callable outside of any GraphQL schema.

        The caller context is read from a ``context`` keyword argument when
        present; keyword arguments are exposed to key generators as ``args``.

        Example:
            >>> @engine.protect(QuotaSpec(quota=5, window_seconds=60))
            ... async def send_invite(email: str, *, context: dict) -> None:
            ...     ...
        """

        def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
            name = field_name or func.__name__

            @functools.wraps(func)
            async def wrapper(*args: Any, **kwargs: Any) -> T:
                invocation = Invocation(
                    parent_type_name=parent_type_name,
                    field_name=name,
                    context=kwargs.get("context"),
                    source=args,
                    args=kwargs,
                )
                await self.admit(spec, invocation)
                return await func(*args, **kwargs)

            return wrapper

        return decorator

    async def aclose(self) -> None:
        """Tear the engine down.

        Drops every cached counter client and closes the store connection
        when the engine opened it. Safe to call more than once.

        Example:
            >>> engine = create_rate_limit_engine()
            >>> try:
            ...     ...
            ... finally:
            ...     await engine.aclose()
        """

        if self._closed:
            return
        self._closed = True

        released = len(self.registry)
        self.registry.clear()
        if self._owns_store_client and self._store_client is not None:
            await self._store_client.aclose()

        logger.info(
            "rate_limit.engine_closed",
            extra={
                "released_limiters": released,
                "store_closed": self._owns_store_client and self._store_client is not None,
            },
        )

    async def __aenter__(self) -> RateLimitEngine:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()


def create_rate_limit_engine(
    key_generator: KeyGenerator | None = None,
    rate_limit_settings: RateLimitSettings | None = None,
) -> RateLimitEngine:
    """Build an engine from ``settings.rate_limit``.

    Args:
        key_generator: Optional key generator (defaults to operation identity).
        rate_limit_settings: Override for the global settings.

    Returns:
        RateLimitEngine bound to the configured counter backend.
        The engine owns the store connection; release it with ``aclose``.
    """

    cfg = rate_limit_settings or settings.rate_limit
    limiter_factory, limiter_options = create_counter_backend(cfg)
    logger.info(
        "rate_limit.engine_created",
        extra={"backend": cfg.backend, "cache_size": cfg.cache_size},
    )
    return RateLimitEngine(
        limiter_factory,
        limiter_options,
        key_generator=key_generator,
        cache_size=cfg.cache_size,
        owns_store_client=True,
    )
