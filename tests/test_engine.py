"""Tests for the admission-control pipeline."""

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, Mock, patch

import pytest

from field_quota.core.config import RateLimitSettings
from field_quota.core.engine import RateLimitEngine, create_rate_limit_engine
from field_quota.core.errors import (
    ConfigurationError,
    InfrastructureError,
    RateLimitExceededError,
    RateLimitServiceError,
)
from field_quota.core.keys import Invocation, create_user_key_generator
from field_quota.core.validation import QuotaSpec
from field_quota.adapters.rate_limit.in_memory import InMemoryFixedWindowCounter

SPEC = QuotaSpec(quota=1, window_seconds=60)


def _info(parent: str = "Query", field: str = "test", context=None) -> SimpleNamespace:
    return SimpleNamespace(
        parent_type=SimpleNamespace(name=parent),
        field_name=field,
        context=context,
    )


class TestAdmit:
    @pytest.mark.asyncio
    async def test_validates_then_consumes_once(self, engine, counter_factory) -> None:
        invocation = Invocation(parent_type_name="Query", field_name="test")

        result = await engine.admit(SPEC, invocation)

        assert counter_factory.consumed_keys == ["Query.test"]
        assert result.remaining_points == 0

    @pytest.mark.asyncio
    async def test_invalid_quota_never_touches_store(self, engine, counter_factory) -> None:
        key_generator = Mock(return_value="K")
        engine.key_generator = key_generator

        with pytest.raises(ConfigurationError):
            await engine.admit(
                QuotaSpec(quota=0, window_seconds=60),
                Invocation(parent_type_name="Query", field_name="test"),
            )

        key_generator.assert_not_called()
        assert counter_factory.created == []

    @pytest.mark.asyncio
    async def test_key_generator_failure_propagates_unmodified(
        self, engine, counter_factory
    ) -> None:
        engine.key_generator = Mock(side_effect=LookupError("no user"))

        with pytest.raises(LookupError, match="no user"):
            await engine.admit(SPEC, Invocation(parent_type_name="Query", field_name="test"))

        assert counter_factory.consumed_keys == []

    @pytest.mark.asyncio
    async def test_store_rejection_becomes_quota_exceeded(
        self, engine, counter_factory, make_rejection
    ) -> None:
        counter_factory.error = make_rejection(5000)

        with pytest.raises(RateLimitExceededError) as exc_info:
            await engine.admit(SPEC, Invocation(parent_type_name="Query", field_name="test"))

        assert exc_info.value.retry_after_seconds == 5
        assert exc_info.value.__cause__ is counter_factory.error

    @pytest.mark.asyncio
    async def test_store_failure_becomes_service_unavailable(
        self, engine, counter_factory
    ) -> None:
        counter_factory.error = ConnectionError("connection refused")

        with pytest.raises(RateLimitServiceError) as exc_info:
            await engine.admit(SPEC, Invocation(parent_type_name="Query", field_name="test"))

        assert not isinstance(exc_info.value, RateLimitExceededError)
        assert isinstance(exc_info.value.__cause__, ConnectionError)

    @pytest.mark.asyncio
    async def test_factory_failure_surfaces_as_infrastructure_error(self) -> None:
        def broken_factory(**kwargs):
            raise OSError("no route to store")

        engine = RateLimitEngine(broken_factory)

        with pytest.raises(InfrastructureError):
            await engine.admit(SPEC, Invocation(parent_type_name="Query", field_name="test"))

    @pytest.mark.asyncio
    async def test_cancellation_is_not_reclassified(self, engine) -> None:
        blocker = asyncio.Event()
        calls: list[str] = []

        async def slow_consume(key: str, points: int = 1):
            calls.append(key)
            await blocker.wait()

        engine.registry.acquire(SPEC).consume = slow_consume
        task = asyncio.create_task(
            engine.admit(SPEC, Invocation(parent_type_name="Query", field_name="test"))
        )
        await asyncio.sleep(0)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        assert calls == ["Query.test"]


class TestWrapResolver:
    @pytest.mark.asyncio
    async def test_delegates_after_admission(self, engine, counter_factory) -> None:
        resolve = Mock(return_value="success")
        wrapped = engine.wrap_resolver(resolve, SPEC)
        info = _info()

        assert await wrapped("root", info, id="1") == "success"
        resolve.assert_called_once_with("root", info, id="1")
        assert counter_factory.consumed_keys == ["Query.test"]

    @pytest.mark.asyncio
    async def test_awaits_async_resolvers(self, engine) -> None:
        resolve = AsyncMock(return_value={"id": 1})

        assert await engine.wrap_resolver(resolve, SPEC)(None, _info()) == {"id": 1}
        resolve.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_rejected_call_never_reaches_resolver(
        self, engine, counter_factory, make_rejection
    ) -> None:
        counter_factory.error = make_rejection(5000)
        resolve = Mock()

        with pytest.raises(RateLimitExceededError):
            await engine.wrap_resolver(resolve, SPEC)(None, _info())

        resolve.assert_not_called()

    @pytest.mark.asyncio
    async def test_business_errors_are_not_reclassified(self, engine) -> None:
        resolve = Mock(side_effect=ValueError("Custom error"))

        with pytest.raises(ValueError, match="Custom error"):
            await engine.wrap_resolver(resolve, SPEC)(None, _info())

    @pytest.mark.asyncio
    async def test_translate_error_applies_to_admission_errors_only(
        self, engine, counter_factory
    ) -> None:
        translate = Mock(side_effect=lambda exc: RuntimeError(exc.code))
        counter_factory.error = ConnectionError("down")

        with pytest.raises(RuntimeError, match="RATE_LIMIT_SERVICE_ERROR"):
            await engine.wrap_resolver(Mock(), SPEC, translate_error=translate)(None, _info())

        translate.reset_mock()
        with pytest.raises(ConfigurationError):
            await engine.wrap_resolver(
                Mock(), QuotaSpec(quota=0, window_seconds=1), translate_error=translate
            )(None, _info())
        translate.assert_not_called()

    @pytest.mark.asyncio
    async def test_key_generator_sees_caller_context(self, counter_factory) -> None:
        engine = RateLimitEngine(
            counter_factory,
            key_generator=create_user_key_generator(lambda ctx: ctx["user"]),
        )

        await engine.wrap_resolver(Mock(), SPEC)(None, _info(context={"user": "u1"}))

        assert counter_factory.consumed_keys == ["user:u1:Query.test"]

    @pytest.mark.asyncio
    async def test_one_consume_per_invocation(self, counter_factory) -> None:
        engine = RateLimitEngine(counter_factory)
        wrapped = engine.wrap_resolver(Mock(return_value=1), QuotaSpec(quota=10, window_seconds=60))

        await asyncio.gather(*(wrapped(None, _info()) for _ in range(5)))

        assert len(counter_factory.consumed_keys) == 5
        assert len(counter_factory.created) == 1


class TestProtect:
    @pytest.mark.asyncio
    async def test_protects_plain_async_callables(self, engine, counter_factory) -> None:
        @engine.protect(SPEC, parent_type_name="Jobs")
        async def send_invite(email: str, *, context: dict) -> str:
            return f"sent:{email}"

        assert await send_invite("a@example.com", context={}) == "sent:a@example.com"
        assert counter_factory.consumed_keys == ["Jobs.send_invite"]

        counter_factory.error = ConnectionError("down")
        with pytest.raises(RateLimitServiceError):
            await send_invite("b@example.com", context={})


class TestEngineIsolation:
    @pytest.mark.asyncio
    async def test_engines_do_not_share_registries(self, counter_factory) -> None:
        first = RateLimitEngine(counter_factory)
        second = RateLimitEngine(counter_factory)

        assert first.registry.acquire(SPEC) is not second.registry.acquire(SPEC)

    def test_cache_size_bounds_registry(self, counter_factory) -> None:
        assert RateLimitEngine(counter_factory, cache_size=3).registry.capacity == 3


def test_create_rate_limit_engine_from_settings() -> None:
    engine = create_rate_limit_engine(
        rate_limit_settings=RateLimitSettings(backend="memory", cache_size=7, key_prefix="t"),
    )

    limiter = engine.registry.acquire(SPEC)

    assert isinstance(limiter, InMemoryFixedWindowCounter)
    assert limiter.key_prefix == "t"
    assert engine.registry.capacity == 7


class TestTeardown:
    @pytest.mark.asyncio
    async def test_aclose_releases_limiters_and_owned_store(self) -> None:
        store_client = MagicMock()
        store_client.aclose = AsyncMock()
        with patch(
            "field_quota.adapters.rate_limit.factory.from_url", return_value=store_client
        ) as from_url:
            engine = create_rate_limit_engine(
                rate_limit_settings=RateLimitSettings(
                    backend="redis", redis_url="redis://cache:6379/0"
                ),
            )
        engine.registry.acquire(SPEC)

        await engine.aclose()

        from_url.assert_called_once()
        store_client.aclose.assert_awaited_once()
        assert len(engine.registry) == 0

    @pytest.mark.asyncio
    async def test_aclose_is_idempotent(self) -> None:
        store_client = MagicMock()
        store_client.aclose = AsyncMock()
        engine = RateLimitEngine(
            Mock(), {"store_client": store_client}, owns_store_client=True
        )

        await engine.aclose()
        await engine.aclose()

        store_client.aclose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_injected_store_is_left_open(self, counter_factory) -> None:
        store_client = MagicMock()
        store_client.aclose = AsyncMock()

        async with RateLimitEngine(counter_factory, {"store_client": store_client}) as engine:
            await engine.admit(SPEC, Invocation(parent_type_name="Query", field_name="test"))

        store_client.aclose.assert_not_awaited()
        assert len(engine.registry) == 0
