"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests.
Environment variables are set before any import that might load settings.
"""

import os

# CRITICAL: Set this before any imports that might load settings
os.environ["APP_ENV"] = "testing"
os.environ.setdefault("RATE_LIMIT_BACKEND", "memory")
os.environ.setdefault("RATE_LIMIT_CACHE_SIZE", "100")
os.environ.setdefault("LOG_LEVEL", "DEBUG")

from typing import Any

import pytest

from field_quota.adapters.rate_limit.base import (
    AbstractCounterClient,
    RateLimitRejection,
    RateLimitResult,
)
from field_quota.core.engine import RateLimitEngine


class FakeCounter(AbstractCounterClient):
    """Counter client recording every consumed key.

    Raises ``owner.error`` on consume when the owning factory has one set.
    """

    def __init__(self, *, owner: "FakeCounterFactory", **kwargs: Any) -> None:
        window_seconds = kwargs.pop("window_seconds")
        quota = kwargs.pop("quota")
        super().__init__(window_seconds=window_seconds, quota=quota)
        self.owner = owner
        self.options = kwargs
        self.keys: list[str] = []

    async def consume(self, key: str, points: int = 1) -> RateLimitResult:
        self.keys.append(key)
        if self.owner.error is not None:
            raise self.owner.error
        return RateLimitResult(
            quota=self.quota,
            remaining_points=max(0, self.quota - len(self.keys)),
            consumed_points=len(self.keys),
            ms_before_next=self.window_seconds * 1000,
        )


class FakeCounterFactory:
    """Limiter factory tracking the counter clients it builds."""

    def __init__(self) -> None:
        self.created: list[FakeCounter] = []
        self.error: Exception | None = None

    def __call__(self, **kwargs: Any) -> FakeCounter:
        counter = FakeCounter(owner=self, **kwargs)
        self.created.append(counter)
        return counter

    @property
    def consumed_keys(self) -> list[str]:
        return [key for counter in self.created for key in counter.keys]


def quota_rejection(ms_before_next: int, quota: int = 1) -> RateLimitRejection:
    return RateLimitRejection(
        RateLimitResult(
            quota=quota,
            remaining_points=0,
            consumed_points=quota + 1,
            ms_before_next=ms_before_next,
        )
    )


@pytest.fixture
def counter_factory() -> FakeCounterFactory:
    return FakeCounterFactory()


@pytest.fixture
def engine(counter_factory: FakeCounterFactory) -> RateLimitEngine:
    return RateLimitEngine(counter_factory, {"store_client": "fake-store"})


@pytest.fixture
def make_rejection():
    return quota_rejection
