"""Counter client interfaces.

The engine depends on this abstraction (not the concrete implementation) so
store backends can be swapped (in-memory, Redis, ...) without touching the
interception pipeline.
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class RateLimitResult:
    """Outcome of a consume operation.

    Attributes:
        quota: Max points per window.
        remaining_points: Points left in the current window (0 when blocked).
        consumed_points: Points consumed in the current window, this call included.
        ms_before_next: Milliseconds until the current window resets.
    """

    quota: int
    remaining_points: int
    consumed_points: int
    ms_before_next: int

    @property
    def retry_after_seconds(self) -> int:
        return math.ceil(self.ms_before_next / 1000)


class RateLimitRejection(Exception):
    """Raised by ``consume`` when the key has no points left.

    The numeric ``ms_before_next`` attribute is what distinguishes a quota
    rejection from a store failure.
    """

    def __init__(self, result: RateLimitResult) -> None:
        super().__init__(f"No points left, retry in {result.ms_before_next}ms")
        self.result = result
        self.ms_before_next = result.ms_before_next
        self.remaining_points = result.remaining_points
        self.consumed_points = result.consumed_points


class AbstractCounterClient(ABC):
    """Interface for counter clients bound to one quota shape.

    Implementations are constructed with ``window_seconds`` and ``quota``
    plus backend-specific options, and must be safe to share between
    concurrent ``consume`` calls.
    """

    def __init__(
        self,
        *,
        window_seconds: int,
        quota: int,
        key_prefix: str = "",
        **options: Any,
    ) -> None:
        if quota < 1:
            raise ValueError("quota must be >= 1")
        if window_seconds < 1:
            raise ValueError("window_seconds must be >= 1")
        self.window_seconds = window_seconds
        self.quota = quota
        self.key_prefix = key_prefix

    def store_key(self, key: str) -> str:
        """Namespace a subject key for the backing store."""
        return f"{self.key_prefix}:{key}" if self.key_prefix else key

    @abstractmethod
    async def consume(self, key: str, points: int = 1) -> RateLimitResult:
        """Consume points for a given key.

        Args:
            key: Subject key produced by a key generator.
            points: Units to consume (default 1).

        Returns:
            RateLimitResult describing the window after consumption.

        Raises:
            RateLimitRejection: If the key exceeded its quota.
        """
        raise NotImplementedError
