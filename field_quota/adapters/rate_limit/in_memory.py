"""In-memory fixed-window counter client.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
- Thread-safe: uses a lock around shared state.
"""

from __future__ import annotations

import math
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable

from field_quota.adapters.rate_limit.base import (
    AbstractCounterClient,
    RateLimitRejection,
    RateLimitResult,
)


@dataclass
class _WindowState:
    window_start: float
    count: int


class InMemoryFixedWindowCounter(AbstractCounterClient):
    """Counter client using a fixed time window per key.

    Suited to tests and single-process deployments. Each key gets a window
    that starts on its first consume and lasts ``window_seconds``.

    Important:
        State lives in this instance only. When the limiter registry evicts
        the instance, the counts it held are gone with it.
    """

    def __init__(
        self,
        *,
        window_seconds: int,
        quota: int,
        key_prefix: str = "",
        clock: Callable[[], float] = time.monotonic,
        **options: Any,
    ) -> None:
        """Initialize the in-memory counter.

        Args:
            window_seconds: Size of the fixed window in seconds.
            quota: Maximum number of points per window.
            key_prefix: Namespace prepended to every key.
            clock: Time source returning seconds.

        Raises:
            ValueError: If quota or window_seconds are invalid.
        """
        super().__init__(window_seconds=window_seconds, quota=quota, key_prefix=key_prefix)
        self._clock = clock
        self._lock = threading.RLock()
        self._state_by_key: dict[str, _WindowState] = {}
        self._next_sweep_at: float | None = None

    @property
    def tracked_keys(self) -> int:
        """Number of keys currently holding window state."""
        with self._lock:
            return len(self._state_by_key)

    def _sweep_expired(self, now: float) -> None:
        # At most one full scan per window length
        if self._next_sweep_at is not None and now < self._next_sweep_at:
            return
        self._next_sweep_at = now + self.window_seconds
        expired = [
            key
            for key, state in self._state_by_key.items()
            if now >= state.window_start + self.window_seconds
        ]
        for key in expired:
            del self._state_by_key[key]

    def _get_or_reset_state(self, key: str, now: float) -> _WindowState:
        state = self._state_by_key.get(key)
        if state is None or now >= state.window_start + self.window_seconds:
            state = _WindowState(window_start=now, count=0)
            self._state_by_key[key] = state
        return state

    async def consume(self, key: str, points: int = 1) -> RateLimitResult:
        """Consume points for the provided key.

        Both checks the current window usage and records the consumption,
        including for rejected calls, mirroring how shared stores count.

        Raises:
            ValueError: If key is empty or points is invalid.
            RateLimitRejection: If the key is over quota for this window.
        """
        if points < 1:
            raise ValueError("points must be >= 1")
        if not key:
            raise ValueError("key must be a non-empty string")

        now = self._clock()
        with self._lock:
            self._sweep_expired(now)
            state = self._get_or_reset_state(self.store_key(key), now)
            state.count += points
            ms_before_next = max(
                0, int(math.ceil((state.window_start + self.window_seconds - now) * 1000))
            )
            result = RateLimitResult(
                quota=self.quota,
                remaining_points=max(0, self.quota - state.count),
                consumed_points=state.count,
                ms_before_next=ms_before_next,
            )

        if result.consumed_points > self.quota:
            raise RateLimitRejection(result)
        return result
