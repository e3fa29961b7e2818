"""Redis-backed fixed-window counter client.

Counts are shared by every process pointing at the same Redis, so the quota
holds across workers. Increment and expiry happen in one Lua script so a
window can never be left without a TTL.

Store errors (``redis.exceptions.RedisError`` and friends) are propagated
unchanged; the engine classifies them as service failures.
"""

from __future__ import annotations

from typing import Any

from redis.asyncio import Redis

from field_quota.adapters.rate_limit.base import (
    AbstractCounterClient,
    RateLimitRejection,
    RateLimitResult,
)

# KEYS[1] = counter key
# ARGV[1] = points to consume
# ARGV[2] = window length in milliseconds
_CONSUME_LUA = """
local consumed = redis.call('INCRBY', KEYS[1], tonumber(ARGV[1]))
local ttl = redis.call('PTTL', KEYS[1])
if ttl < 0 then
  redis.call('PEXPIRE', KEYS[1], tonumber(ARGV[2]))
  ttl = tonumber(ARGV[2])
end
return {consumed, ttl}
"""


class RedisFixedWindowCounter(AbstractCounterClient):
    """Counter client storing one expiring counter per key in Redis."""

    def __init__(
        self,
        *,
        window_seconds: int,
        quota: int,
        store_client: Redis,
        key_prefix: str = "rlflx",
        **options: Any,
    ) -> None:
        """Initialize the Redis counter.

        Args:
            window_seconds: Size of the fixed window in seconds.
            quota: Maximum number of points per window.
            store_client: Shared ``redis.asyncio.Redis`` connection.
            key_prefix: Namespace prepended to every key.

        Raises:
            ValueError: If quota, window_seconds or store_client are invalid.
        """
        super().__init__(window_seconds=window_seconds, quota=quota, key_prefix=key_prefix)
        if store_client is None:
            raise ValueError("store_client is required")
        self._redis = store_client
        # register_script handles the EVALSHA / EVAL fallback
        self._consume_script = store_client.register_script(_CONSUME_LUA)

    async def consume(self, key: str, points: int = 1) -> RateLimitResult:
        """Consume points for the provided key.

        Raises:
            ValueError: If key is empty or points is invalid.
            RateLimitRejection: If the key is over quota for this window.
            redis.exceptions.RedisError: If the store cannot be reached.
        """
        if points < 1:
            raise ValueError("points must be >= 1")
        if not key:
            raise ValueError("key must be a non-empty string")

        consumed, ttl_ms = await self._consume_script(
            keys=[self.store_key(key)],
            args=[points, self.window_seconds * 1000],
        )
        consumed = int(consumed)
        result = RateLimitResult(
            quota=self.quota,
            remaining_points=max(0, self.quota - consumed),
            consumed_points=consumed,
            ms_before_next=max(0, int(ttl_ms)),
        )

        if consumed > self.quota:
            raise RateLimitRejection(result)
        return result
