"""Bounded LRU registry of counter clients keyed by quota shape.

Protected operations usually share a handful of distinct quotas. Keying by
quota shape instead of by operation lets every operation declaring the same
``(limit, duration)`` reuse one store-facing client.
"""

from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from typing import Any, Callable, Mapping

from field_quota.adapters.rate_limit.base import AbstractCounterClient
from field_quota.core.errors import InfrastructureError
from field_quota.core.validation import QuotaSpec

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 100

LimiterFactory = Callable[..., AbstractCounterClient]


class LimiterRegistry:
    """Thread-safe, in-memory LRU mapping of quota shape to counter client.

    Eviction only drops the registry's reference; the evicted client is not
    notified and store-side state is left to the store.

    Attributes:
        capacity: Maximum number of counter clients kept.
    """

    def __init__(
        self,
        limiter_factory: LimiterFactory,
        limiter_options: Mapping[str, Any] | None = None,
        capacity: int = DEFAULT_CAPACITY,
    ) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self._factory = limiter_factory
        self._options = dict(limiter_options or {})
        self.capacity = capacity
        self._store: OrderedDict[str, AbstractCounterClient] = OrderedDict()
        self._lock = threading.RLock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def __repr__(self) -> str:  # pragma: no cover - representation only
        return (
            f"LimiterRegistry(capacity={self.capacity}, size={len(self._store)}, "
            f"hits={self._hits}, misses={self._misses}, evictions={self._evictions})"
        )

    def __len__(self) -> int:
        return len(self._store)

    def __contains__(self, spec: object) -> bool:
        return isinstance(spec, QuotaSpec) and spec.cache_key in self._store

    def keys(self) -> list[str]:
        """Cache keys ordered from least to most recently used."""
        with self._lock:
            return list(self._store)

    def acquire(self, spec: QuotaSpec) -> AbstractCounterClient:
        """Return the counter client bound to ``spec``, creating it on first use.

        The caller is expected to have validated ``spec`` already.

        Args:
            spec: Quota shape to meter against.

        Returns:
            Counter client shared by every spec with the same shape.

        Raises:
            InfrastructureError: If the limiter factory fails.
        """

        cache_key = spec.cache_key

        with self._lock:
            limiter = self._store.get(cache_key)
            if limiter is not None:
                self._hits += 1
                self._store.move_to_end(cache_key)  # mark as recently used
                return limiter

            self._misses += 1
            # Build before evicting so a failing factory leaves the registry intact
            limiter = self._create(spec)

            if len(self._store) >= self.capacity:
                # popitem(last=False) removes the least recently used entry
                evicted_key, _ = self._store.popitem(last=False)
                self._evictions += 1
                logger.debug(
                    "limiter_registry.evicted",
                    extra={"cache_key": evicted_key, "capacity": self.capacity},
                )

            self._store[cache_key] = limiter
            logger.debug(
                "limiter_registry.created",
                extra={"cache_key": cache_key, "size": len(self._store)},
            )
            return limiter

    def _create(self, spec: QuotaSpec) -> AbstractCounterClient:
        try:
            return self._factory(
                window_seconds=spec.window_seconds,
                quota=spec.quota,
                **self._options,
            )
        except Exception as exc:
            logger.error(
                "limiter_registry.factory_failed",
                extra={
                    "cache_key": spec.cache_key,
                    "error_type": type(exc).__name__,
                    "error_msg": str(exc),
                },
            )
            raise InfrastructureError(
                details={
                    "quota": spec.quota,
                    "window_seconds": spec.window_seconds,
                    "error_type": type(exc).__name__,
                },
            ) from exc

    def clear(self) -> None:
        """Drop every counter client and reset counters."""

        with self._lock:
            self._store.clear()
            self._hits = 0
            self._misses = 0
            self._evictions = 0

    def stats(self) -> dict[str, int]:
        """Return lightweight registry metrics."""

        with self._lock:
            return {
                "capacity": self.capacity,
                "entries": len(self._store),
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
            }
