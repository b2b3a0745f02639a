"""
In-memory key-value cache with TTL expiry.

InMemoryKVCache is owned by a single client instance and lives for the
process lifetime. It provides:
- get/set/invalidate/clear with lazy eviction of expired entries
- A disable/enable switch that bypasses the cache without dropping entries
- Hit/miss counters that survive clear()
- get_or_fetch(), the only path resource operations use to reach the store

Concurrent misses on the same key share one in-flight producer call. A
caller that joins an in-flight call is counted as a hit since it does not
invoke a producer of its own.
"""

from __future__ import annotations

import asyncio
import inspect
import time
from collections.abc import Callable
from typing import Any, TypeVar

from kmm.cache.base import CacheEntry, CacheProtocol, CacheStats, Producer
from kmm.cache.ttl import DEFAULT_TTL
from kmm.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


async def _resolve(producer: Producer[T]) -> T:
    result = producer()
    if inspect.isawaitable(result):
        return await result
    return result


class InMemoryKVCache(CacheProtocol):
    """Dict-backed cache keyed by strings from build_key()."""

    def __init__(
        self,
        namespace: str = "klaviyo-marketing-manager",
        default_ttl: float = DEFAULT_TTL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize an empty cache.

        Args:
            namespace: Label used in log output.
            default_ttl: Lifetime in seconds when set() is called without one.
            clock: Monotonic time source in seconds. Injectable for tests.
        """
        self.namespace = namespace
        self.default_ttl = float(default_ttl)
        self._clock = clock
        self._entries: dict[str, CacheEntry[Any]] = {}
        self._inflight: dict[str, asyncio.Future[Any]] = {}
        self._hits = 0
        self._misses = 0
        self._disabled = False

    @property
    def disabled(self) -> bool:
        """Whether the cache is currently bypassed."""
        return self._disabled

    def disable(self) -> None:
        """Bypass the cache for reads and writes. Existing entries are kept."""
        self._disabled = True
        logger.debug("Cache disabled", namespace=self.namespace)

    def enable(self) -> None:
        """Resume honoring and populating the cache."""
        self._disabled = False
        logger.debug("Cache enabled", namespace=self.namespace)

    def _live_entry(self, key: str) -> CacheEntry[Any] | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if not entry.is_valid(self._clock()):
            del self._entries[key]
            return None
        return entry

    def _purge_expired(self) -> None:
        now = self._clock()
        expired = [k for k, entry in self._entries.items() if not entry.is_valid(now)]
        for k in expired:
            del self._entries[k]

    def get(self, key: str) -> Any | None:
        """Return the unexpired value for key, or None.

        A stored None is indistinguishable from a missing entry here. Use
        get_or_fetch() when None is a meaningful result.
        """
        if self._disabled:
            return None
        entry = self._live_entry(key)
        if entry is None:
            self._misses += 1
            return None
        self._hits += 1
        return entry.value

    def set(self, key: str, value: Any, ttl_seconds: float | None = None) -> None:
        if self._disabled:
            return
        lifetime = self.default_ttl if ttl_seconds is None else float(ttl_seconds)
        if lifetime <= 0:
            raise ValueError(f"TTL must be positive, got {lifetime}")
        now = self._clock()
        self._entries[key] = CacheEntry(
            value=value,
            expires_at=now + lifetime,
            inserted_at=now,
        )

    def invalidate(self, key: str) -> bool:
        """Remove key from the cache.

        Returns:
            True only if a live entry was removed. An expired entry is
            dropped as well but reported as False, since get() would
            already have treated it as absent.
        """
        entry = self._entries.pop(key, None)
        return entry is not None and entry.is_valid(self._clock())

    def clear(self) -> int:
        self._purge_expired()
        count = len(self._entries)
        self._entries.clear()
        logger.debug("Cache cleared", namespace=self.namespace, entries=count)
        return count

    def stats(self) -> CacheStats:
        self._purge_expired()
        return CacheStats(hits=self._hits, misses=self._misses, size=len(self._entries))

    def keys(self) -> list[str]:
        """Return the keys of all unexpired entries."""
        self._purge_expired()
        return sorted(self._entries)

    async def get_or_fetch(
        self,
        key: str,
        producer: Producer[T],
        *,
        ttl: float | None = None,
        bypass_cache: bool = False,
    ) -> T:
        """Return the cached value for key, or call producer once and store it.

        Args:
            key: Cache key from build_key().
            producer: Zero-argument callable returning the value or an awaitable.
            ttl: Lifetime in seconds for a freshly produced value.
            bypass_cache: Call producer without reading or writing the cache.

        Returns:
            The cached or freshly produced value.

        Raises:
            Whatever producer raises. Nothing is stored in that case.
        """
        if bypass_cache or self._disabled:
            logger.debug("Cache bypassed", key=key)
            return await _resolve(producer)

        entry = self._live_entry(key)
        if entry is not None:
            self._hits += 1
            logger.debug("Cache hit", key=key)
            return entry.value

        task = self._inflight.get(key)
        if task is not None:
            self._hits += 1
            logger.debug("Joined in-flight request", key=key)
        else:
            self._misses += 1
            logger.debug("Cache miss", key=key)
            task = asyncio.ensure_future(self._fill(key, producer, ttl))
            self._inflight[key] = task

        # Cancelling one caller must not cancel the fetch other callers share.
        return await asyncio.shield(task)

    async def _fill(self, key: str, producer: Producer[T], ttl: float | None) -> T:
        """Run producer for an in-flight key and store its result."""
        try:
            value = await _resolve(producer)
            self.set(key, value, ttl)
            return value
        finally:
            if self._inflight.get(key) is asyncio.current_task():
                del self._inflight[key]
