"""
Base classes for caching.

This module defines:
- CacheEntry: Wrapper for a cached value with expiry and insertion time
- CacheStats: Hit/miss counters and current size
- CacheProtocol: Abstract interface for cache implementations

Store operations are synchronous. Only get_or_fetch awaits, and only on
the producer it is given.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass
from typing import Any, Generic, TypeVar

T = TypeVar("T")

Producer = Callable[[], Awaitable[T] | T]


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    """A cached value.

    Attributes:
        value: The stored result, opaque to the cache.
        expires_at: Clock reading after which the entry is stale.
        inserted_at: Clock reading when the entry was stored.
    """

    value: T
    expires_at: float
    inserted_at: float

    def is_valid(self, now: float) -> bool:
        """Return True while the entry has not expired."""
        return now < self.expires_at


@dataclass(frozen=True)
class CacheStats:
    """Snapshot of cache counters."""

    hits: int
    misses: int
    size: int

    def to_dict(self) -> dict[str, int]:
        """Convert to a plain dict for JSON output."""
        return asdict(self)


class CacheProtocol(ABC):
    """Abstract interface for cache implementations."""

    @abstractmethod
    def get(self, key: str) -> Any | None:
        """Get an unexpired value from the cache."""
        ...

    @abstractmethod
    def set(self, key: str, value: Any, ttl_seconds: float) -> None:
        """Set a value in the cache."""
        ...

    @abstractmethod
    def invalidate(self, key: str) -> bool:
        """Remove a value from the cache."""
        ...

    @abstractmethod
    def clear(self) -> int:
        """Remove all values from the cache."""
        ...

    @abstractmethod
    def stats(self) -> CacheStats:
        """Return hit/miss counters and current size."""
        ...

    @abstractmethod
    async def get_or_fetch(
        self,
        key: str,
        producer: Producer[T],
        *,
        ttl: float,
        bypass_cache: bool = False,
    ) -> T:
        """Return a cached value or produce, store and return a fresh one."""
        ...
