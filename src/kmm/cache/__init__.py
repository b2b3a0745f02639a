"""
Cache package for Klaviyo API responses.

This package provides:
- Key construction (keys.py): Deterministic keys from resource + parameters
- TTL classes (ttl.py): Lifetimes per resource volatility
- Key-value cache (kv_cache.py): In-memory store with get_or_fetch()
"""

from kmm.cache.base import CacheEntry, CacheProtocol, CacheStats
from kmm.cache.keys import build_key
from kmm.cache.kv_cache import InMemoryKVCache
from kmm.cache.ttl import DEFAULT_TTL, TTL

__all__ = [
    "CacheEntry",
    "CacheProtocol",
    "CacheStats",
    "DEFAULT_TTL",
    "InMemoryKVCache",
    "TTL",
    "build_key",
]
