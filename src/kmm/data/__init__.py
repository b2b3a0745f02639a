"""
Data fetching package.

This package handles reading from the Klaviyo REST API:
- KlaviyoClient - per-resource operations with response caching
- Pagination helpers for cursor-based list endpoints
"""

from kmm.data.klaviyo_client import KlaviyoClient
from kmm.data.pagination import Page, extract_cursor, fetch_all

__all__ = [
    "KlaviyoClient",
    "Page",
    "extract_cursor",
    "fetch_all",
]
