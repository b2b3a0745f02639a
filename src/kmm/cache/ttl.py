"""
TTL classes for cached Klaviyo resources.

Each resource operation is assigned exactly one class based on how often the
underlying data changes:

- FIVE_MINUTES: report data (campaign and flow performance)
- FIFTEEN_MINUTES: campaigns, flows, flow actions, profiles
- HOUR: segments, lists, metrics, account
"""

from __future__ import annotations

from enum import IntEnum


class TTL(IntEnum):
    """Cache lifetimes in seconds."""

    FIVE_MINUTES = 5 * 60
    FIFTEEN_MINUTES = 15 * 60
    HOUR = 60 * 60


DEFAULT_TTL = TTL.FIFTEEN_MINUTES
