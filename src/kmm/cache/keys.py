"""
Cache key construction.

A key is the resource token, optionally followed by ``:`` and the
URL-encoded parameter bag sorted by name. Parameters whose value is None
are dropped so that omitted options and explicit ``None`` share a slot.
"""

from __future__ import annotations

from collections.abc import Mapping
from urllib.parse import urlencode

Scalar = str | int | float | bool


def _encode_value(name: str, value: Scalar) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (str, int, float)):
        return str(value)
    raise TypeError(
        f"Cache key parameter {name!r} must be a scalar, got {type(value).__name__}"
    )


def build_key(resource: str, params: Mapping[str, Scalar | None] | None = None) -> str:
    """Build a deterministic cache key for a resource request.

    Args:
        resource: Resource token (e.g., "campaigns", "flow_actions").
        params: Request options. Order does not matter; None values are ignored.

    Returns:
        The cache key string.

    Raises:
        ValueError: If resource is empty.
        TypeError: If a parameter value is not a scalar.

    Example:
        >>> build_key("flow_actions", {"flow_id": "F1", "cursor": None})
        'flow_actions:flow_id=F1'
    """
    if not resource:
        raise ValueError("Cache key resource must be a non-empty string")

    items = sorted(
        (name, _encode_value(name, value))
        for name, value in (params or {}).items()
        if value is not None
    )
    if not items:
        return resource
    return f"{resource}:{urlencode(items)}"
