"""
Cursor pagination over Klaviyo list endpoints.

Klaviyo list responses carry the next page as a full URL in
``links.next``; the cursor is its ``page[cursor]`` query parameter.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar
from urllib.parse import parse_qs, urlparse

from kmm.exceptions import DataFetchError
from kmm.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

CURSOR_PARAM = "page[cursor]"


@dataclass(frozen=True)
class Page(Generic[T]):
    """One page of results and the cursor for the following page."""

    data: list[T] = field(default_factory=list)
    next_cursor: str | None = None

    @classmethod
    def from_response(cls, response: Mapping[str, Any]) -> Page[Any]:
        """Build a page from a JSON:API list response."""
        links = response.get("links") or {}
        return cls(
            data=list(response.get("data") or []),
            next_cursor=extract_cursor(links.get("next")),
        )


def extract_cursor(next_url: str | None) -> str | None:
    """Pull the page cursor out of a ``links.next`` URL.

    Returns:
        The cursor, or None when there is no next link or it has no cursor.
    """
    if not next_url:
        return None
    values = parse_qs(urlparse(next_url).query).get(CURSOR_PARAM)
    if not values or not values[0]:
        return None
    return values[0]


async def fetch_all(
    fetch_page: Callable[[str | None], Awaitable[Page[T]]],
    *,
    max_pages: int | None = None,
) -> list[T]:
    """Fetch every page and concatenate the results in order.

    Args:
        fetch_page: Called with None first, then with each returned cursor.
        max_pages: Optional upper bound on the number of pages requested.

    Returns:
        All items, page by page, in the order the API returned them.

    Raises:
        DataFetchError: If max_pages is reached while a next cursor remains.
    """
    items: list[T] = []
    cursor: str | None = None
    pages = 0

    while True:
        page = await fetch_page(cursor)
        pages += 1
        items.extend(page.data)
        cursor = page.next_cursor
        if not cursor:
            break
        if max_pages is not None and pages >= max_pages:
            raise DataFetchError(
                "Pagination did not finish within the page limit",
                context={"max_pages": max_pages, "next_cursor": cursor},
            )

    logger.debug("Fetched all pages", pages=pages, items=len(items))
    return items
