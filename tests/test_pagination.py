"""
Tests for cursor pagination helpers.
"""

from __future__ import annotations

import pytest

from kmm.cache import TTL, InMemoryKVCache, build_key
from kmm.data.pagination import Page, extract_cursor, fetch_all
from kmm.exceptions import DataFetchError

PAGES = {
    None: Page(data=["a1", "a2"], next_cursor="c1"),
    "c1": Page(data=["b1", "b2"], next_cursor="c2"),
    "c2": Page(data=["c1"], next_cursor=None),
}


class TestExtractCursor:
    """Tests for reading the cursor out of links.next."""

    def test_extracts_cursor(self) -> None:
        """Test a typical Klaviyo next link."""
        url = (
            "https://a.klaviyo.com/api/flows/F1/flow-actions/"
            "?page%5Bcursor%5D=bmV4dDo6aWQ6OjQz&page%5Bsize%5D=50"
        )

        assert extract_cursor(url) == "bmV4dDo6aWQ6OjQz"

    def test_unencoded_brackets(self) -> None:
        """Test links that do not percent-encode the brackets."""
        url = "https://a.klaviyo.com/api/segments/?page[cursor]=abc123"

        assert extract_cursor(url) == "abc123"

    def test_missing_link(self) -> None:
        """Test that no next link means no cursor."""
        assert extract_cursor(None) is None
        assert extract_cursor("") is None

    def test_link_without_cursor(self) -> None:
        """Test a next link that carries no cursor parameter."""
        assert extract_cursor("https://a.klaviyo.com/api/lists/?page[size]=10") is None


class TestPageFromResponse:
    """Tests for Page.from_response."""

    def test_builds_page_with_cursor(self) -> None:
        """Test data and cursor extraction from a list response."""
        response = {
            "data": [{"id": "1"}, {"id": "2"}],
            "links": {"next": "https://a.klaviyo.com/api/metrics/?page%5Bcursor%5D=xyz"},
        }

        page = Page.from_response(response)

        assert page.data == [{"id": "1"}, {"id": "2"}]
        assert page.next_cursor == "xyz"

    def test_last_page(self) -> None:
        """Test a response with no next link."""
        page = Page.from_response({"data": [{"id": "9"}], "links": {"next": None}})

        assert page.next_cursor is None

    def test_missing_fields(self) -> None:
        """Test an empty response body."""
        page = Page.from_response({})

        assert page.data == []
        assert page.next_cursor is None


class TestFetchAll:
    """Tests for fetch_all."""

    @pytest.mark.asyncio
    async def test_concatenates_pages_in_order(self) -> None:
        """Test three pages are fetched once each and joined in order."""
        cursors: list[str | None] = []

        async def fetch_page(cursor: str | None) -> Page[str]:
            cursors.append(cursor)
            return PAGES[cursor]

        items = await fetch_all(fetch_page)

        assert items == ["a1", "a2", "b1", "b2", "c1"]
        assert cursors == [None, "c1", "c2"]

    @pytest.mark.asyncio
    async def test_single_page(self) -> None:
        """Test a result that fits on one page."""

        async def fetch_page(cursor: str | None) -> Page[int]:
            return Page(data=[1, 2, 3])

        assert await fetch_all(fetch_page) == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_no_deduplication(self) -> None:
        """Test that repeated items across pages are all kept."""
        pages = {None: Page(data=["x"], next_cursor="n"), "n": Page(data=["x"])}

        async def fetch_page(cursor: str | None) -> Page[str]:
            return pages[cursor]

        assert await fetch_all(fetch_page) == ["x", "x"]

    @pytest.mark.asyncio
    async def test_max_pages_guard(self) -> None:
        """Test that a cursor that never ends is stopped by max_pages."""
        calls = 0

        async def fetch_page(cursor: str | None) -> Page[int]:
            nonlocal calls
            calls += 1
            return Page(data=[calls], next_cursor="same")

        with pytest.raises(DataFetchError) as exc_info:
            await fetch_all(fetch_page, max_pages=4)

        assert calls == 4
        assert exc_info.value.context["max_pages"] == 4

    @pytest.mark.asyncio
    async def test_max_pages_not_hit_on_last_page(self) -> None:
        """Test that finishing exactly at the limit is not an error."""

        async def fetch_page(cursor: str | None) -> Page[str]:
            return PAGES[cursor]

        assert len(await fetch_all(fetch_page, max_pages=3)) == 5

    @pytest.mark.asyncio
    async def test_cached_pages_are_reused(self, cache: InMemoryKVCache) -> None:
        """Test that a second fetch_all is served entirely from cache."""
        network_calls: list[str | None] = []

        async def fetch_page(cursor: str | None) -> Page[str]:
            async def produce() -> Page[str]:
                network_calls.append(cursor)
                return PAGES[cursor]

            key = build_key("flow_actions", {"flow_id": "F1", "cursor": cursor})
            return await cache.get_or_fetch(key, produce, ttl=TTL.FIFTEEN_MINUTES)

        first = await fetch_all(fetch_page)
        second = await fetch_all(fetch_page)

        assert first == second == ["a1", "a2", "b1", "b2", "c1"]
        assert network_calls == [None, "c1", "c2"]
        assert cache.stats().size == 3
        assert cache.stats().hits == 3

    @pytest.mark.asyncio
    async def test_only_invalidated_pages_refetch(self, cache: InMemoryKVCache) -> None:
        """Test that an invalidated page is the only one fetched again."""
        network_calls: list[str | None] = []

        async def fetch_page(cursor: str | None) -> Page[str]:
            async def produce() -> Page[str]:
                network_calls.append(cursor)
                return PAGES[cursor]

            key = build_key("flow_actions", {"flow_id": "F1", "cursor": cursor})
            return await cache.get_or_fetch(key, produce, ttl=TTL.FIFTEEN_MINUTES)

        await fetch_all(fetch_page)
        cache.invalidate(build_key("flow_actions", {"flow_id": "F1", "cursor": "c1"}))
        await fetch_all(fetch_page)

        assert network_calls == [None, "c1", "c2", "c1"]
