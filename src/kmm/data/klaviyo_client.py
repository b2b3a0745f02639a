"""
Klaviyo API client.

Read-only client for the Klaviyo REST API (revision 2024-10-15) using
Private API Key authentication. Covers:
- Campaigns and campaign performance reports
- Automation flows, flow actions and flow performance reports
- Segments and lists
- Profiles
- Metrics (used for conversion attribution)
- Account details

Every operation goes through the client's InMemoryKVCache with a TTL class
chosen by how often the resource changes.
"""

from __future__ import annotations

from typing import Any

import httpx
import orjson

from kmm.cache import TTL, InMemoryKVCache, build_key
from kmm.cache.base import CacheStats, Producer
from kmm.config import Settings
from kmm.data.pagination import Page, fetch_all
from kmm.exceptions import ConfigurationError, DataFetchError, RequestTimeoutError
from kmm.logging import get_logger, log_context

logger = get_logger(__name__)

BASE_URL = "https://a.klaviyo.com/api"
API_REVISION = "2024-10-15"
DEFAULT_TIMEOUT = 30.0
REPORT_TIMEOUT = 60.0
FLOW_ACTIONS_PAGE_SIZE = 50

CHANNELS = ("email", "sms", "mobile_push")

CAMPAIGN_FIELDS = (
    "name,status,archived,audiences,send_options,created_at,updated_at,scheduled_at,send_time"
)
FLOW_FIELDS = "name,status,archived,trigger_type,created,updated"
FLOW_ACTION_FIELDS = (
    "action_type,status,created,updated,settings,tracking_options,send_options,render_options"
)
SEGMENT_FIELDS = "name,definition,created,updated"
LIST_FIELDS = "name,created,updated"
PROFILE_FIELDS = "email,first_name,last_name,phone_number,created,updated"
METRIC_FIELDS = "name,created,updated"

DEFAULT_CAMPAIGN_STATISTICS = (
    "recipients",
    "delivered",
    "delivery_rate",
    "opens",
    "opens_unique",
    "open_rate",
    "clicks",
    "clicks_unique",
    "click_rate",
    "bounced",
    "bounce_rate",
    "unsubscribes",
    "unsubscribe_rate",
    "conversions",
    "conversion_value",
    "revenue_per_recipient",
)

FLOW_STATISTICS = (
    "recipients",
    "delivered",
    "opens",
    "opens_unique",
    "clicks",
    "clicks_unique",
    "open_rate",
    "click_rate",
)

PLACED_ORDER_NAMES = ("placed order", "order placed")

TOOLS: tuple[tuple[str, str], ...] = (
    ("get-campaigns", "List campaigns (email/SMS/push)"),
    ("get-campaign", "Get a specific campaign by ID"),
    ("get-campaign-report", "Get campaign performance metrics"),
    ("get-flows", "List automation flows"),
    ("get-flow", "Get a specific flow by ID"),
    ("get-flow-actions", "Get actions (steps) for a flow"),
    ("get-flow-report", "Get flow performance metrics"),
    ("get-segments", "List audience segments"),
    ("get-segment", "Get a specific segment by ID"),
    ("get-lists", "List subscriber lists"),
    ("get-list", "Get a specific list by ID"),
    ("get-profiles", "List profiles with optional filter"),
    ("get-profile", "Get a specific profile by ID"),
    ("get-metrics", "List tracked metrics"),
    ("get-metric", "Get a specific metric by ID"),
    ("get-account", "Get account details"),
    ("cache-stats", "Show cache statistics"),
    ("cache-clear", "Clear all cached data"),
    ("cache-invalidate", "Invalidate a specific cache key"),
)

Timeframe = dict[str, str]


def _timeframe_key(timeframe: Timeframe | None) -> str | None:
    if timeframe is None:
        return None
    return orjson.dumps(timeframe, option=orjson.OPT_SORT_KEYS).decode()


def _any_filter(field: str, ids: list[str] | None) -> str | None:
    if not ids:
        return None
    quoted = ",".join(f'"{i}"' for i in ids)
    return f"any({field},[{quoted}])"


class KlaviyoClient:
    """Client for the Klaviyo REST API.

    Owns its cache. Pass a shared InMemoryKVCache explicitly to let several
    clients see the same entries.
    """

    def __init__(
        self,
        api_key: str | None,
        *,
        cache: InMemoryKVCache | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        report_timeout: float = REPORT_TIMEOUT,
        cache_disabled: bool = False,
        max_pages: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the Klaviyo client.

        Args:
            api_key: Klaviyo private API key.
            cache: Response cache. A new one is created if None.
            timeout: Default request timeout in seconds.
            report_timeout: Timeout for report requests in seconds.
            cache_disabled: Start with the cache bypassed.
            max_pages: Page limit for get_all_flow_actions().
            transport: Optional httpx transport (used by tests).

        Raises:
            ConfigurationError: If api_key is empty.
        """
        if not api_key:
            raise ConfigurationError("Klaviyo API key is required")

        self.api_key = api_key
        self.cache = cache if cache is not None else InMemoryKVCache()
        self.timeout = timeout
        self.report_timeout = report_timeout
        self.max_pages = max_pages
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._cache_disabled = False

        if cache_disabled:
            self.disable_cache()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        cache: InMemoryKVCache | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> KlaviyoClient:
        """Create a client from application settings.

        Raises:
            ConfigurationError: If no API key can be found.
        """
        return cls(
            settings.resolve_api_key(),
            cache=cache,
            timeout=settings.REQUEST_TIMEOUT_SECONDS,
            report_timeout=settings.REPORT_TIMEOUT_SECONDS,
            cache_disabled=settings.CACHE_DISABLED,
            max_pages=settings.MAX_PAGES,
            transport=transport,
        )

    async def __aenter__(self) -> KlaviyoClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client with Klaviyo headers."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=BASE_URL,
                headers={
                    "Authorization": f"Klaviyo-API-Key {self.api_key}",
                    "revision": API_REVISION,
                    "Accept": "application/vnd.api+json",
                    "Content-Type": "application/vnd.api+json",
                },
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    # ==================== Cache Control ====================

    def disable_cache(self) -> None:
        """Bypass the cache for all subsequent requests."""
        self._cache_disabled = True
        self.cache.disable()

    def enable_cache(self) -> None:
        """Re-enable the cache after disable_cache()."""
        self._cache_disabled = False
        self.cache.enable()

    def get_cache_stats(self) -> CacheStats:
        """Return hit/miss counts and the number of cached entries."""
        return self.cache.stats()

    def clear_cache(self) -> int:
        """Clear all cached data and return the number of entries removed."""
        return self.cache.clear()

    def invalidate_cache_key(self, key: str) -> bool:
        """Remove one cache entry. Returns True if it was present."""
        return self.cache.invalidate(key)

    def set_timeout(self, seconds: float) -> None:
        """Set the default request timeout."""
        if seconds <= 0:
            raise ValueError(f"Timeout must be positive, got {seconds}")
        self.timeout = seconds

    async def _cached(
        self,
        resource: str,
        params: dict[str, Any],
        ttl: TTL,
        fetch: Producer[Any],
    ) -> Any:
        key = build_key(resource, params)
        with log_context(resource=resource):
            return await self.cache.get_or_fetch(
                key,
                fetch,
                ttl=ttl,
                bypass_cache=self._cache_disabled,
            )

    # ==================== HTTP Layer ====================

    async def _request(
        self,
        method: str,
        endpoint: str,
        *,
        params: dict[str, str] | None = None,
        body: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        """Make a request to the Klaviyo API.

        Args:
            method: HTTP method (GET, POST).
            endpoint: API path (e.g., "/campaigns").
            params: Query parameters.
            body: JSON:API request body for POST.
            timeout: Override for the default timeout.

        Returns:
            Parsed JSON response.

        Raises:
            RequestTimeoutError: If the request times out.
            DataFetchError: If the API returns a non-2xx status or the request fails.
        """
        client = await self._get_client()
        effective_timeout = timeout if timeout is not None else self.timeout

        logger.info("Requesting Klaviyo", method=method, endpoint=endpoint, params=params)

        try:
            response = await client.request(
                method,
                endpoint,
                params=params,
                content=orjson.dumps(body) if body is not None else None,
                timeout=effective_timeout,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.warning(
                "Klaviyo API error",
                endpoint=endpoint,
                status_code=e.response.status_code,
            )
            raise DataFetchError(
                f"Klaviyo API error ({e.response.status_code})",
                context={
                    "endpoint": endpoint,
                    "status_code": e.response.status_code,
                    "response": e.response.text[:500] if e.response.text else None,
                },
            ) from e
        except httpx.TimeoutException as e:
            logger.warning("Klaviyo request timed out", endpoint=endpoint, timeout=effective_timeout)
            raise RequestTimeoutError(
                f"Klaviyo request timed out after {effective_timeout:g}s",
                context={"endpoint": endpoint, "timeout": effective_timeout},
            ) from e
        except httpx.RequestError as e:
            logger.error("Klaviyo request failed", endpoint=endpoint, error=str(e))
            raise DataFetchError(
                f"Klaviyo request failed: {e}",
                context={"endpoint": endpoint, "error": str(e)},
            ) from e

        try:
            return orjson.loads(response.content)
        except orjson.JSONDecodeError as e:
            raise DataFetchError(
                "Failed to parse Klaviyo response",
                context={"endpoint": endpoint, "error": str(e)},
            ) from e

    @staticmethod
    def _list_params(
        fields_name: str,
        fields: str,
        *,
        filter: str | None = None,
        page_size: int | None = None,
        cursor: str | None = None,
    ) -> dict[str, str]:
        params: dict[str, str] = {}
        if filter:
            params["filter"] = filter
        if page_size:
            params["page[size]"] = str(page_size)
        if cursor:
            params["page[cursor]"] = cursor
        params[f"fields[{fields_name}]"] = fields
        return params

    # ==================== Campaigns ====================

    async def get_campaigns(
        self,
        channel: str = "email",
        filter: str | None = None,
        page_size: int | None = None,
        cursor: str | None = None,
    ) -> dict[str, Any]:
        """List campaigns for a channel. Cached for 15 minutes.

        Args:
            channel: "email", "sms" or "mobile_push". Klaviyo requires a channel filter.
            filter: Additional Klaviyo filter expression, ANDed with the channel.
            page_size: Results per page.
            cursor: Pagination cursor.
        """
        if channel not in CHANNELS:
            raise ValueError(f"channel must be one of {', '.join(CHANNELS)}, got {channel!r}")

        channel_filter = f"equals(messages.channel,'{channel}')"
        combined = f"and({channel_filter},{filter})" if filter else channel_filter

        async def fetch() -> dict[str, Any]:
            params = self._list_params(
                "campaign",
                CAMPAIGN_FIELDS,
                filter=combined,
                page_size=page_size,
                cursor=cursor,
            )
            return await self._request("GET", "/campaigns", params=params)

        return await self._cached(
            "campaigns",
            {"channel": channel, "filter": filter, "page_size": page_size, "cursor": cursor},
            TTL.FIFTEEN_MINUTES,
            fetch,
        )

    async def get_campaign(self, campaign_id: str) -> dict[str, Any]:
        """Get a single campaign. Cached for 15 minutes."""
        return await self._cached(
            "campaign",
            {"id": campaign_id},
            TTL.FIFTEEN_MINUTES,
            lambda: self._request("GET", f"/campaigns/{campaign_id}"),
        )

    async def get_campaign_report(
        self,
        conversion_metric_id: str,
        campaign_ids: list[str] | None = None,
        timeframe: Timeframe | None = None,
        statistics: list[str] | None = None,
    ) -> dict[str, Any]:
        """Get campaign performance statistics. Cached for 5 minutes.

        Args:
            conversion_metric_id: Metric used for conversion attribution
                (see find_placed_order_metric_id()).
            campaign_ids: Restrict the report to these campaigns.
            timeframe: {"key": "last_30_days"} or {"start": ..., "end": ...}.
            statistics: Statistics to include. Defaults to common engagement
                and conversion metrics.
        """
        stats = list(statistics) if statistics else list(DEFAULT_CAMPAIGN_STATISTICS)

        async def fetch() -> dict[str, Any]:
            attributes: dict[str, Any] = {
                "statistics": stats,
                "conversion_metric_id": conversion_metric_id,
            }
            if timeframe:
                attributes["timeframe"] = timeframe
            report_filter = _any_filter("campaign_id", campaign_ids)
            if report_filter:
                attributes["filter"] = report_filter

            body = {"data": {"type": "campaign-values-report", "attributes": attributes}}
            return await self._request(
                "POST",
                "/campaign-values-reports",
                body=body,
                timeout=self.report_timeout,
            )

        return await self._cached(
            "campaign_report",
            {
                "campaign_ids": ",".join(campaign_ids) if campaign_ids else None,
                "timeframe": _timeframe_key(timeframe),
                "statistics": ",".join(statistics) if statistics else None,
                "conversion_metric_id": conversion_metric_id,
            },
            TTL.FIVE_MINUTES,
            fetch,
        )

    async def find_placed_order_metric_id(self) -> str | None:
        """Find the "Placed Order" metric used for conversion tracking.

        Returns:
            The metric ID, or None if no matching metric exists.
        """
        metrics = await self.get_metrics()
        for metric in metrics.get("data", []):
            name = str(metric.get("attributes", {}).get("name", "")).lower()
            if any(candidate in name for candidate in PLACED_ORDER_NAMES):
                return metric.get("id")
        return None

    # ==================== Flows ====================

    async def get_flows(
        self,
        filter: str | None = None,
        page_size: int | None = None,
        cursor: str | None = None,
    ) -> dict[str, Any]:
        """List automation flows. Cached for 15 minutes."""
        params = self._list_params(
            "flow", FLOW_FIELDS, filter=filter, page_size=page_size, cursor=cursor
        )
        return await self._cached(
            "flows",
            {"filter": filter, "page_size": page_size, "cursor": cursor},
            TTL.FIFTEEN_MINUTES,
            lambda: self._request("GET", "/flows", params=params),
        )

    async def get_flow(self, flow_id: str) -> dict[str, Any]:
        """Get a single flow. Cached for 15 minutes."""
        return await self._cached(
            "flow",
            {"id": flow_id},
            TTL.FIFTEEN_MINUTES,
            lambda: self._request("GET", f"/flows/{flow_id}"),
        )

    async def get_flow_actions(self, flow_id: str, cursor: str | None = None) -> dict[str, Any]:
        """Get one page of actions (steps) for a flow. Cached for 15 minutes.

        Each page is cached under its own cursor, so get_all_flow_actions()
        only refetches pages that have expired.
        """
        params = self._list_params("flow-action", FLOW_ACTION_FIELDS, cursor=cursor)
        params["page[size]"] = str(FLOW_ACTIONS_PAGE_SIZE)

        return await self._cached(
            "flow_actions",
            {"flow_id": flow_id, "cursor": cursor},
            TTL.FIFTEEN_MINUTES,
            lambda: self._request("GET", f"/flows/{flow_id}/flow-actions", params=params),
        )

    async def get_all_flow_actions(self, flow_id: str) -> list[dict[str, Any]]:
        """Get every action for a flow, following pagination links."""

        async def fetch_page(cursor: str | None) -> Page[dict[str, Any]]:
            return Page.from_response(await self.get_flow_actions(flow_id, cursor=cursor))

        return await fetch_all(fetch_page, max_pages=self.max_pages)

    async def get_flow_report(
        self,
        flow_ids: list[str] | None = None,
        timeframe: Timeframe | None = None,
    ) -> dict[str, Any]:
        """Get flow engagement statistics. Cached for 5 minutes."""

        async def fetch() -> dict[str, Any]:
            attributes: dict[str, Any] = {"statistics": list(FLOW_STATISTICS)}
            if timeframe:
                attributes["timeframe"] = timeframe
            report_filter = _any_filter("flow_id", flow_ids)
            if report_filter:
                attributes["filter"] = report_filter

            body = {"data": {"type": "flow-values-report", "attributes": attributes}}
            return await self._request(
                "POST",
                "/flow-values-reports",
                body=body,
                timeout=self.report_timeout,
            )

        return await self._cached(
            "flow_report",
            {
                "flow_ids": ",".join(flow_ids) if flow_ids else None,
                "timeframe": _timeframe_key(timeframe),
            },
            TTL.FIVE_MINUTES,
            fetch,
        )

    # ==================== Segments ====================

    async def get_segments(
        self, page_size: int | None = None, cursor: str | None = None
    ) -> dict[str, Any]:
        """List audience segments. Cached for 1 hour."""
        params = self._list_params("segment", SEGMENT_FIELDS, page_size=page_size, cursor=cursor)
        return await self._cached(
            "segments",
            {"page_size": page_size, "cursor": cursor},
            TTL.HOUR,
            lambda: self._request("GET", "/segments", params=params),
        )

    async def get_segment(self, segment_id: str) -> dict[str, Any]:
        """Get a single segment with its definition. Cached for 1 hour."""
        return await self._cached(
            "segment",
            {"id": segment_id},
            TTL.HOUR,
            lambda: self._request("GET", f"/segments/{segment_id}"),
        )

    # ==================== Lists ====================

    async def get_lists(
        self, page_size: int | None = None, cursor: str | None = None
    ) -> dict[str, Any]:
        """List subscriber lists. Cached for 1 hour."""
        params = self._list_params("list", LIST_FIELDS, page_size=page_size, cursor=cursor)
        return await self._cached(
            "lists",
            {"page_size": page_size, "cursor": cursor},
            TTL.HOUR,
            lambda: self._request("GET", "/lists", params=params),
        )

    async def get_list(self, list_id: str) -> dict[str, Any]:
        """Get a single subscriber list. Cached for 1 hour."""
        return await self._cached(
            "list",
            {"id": list_id},
            TTL.HOUR,
            lambda: self._request("GET", f"/lists/{list_id}"),
        )

    # ==================== Profiles ====================

    async def get_profiles(
        self,
        filter: str | None = None,
        page_size: int | None = None,
        cursor: str | None = None,
    ) -> dict[str, Any]:
        """List profiles, e.g. filter="equals(email,'john@example.com')". Cached for 15 minutes."""
        params = self._list_params(
            "profile", PROFILE_FIELDS, filter=filter, page_size=page_size, cursor=cursor
        )
        return await self._cached(
            "profiles",
            {"filter": filter, "page_size": page_size, "cursor": cursor},
            TTL.FIFTEEN_MINUTES,
            lambda: self._request("GET", "/profiles", params=params),
        )

    async def get_profile(self, profile_id: str) -> dict[str, Any]:
        """Get a single profile. Cached for 15 minutes."""
        return await self._cached(
            "profile",
            {"id": profile_id},
            TTL.FIFTEEN_MINUTES,
            lambda: self._request("GET", f"/profiles/{profile_id}"),
        )

    # ==================== Metrics ====================

    async def get_metrics(
        self, page_size: int | None = None, cursor: str | None = None
    ) -> dict[str, Any]:
        """List tracked metrics such as "Placed Order". Cached for 1 hour."""
        params = self._list_params("metric", METRIC_FIELDS, page_size=page_size, cursor=cursor)
        return await self._cached(
            "metrics",
            {"page_size": page_size, "cursor": cursor},
            TTL.HOUR,
            lambda: self._request("GET", "/metrics", params=params),
        )

    async def get_metric(self, metric_id: str) -> dict[str, Any]:
        """Get a single metric. Cached for 1 hour."""
        return await self._cached(
            "metric",
            {"id": metric_id},
            TTL.HOUR,
            lambda: self._request("GET", f"/metrics/{metric_id}"),
        )

    # ==================== Account ====================

    async def get_account(self) -> dict[str, Any]:
        """Get account details (timezone, currency, public key). Cached for 1 hour."""
        return await self._cached(
            "account",
            {},
            TTL.HOUR,
            lambda: self._request("GET", "/accounts"),
        )

    # ==================== Utility ====================

    @staticmethod
    def get_tools() -> list[dict[str, str]]:
        """Return the available CLI commands with descriptions."""
        return [{"name": name, "description": description} for name, description in TOOLS]
