"""
Recent narrow-range fetch.

Re-reads orders for a small date range through the REST API instead of a
bulk export. Used to refresh stale days, where the volume is small.
"""

from __future__ import annotations

import re
from datetime import datetime

import httpx
import structlog

from storesync.config import Settings, get_settings
from storesync.connections import Connection
from storesync.kernel.errors import ConnectionInactiveError, RecordParseError, UpstreamError
from storesync.kernel.time import isoformat_z, utc_now
from storesync.shopify.http import request_with_retry
from storesync.shopify.records import transform_rest_line_items, transform_rest_order
from storesync.storage.facts import FactStore

logger = structlog.get_logger()

_NEXT_LINK_RE = re.compile(r'<([^>]+)>;\s*rel="next"')


def next_page_url(link_header: str | None) -> str | None:
    if not link_header:
        return None
    match = _NEXT_LINK_RE.search(link_header)
    return match.group(1) if match else None


class RecentOrdersClient:
    """REST order reader bound to one connection."""

    def __init__(
        self,
        connection: Connection,
        fact_store: FactStore,
        *,
        http_client: httpx.AsyncClient,
        settings: Settings | None = None,
    ) -> None:
        self.connection = connection
        self.fact_store = fact_store
        self.http = http_client
        self.settings = settings or get_settings()

    async def fetch_range(self, start: datetime, end: datetime) -> dict[str, int]:
        """Fetch and upsert every order created in [start, end). Returns row counts."""
        url: str | None = (
            f"https://{self.connection.shop}/admin/api/{self.settings.shopify_api_version}/orders.json"
        )
        params: dict[str, str] | None = {
            "status": "any",
            "created_at_min": isoformat_z(start),
            "created_at_max": isoformat_z(end),
            "limit": str(self.settings.recent_fetch_page_size),
        }
        counts = {"orders": 0, "line_items": 0}
        pages = 0

        while url:
            try:
                response = await request_with_retry(
                    self.http,
                    "GET",
                    url,
                    params=params,
                    headers={"X-Shopify-Access-Token": self.connection.access_token or ""},
                    max_attempts=self.settings.shopify_http_max_attempts,
                    rate_limit_key=f"shopify:{self.connection.shop}",
                    rate_limit_per_minute=self.settings.shopify_rate_limit_per_minute,
                    operation="recent_orders",
                )
            except (httpx.TimeoutException, httpx.NetworkError) as exc:
                raise UpstreamError(message=f"Recent orders request failed: {exc}", code="upstream.network") from exc

            if response.status_code in (401, 403):
                raise ConnectionInactiveError(
                    connection_id=self.connection.id,
                    reason=f"access token rejected ({response.status_code})",
                )
            if response.status_code >= 400:
                raise UpstreamError(
                    message=f"Recent orders request returned HTTP {response.status_code}",
                    code="upstream.http",
                    meta={"status_code": response.status_code},
                )

            pages += 1
            synced_at = utc_now()
            orders: list[dict] = []
            line_items: list[dict] = []
            for raw in response.json().get("orders") or []:
                try:
                    orders.append(
                        transform_rest_order(raw, self.connection.brand_id, self.connection.id, synced_at)
                    )
                    line_items.extend(
                        transform_rest_line_items(raw, self.connection.brand_id, self.connection.id, synced_at)
                    )
                except RecordParseError as exc:
                    logger.warning("Skipping recent order", error=exc.message, connection_id=self.connection.id)

            counts["orders"] += await self.fact_store.upsert_rows("shopify_orders", orders)
            counts["line_items"] += await self.fact_store.upsert_rows("shopify_line_items", line_items)

            # The next-page link already carries the query.
            url = next_page_url(response.headers.get("Link"))
            params = None

        logger.info(
            "Recent orders fetched",
            connection_id=self.connection.id,
            range_start=isoformat_z(start),
            range_end=isoformat_z(end),
            pages=pages,
            **counts,
        )
        return counts
