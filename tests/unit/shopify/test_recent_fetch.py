from __future__ import annotations

from datetime import datetime, timezone

import httpx
import pytest

from storesync.kernel.errors import ConnectionInactiveError, UpstreamError
from storesync.shopify.recent import RecentOrdersClient, next_page_url
from tests.support.stores import InMemoryFactStore, make_connection

pytestmark = pytest.mark.unit

START = datetime(2026, 1, 5, tzinfo=timezone.utc)
END = datetime(2026, 1, 6, tzinfo=timezone.utc)
NEXT = "https://demo.myshopify.com/admin/api/2024-01/orders.json?page_info=abc&limit=250"


def _order(order_id: int, *lines: int) -> dict:
    return {
        "id": order_id,
        "name": f"#{order_id}",
        "total_price": "10.00",
        "created_at": "2026-01-05T12:00:00Z",
        "line_items": [{"id": line, "quantity": 1, "price": "10.00"} for line in lines],
    }


def test_next_page_url_parses_link_header():
    header = f'<https://x/prev>; rel="previous", <{NEXT}>; rel="next"'
    assert next_page_url(header) == NEXT
    assert next_page_url('<https://x/prev>; rel="previous"') is None
    assert next_page_url(None) is None


@pytest.mark.asyncio
async def test_fetch_range_follows_pagination(settings):
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if len(requests) == 1:
            return httpx.Response(
                200,
                json={"orders": [_order(1, 11, 12), {"name": "no id"}]},
                headers={"Link": f'<{NEXT}>; rel="next"'},
            )
        return httpx.Response(200, json={"orders": [_order(2, 21)]})

    store = InMemoryFactStore()
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
        client = RecentOrdersClient(make_connection(), store, http_client=http, settings=settings)
        counts = await client.fetch_range(START, END)

    assert counts == {"orders": 2, "line_items": 3}
    first = requests[0].url.params
    assert first["status"] == "any"
    assert first["created_at_min"] == "2026-01-05T00:00:00Z"
    assert first["created_at_max"] == "2026-01-06T00:00:00Z"
    assert str(requests[1].url) == NEXT
    assert {row["order_id"] for row in store.rows("shopify_orders")} == {"1", "2"}


@pytest.mark.asyncio
async def test_fetch_range_rejected_token(settings):
    async with httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(401))) as http:
        client = RecentOrdersClient(make_connection(), InMemoryFactStore(), http_client=http, settings=settings)
        with pytest.raises(ConnectionInactiveError):
            await client.fetch_range(START, END)


@pytest.mark.asyncio
async def test_fetch_range_server_error_is_upstream(settings, monkeypatch):
    from storesync.shopify import http as shopify_http

    monkeypatch.setattr(shopify_http, "_backoff", lambda attempt, base, maximum: 0)
    async with httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(500))) as http:
        client = RecentOrdersClient(make_connection(), InMemoryFactStore(), http_client=http, settings=settings)
        with pytest.raises(UpstreamError):
            await client.fetch_range(START, END)
