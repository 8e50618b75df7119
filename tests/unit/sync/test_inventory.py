from __future__ import annotations

import json

import httpx
import pytest

from storesync.sync.inventory import InventoryReconciler

pytestmark = pytest.mark.unit


@pytest.mark.asyncio
async def test_trigger_is_skipped_without_url(settings):
    async with httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(500))) as http:
        assert await InventoryReconciler(http, settings).trigger(brand_id="brand-1", connection_id="conn-1") is False


@pytest.mark.asyncio
async def test_trigger_posts_connection_with_secret(settings):
    settings.inventory_sync_url = "https://inventory.internal/sync"
    settings.internal_api_secret = "s3cret"
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(202)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
        ok = await InventoryReconciler(http, settings).trigger(brand_id="brand-1", connection_id="conn-1")

    assert ok is True
    [request] = seen
    assert request.headers["X-Internal-Secret"] == "s3cret"
    assert json.loads(request.content) == {"brandId": "brand-1", "connectionId": "conn-1"}


@pytest.mark.asyncio
async def test_trigger_failures_are_swallowed(settings):
    settings.inventory_sync_url = "https://inventory.internal/sync"

    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused")

    async with httpx.AsyncClient(transport=httpx.MockTransport(refuse)) as http:
        assert await InventoryReconciler(http, settings).trigger(brand_id="brand-1", connection_id="conn-1") is False

    async with httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(503))) as http:
        assert await InventoryReconciler(http, settings).trigger(brand_id="brand-1", connection_id="conn-1") is False
