"""
Unit tests for the Postgres fact store.
"""

import json
from contextlib import asynccontextmanager
from datetime import date, datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from storesync.storage.facts import TABLE_KEYS, PostgresFactStore, dedupe_rows

pytestmark = pytest.mark.unit


def _patched(session):
    @asynccontextmanager
    async def fake_session():
        yield session

    return patch("storesync.storage.facts.get_db_session", fake_session)


def _customer(customer_id: str, email: str, addresses=None):
    return {
        "brand_id": "brand-1",
        "customer_id": customer_id,
        "connection_id": "conn-1",
        "email": email,
        "addresses": addresses,
        "synced_at": datetime(2026, 1, 1, tzinfo=timezone.utc),
    }


def test_table_keys_are_natural_keys():
    assert TABLE_KEYS["shopify_orders"] == ("brand_id", "order_id")
    assert TABLE_KEYS["shopify_line_items"] == ("brand_id", "order_id", "line_item_id")
    assert TABLE_KEYS["shopify_customers"] == ("brand_id", "customer_id")


def test_dedupe_rows_last_wins():
    rows = [
        {"brand_id": "b", "order_id": "1", "name": "#1001"},
        {"brand_id": "b", "order_id": "2", "name": "#1002"},
        {"brand_id": "b", "order_id": "1", "name": "#1001-edited"},
    ]

    deduped = dedupe_rows(rows, ("brand_id", "order_id"))

    assert len(deduped) == 2
    assert {row["name"] for row in deduped} == {"#1001-edited", "#1002"}


@pytest.mark.asyncio
async def test_upsert_rows_writes_once_per_key():
    session = AsyncMock()
    addresses = [{"city": "Austin"}]

    with _patched(session):
        written = await PostgresFactStore().upsert_rows(
            "shopify_customers",
            [
                _customer("c-1", "old@example.com"),
                _customer("c-1", "new@example.com", addresses),
                _customer("c-2", "two@example.com"),
            ],
        )

    assert written == 2
    statement, params = session.execute.call_args.args
    sql = str(statement)
    assert "ON CONFLICT (brand_id, customer_id) DO UPDATE SET" in sql
    assert "CAST(:addresses AS jsonb)" in sql
    assert "email = EXCLUDED.email" in sql
    assert "brand_id = EXCLUDED.brand_id" not in sql

    by_id = {row["customer_id"]: row for row in params}
    assert by_id["c-1"]["email"] == "new@example.com"
    assert json.loads(by_id["c-1"]["addresses"]) == addresses
    assert by_id["c-2"]["addresses"] is None
    # Columns missing from the row are bound as NULL.
    assert by_id["c-2"]["phone"] is None


@pytest.mark.asyncio
async def test_upsert_rows_empty_is_noop():
    session = AsyncMock()

    with _patched(session):
        assert await PostgresFactStore().upsert_rows("shopify_orders", []) == 0

    session.execute.assert_not_called()


@pytest.mark.asyncio
async def test_upsert_rows_unknown_table():
    with pytest.raises(ValueError):
        await PostgresFactStore().upsert_rows("woo_orders", [{"id": 1}])


@pytest.mark.asyncio
async def test_refresh_order_line_counts_skips_empty():
    session = AsyncMock()

    with _patched(session):
        await PostgresFactStore().refresh_order_line_counts("brand-1", [])
        await PostgresFactStore().refresh_order_line_counts("brand-1", ["2", "1", "2"])

    assert session.execute.await_count == 1
    params = session.execute.call_args.args[1]
    assert params == {"brand_id": "brand-1", "order_ids": ["1", "2"]}


@pytest.mark.asyncio
async def test_daily_activity_maps_rows():
    last_write = datetime(2026, 1, 13, 23, 59, 30, tzinfo=timezone.utc)
    result = MagicMock()
    result.mappings.return_value.all.return_value = [
        {"day": date(2026, 1, 13), "row_count": 4, "last_write": last_write},
    ]
    session = AsyncMock()
    session.execute.return_value = result

    with _patched(session):
        activity = await PostgresFactStore().daily_activity(
            brand_id="brand-1",
            platform="shopify",
            start=datetime(2026, 1, 1, tzinfo=timezone.utc),
            end=datetime(2026, 1, 15, tzinfo=timezone.utc),
            timezone_name="UTC",
        )

    assert activity[date(2026, 1, 13)].row_count == 4
    assert activity[date(2026, 1, 13)].last_write == last_write
    statement, params = session.execute.call_args.args
    assert "FROM shopify_orders" in str(statement)
    assert params["tz"] == "UTC"


@pytest.mark.asyncio
async def test_daily_activity_unknown_platform():
    with pytest.raises(ValueError):
        await PostgresFactStore().daily_activity(
            brand_id="brand-1",
            platform="woocommerce",
            start=datetime(2026, 1, 1, tzinfo=timezone.utc),
            end=datetime(2026, 1, 2, tzinfo=timezone.utc),
            timezone_name="UTC",
        )
