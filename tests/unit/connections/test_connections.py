"""
Unit tests for connection loading and status updates.
"""

import json
from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from storesync.connections import PostgresConnectionRepository, require_syncable
from storesync.kernel.errors import ConnectionInactiveError, ConnectionNotFoundError
from tests.support.stores import FakeConnectionRepository, make_connection

pytestmark = pytest.mark.unit


@pytest.mark.asyncio
async def test_require_syncable_returns_active_connection():
    repo = FakeConnectionRepository()
    repo.add(make_connection())

    connection = await require_syncable(repo, "conn-1")

    assert connection.shop == "demo.myshopify.com"


@pytest.mark.asyncio
async def test_require_syncable_missing_connection():
    with pytest.raises(ConnectionNotFoundError):
        await require_syncable(FakeConnectionRepository(), "conn-404")


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "overrides",
    [
        {"status": "disconnected"},
        {"access_token": None},
        {"shop": None},
    ],
)
async def test_require_syncable_rejects_unusable_connection(overrides):
    repo = FakeConnectionRepository()
    repo.add(make_connection(**overrides))

    with pytest.raises(ConnectionInactiveError):
        await require_syncable(repo, "conn-1")


def test_connection_repr_hides_token():
    assert "shpat_test" not in repr(make_connection())


@pytest.mark.asyncio
async def test_get_maps_row():
    session = AsyncMock()
    result = MagicMock()
    result.mappings.return_value.first.return_value = {
        "id": "conn-1",
        "brand_id": "brand-1",
        "platform_type": "shopify",
        "shop": "demo.myshopify.com",
        "access_token": "shpat_test",
        "status": "active",
        "sync_status": None,
        "metadata": {"sync_stage": "historical_import"},
        "last_synced_at": None,
    }
    session.execute.return_value = result

    @asynccontextmanager
    async def fake_session():
        yield session

    with patch("storesync.connections.repository.get_db_session", fake_session):
        connection = await PostgresConnectionRepository().get("conn-1")

    assert connection.is_active
    assert connection.sync_status == "not_started"
    assert connection.metadata == {"sync_stage": "historical_import"}


@pytest.mark.asyncio
async def test_update_sync_status_merges_metadata():
    session = AsyncMock()

    @asynccontextmanager
    async def fake_session():
        yield session

    with patch("storesync.connections.repository.get_db_session", fake_session):
        await PostgresConnectionRepository().update_sync_status(
            "conn-1",
            "completed",
            metadata={"sync_stage": "completed"},
        )

    params = session.execute.call_args.args[1]
    assert params["sync_status"] == "completed"
    assert json.loads(params["metadata"]) == {"sync_stage": "completed"}
    assert params["last_synced_at"] is not None
