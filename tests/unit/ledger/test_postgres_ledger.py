"""
Unit tests for PostgresEtlJobLedger.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from storesync.kernel.errors import InvalidLedgerTransitionError, NotFoundError
from storesync.ledger.models import EtlJobStatus
from storesync.ledger.repository import PostgresEtlJobLedger

pytestmark = pytest.mark.unit


def _row(**overrides):
    row = {
        "id": 7,
        "brand_id": "brand-1",
        "connection_id": "conn-1",
        "entity": "orders",
        "job_type": "bulk_orders",
        "status": "running",
        "external_bulk_handle": None,
        "rows_written": 0,
        "total_rows": None,
        "progress_pct": 0,
        "error_message": None,
        "created_at": datetime(2026, 1, 1, tzinfo=timezone.utc),
        "started_at": datetime(2026, 1, 1, tzinfo=timezone.utc),
        "completed_at": None,
        "failed_at": None,
    }
    row.update(overrides)
    return row


def _result(*, first=None, one=None, all_rows=None):
    result = MagicMock()
    result.mappings.return_value.first.return_value = first
    result.mappings.return_value.one.return_value = one
    result.mappings.return_value.all.return_value = all_rows or []
    return result


def _patched(session):
    @asynccontextmanager
    async def fake_session():
        yield session

    return patch("storesync.ledger.repository.get_db_session", fake_session)


@pytest.mark.asyncio
async def test_create_returns_entry():
    session = AsyncMock()
    session.execute.return_value = _result(one=_row())

    with _patched(session):
        job = await PostgresEtlJobLedger().create(
            brand_id="brand-1",
            connection_id="conn-1",
            entity="orders",
            job_type="bulk_orders",
            status=EtlJobStatus.RUNNING,
        )

    assert job.id == 7
    assert job.status == EtlJobStatus.RUNNING
    params = session.execute.call_args.args[1]
    assert params["status"] == "running"
    assert params["started_at"] is not None


@pytest.mark.asyncio
async def test_update_completes_running_entry():
    session = AsyncMock()
    session.execute.side_effect = [
        _result(first=_row()),
        _result(one=_row(status="completed", rows_written=12, progress_pct=100)),
    ]

    with _patched(session):
        job = await PostgresEtlJobLedger().update(7, status=EtlJobStatus.COMPLETED, rows_written=12)

    assert job.status == EtlJobStatus.COMPLETED
    assert job.rows_written == 12
    params = session.execute.call_args_list[1].args[1]
    assert params["status"] == "completed"
    assert params["completed_at"] is not None
    assert params["id"] == 7


@pytest.mark.asyncio
async def test_update_rejects_regression():
    session = AsyncMock()
    session.execute.return_value = _result(first=_row(status="completed"))

    with _patched(session), pytest.raises(InvalidLedgerTransitionError):
        await PostgresEtlJobLedger().update(7, status=EtlJobStatus.RUNNING)

    assert session.execute.await_count == 1


@pytest.mark.asyncio
async def test_update_missing_entry():
    session = AsyncMock()
    session.execute.return_value = _result(first=None)

    with _patched(session), pytest.raises(NotFoundError):
        await PostgresEtlJobLedger().update(99, rows_written=1)


@pytest.mark.asyncio
async def test_list_for_brand_filters_job_types():
    session = AsyncMock()
    session.execute.return_value = _result(all_rows=[_row(id=2), _row(id=1)])

    with _patched(session):
        jobs = await PostgresEtlJobLedger().list_for_brand(
            "brand-1",
            connection_id="conn-1",
            job_types=("bulk_orders",),
        )

    assert [job.id for job in jobs] == [2, 1]
    statement, params = session.execute.call_args.args
    assert "job_type = ANY(:job_types)" in str(statement)
    assert params["job_types"] == ["bulk_orders"]
    assert params["connection_id"] == "conn-1"
