from __future__ import annotations

from dataclasses import replace
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from storesync.jobs.types import BulkEntity, JobType
from storesync.kernel.errors import (
    BulkOperationConflictError,
    BulkOperationFailedError,
    ConnectionNotFoundError,
    InvalidJobPayloadError,
    UpstreamError,
)
from storesync.ledger.models import EtlJobStatus
from storesync.sync.orchestrator import ShopifySyncOrchestrator
from tests.support.job_queue import FakeJobQueue, make_job
from tests.support.ledger import InMemoryLedger
from tests.support.platform import FakeBulkClient, FakeRecentClient, fixed_clients, handle
from tests.support.stores import FakeConnectionRepository, make_connection

pytestmark = pytest.mark.unit

BASE_PAYLOAD = {"brandId": "brand-1", "connectionId": "conn-1", "shopIdentifier": "demo.myshopify.com"}


@pytest.fixture
def harness(settings):
    queue = FakeJobQueue()
    ledger = InMemoryLedger()
    connections = FakeConnectionRepository()
    connections.add(make_connection())
    bulk = FakeBulkClient()
    recent = FakeRecentClient()
    inventory = AsyncMock()
    orchestrator = ShopifySyncOrchestrator(
        queue=queue,
        ledger=ledger,
        connections=connections,
        clients=fixed_clients(bulk, recent),
        inventory=inventory,
        settings=settings,
    )
    return SimpleNamespace(
        queue=queue,
        ledger=ledger,
        connections=connections,
        bulk=bulk,
        recent=recent,
        inventory=inventory,
        orchestrator=orchestrator,
    )


async def _completed_entry(ledger: InMemoryLedger, entity: str):
    entry = await ledger.create(
        brand_id="brand-1",
        connection_id="conn-1",
        entity=entity,
        job_type=f"bulk_{entity}",
        status=EtlJobStatus.RUNNING,
    )
    return await ledger.update(entry.id, status=EtlJobStatus.COMPLETED, rows_written=1)


# ---------------------------------------------------------------------------
# recent_sync
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_recent_sync_hands_over_to_orders_export(harness):
    result = await harness.orchestrator.handle_recent_sync(make_job("recent_sync", BASE_PAYLOAD))

    [entry] = harness.ledger.by_entity("recent")
    assert entry.status == EtlJobStatus.COMPLETED
    assert entry.job_type == "recent_sync"
    assert entry.rows_written == 0

    [request] = harness.queue.of_type("bulk_orders")
    assert request.payload["entity"] == "orders"
    assert request.resource_key == "shopify-bulk:conn-1"
    assert request.idempotency_key is not None
    assert result == {"etl_job_id": entry.id, "next_job_id": "job-1"}

    connection_id, status, metadata = harness.connections.status_updates[-1]
    assert (connection_id, status) == ("conn-1", "in_progress")
    assert metadata["sync_stage"] == "historical_import"


@pytest.mark.asyncio
async def test_recent_sync_is_idempotent_per_job(harness):
    job = make_job("recent_sync", BASE_PAYLOAD)

    await harness.orchestrator.handle_recent_sync(job)
    await harness.orchestrator.handle_recent_sync(job)

    assert len(harness.queue.of_type("bulk_orders")) == 1


@pytest.mark.asyncio
async def test_recent_sync_for_missing_connection_fails(harness):
    payload = {**BASE_PAYLOAD, "connectionId": "conn-404"}

    with pytest.raises(ConnectionNotFoundError):
        await harness.orchestrator.handle_recent_sync(make_job("recent_sync", payload))

    assert harness.queue.requests == []


# ---------------------------------------------------------------------------
# bulk exports
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_bulk_export_records_handle_and_schedules_poll(harness, settings):
    result = await harness.orchestrator.handle_bulk_export(make_job("bulk_orders", BASE_PAYLOAD))

    [entry] = harness.ledger.by_entity("orders")
    assert entry.status == EtlJobStatus.RUNNING
    assert entry.external_bulk_handle == "op-orders"
    assert entry.started_at is not None

    [poll] = harness.queue.of_type("poll_bulk")
    assert poll.delay_seconds == settings.bulk_poll_interval_seconds
    assert poll.payload["bulkOperationId"] == "op-orders"
    assert poll.payload["entity"] == "orders"
    assert poll.payload["metadata"]["etlJobId"] == entry.id
    assert result["poll_job_id"] == "job-1"
    assert harness.bulk.started == [(BulkEntity.ORDERS, None, None)]


@pytest.mark.asyncio
async def test_conflict_requeues_stage_and_keeps_entry_running(harness, settings):
    harness.bulk.start_results = [
        BulkOperationConflictError(operation_id="gid://shopify/BulkOperation/9", status="RUNNING")
    ]

    result = await harness.orchestrator.handle_bulk_export(make_job("bulk_customers", BASE_PAYLOAD))

    assert result["status"] == "conflict_retry"
    [entry] = harness.ledger.by_entity("customers")
    assert entry.status == EtlJobStatus.RUNNING
    assert entry.external_bulk_handle is None

    [retry] = harness.queue.of_type("bulk_customers")
    assert retry.delay_seconds == settings.bulk_conflict_retry_seconds
    assert retry.payload["metadata"]["etlJobId"] == entry.id

    # The retried stage picks up the same ledger entry.
    await harness.orchestrator.handle_bulk_export(harness.queue.pop("bulk_customers"))

    [entry] = harness.ledger.by_entity("customers")
    assert entry.external_bulk_handle == "op-customers"
    assert len(harness.queue.of_type("poll_bulk")) == 1


@pytest.mark.asyncio
async def test_transient_start_failure_leaves_entry_running(harness):
    harness.bulk.start_results = [UpstreamError(message="HTTP 503")]

    with pytest.raises(UpstreamError):
        await harness.orchestrator.handle_bulk_export(make_job("bulk_orders", BASE_PAYLOAD, attempts=1))

    [entry] = harness.ledger.by_entity("orders")
    assert entry.status == EtlJobStatus.RUNNING
    assert harness.connections.status_updates == []


@pytest.mark.asyncio
async def test_transient_failure_on_last_attempt_fails_entry(harness):
    harness.bulk.start_results = [UpstreamError(message="HTTP 503")]
    job = make_job("bulk_orders", BASE_PAYLOAD, attempts=5, max_attempts=5)

    with pytest.raises(UpstreamError):
        await harness.orchestrator.handle_bulk_export(job)

    [entry] = harness.ledger.by_entity("orders")
    assert entry.status == EtlJobStatus.FAILED
    assert entry.error_message == "HTTP 503"
    assert entry.failed_at is not None
    assert harness.connections.status_updates[-1][1] == "failed"


@pytest.mark.asyncio
async def test_bulk_export_for_missing_connection_writes_no_entry(harness):
    payload = {**BASE_PAYLOAD, "connectionId": "conn-404"}

    with pytest.raises(ConnectionNotFoundError):
        await harness.orchestrator.handle_bulk_export(make_job("bulk_orders", payload))

    assert harness.ledger.jobs == {}
    assert harness.bulk.started == []


@pytest.mark.asyncio
async def test_stage_already_started_is_not_resubmitted(harness):
    entry = await harness.ledger.create(
        brand_id="brand-1",
        connection_id="conn-1",
        entity="orders",
        job_type="bulk_orders",
        status=EtlJobStatus.RUNNING,
    )
    await harness.ledger.update(entry.id, external_bulk_handle="op-existing")
    payload = {**BASE_PAYLOAD, "metadata": {"etlJobId": entry.id}}

    result = await harness.orchestrator.handle_bulk_export(make_job("bulk_orders", payload))

    assert result == {"etl_job_id": entry.id, "status": "already_started"}
    assert harness.bulk.started == []


@pytest.mark.asyncio
async def test_pending_entry_is_promoted_to_running(harness):
    entry = await harness.ledger.create(
        brand_id="brand-1", connection_id="conn-1", entity="orders", job_type="bulk_orders"
    )

    await harness.orchestrator.handle_bulk_export(make_job("bulk_orders", BASE_PAYLOAD))

    updated = await harness.ledger.get(entry.id)
    assert updated.status == EtlJobStatus.RUNNING
    assert len(harness.ledger.by_entity("orders")) == 1


@pytest.mark.asyncio
async def test_stuck_operation_is_cancelled_before_start(harness):
    harness.bulk.existing = handle("gid://shopify/BulkOperation/old", "RUNNING")
    harness.bulk.stuck = True

    await harness.orchestrator.handle_bulk_export(make_job("bulk_products", BASE_PAYLOAD))

    assert harness.bulk.cancelled == ["gid://shopify/BulkOperation/old"]
    assert len(harness.bulk.started) == 1


@pytest.mark.asyncio
async def test_healthy_running_operation_is_left_alone(harness):
    harness.bulk.existing = handle("gid://shopify/BulkOperation/live", "RUNNING")
    harness.bulk.start_results = [
        BulkOperationConflictError(operation_id="gid://shopify/BulkOperation/live", status="RUNNING")
    ]

    result = await harness.orchestrator.handle_bulk_export(make_job("bulk_orders", BASE_PAYLOAD))

    assert result["status"] == "conflict_retry"
    assert harness.bulk.cancelled == []


@pytest.mark.asyncio
async def test_non_bulk_job_type_is_rejected(harness):
    with pytest.raises(InvalidJobPayloadError):
        await harness.orchestrator.handle_bulk_export(make_job("poll_bulk", BASE_PAYLOAD))


# ---------------------------------------------------------------------------
# poll_bulk
# ---------------------------------------------------------------------------


async def _started(harness, job_type: str = "bulk_orders", payload: dict | None = None):
    await harness.orchestrator.handle_bulk_export(make_job(job_type, payload or BASE_PAYLOAD))
    return harness.queue.pop("poll_bulk")


@pytest.mark.asyncio
async def test_poll_running_operation_reschedules_itself(harness, settings):
    poll = await _started(harness)
    harness.bulk.poll_results = [handle("op-orders", "RUNNING", object_count=120)]

    result = await harness.orchestrator.handle_poll_bulk(poll)

    assert result["status"] == "RUNNING"
    next_poll = harness.queue.of_type("poll_bulk")[-1]
    assert next_poll.delay_seconds == settings.bulk_poll_interval_seconds
    assert next_poll.payload == poll.payload
    [entry] = harness.ledger.by_entity("orders")
    assert entry.total_rows == 120
    assert entry.status == EtlJobStatus.RUNNING


@pytest.mark.asyncio
async def test_poll_completion_processes_results_and_chains(harness):
    poll = await _started(harness)
    harness.bulk.poll_results = [handle("op-orders", "COMPLETED", url="https://files/result.jsonl", object_count=8)]

    result = await harness.orchestrator.handle_poll_bulk(poll)

    assert harness.bulk.processed == [("https://files/result.jsonl", BulkEntity.ORDERS)]
    [entry] = harness.ledger.by_entity("orders")
    assert entry.status == EtlJobStatus.COMPLETED
    assert entry.rows_written == 8
    assert entry.total_rows == 8
    assert entry.progress_pct == 100.0

    [customers] = harness.queue.of_type("bulk_customers")
    assert customers.payload["entity"] == "customers"
    assert result["next"] == "job-2"
    # Connection stays in progress until every stage completes.
    assert harness.connections.status_updates == []


@pytest.mark.asyncio
async def test_terminal_operation_failure_marks_entry_failed(harness):
    poll = await _started(harness)
    harness.bulk.poll_results = [handle("op-orders", "FAILED", error_code="INTERNAL_SERVER_ERROR")]

    with pytest.raises(BulkOperationFailedError):
        await harness.orchestrator.handle_poll_bulk(poll)

    [entry] = harness.ledger.by_entity("orders")
    assert entry.status == EtlJobStatus.FAILED
    assert "INTERNAL_SERVER_ERROR" in entry.error_message
    assert harness.queue.of_type("bulk_customers") == []
    assert harness.connections.status_updates[-1][1] == "failed"


@pytest.mark.asyncio
async def test_poll_for_removed_connection_fails_entry(harness):
    poll = await _started(harness)
    del harness.connections.connections["conn-1"]

    with pytest.raises(ConnectionNotFoundError):
        await harness.orchestrator.handle_poll_bulk(poll)

    [entry] = harness.ledger.by_entity("orders")
    assert entry.status == EtlJobStatus.FAILED


@pytest.mark.asyncio
async def test_poll_transient_error_leaves_entry_running(harness):
    poll = await _started(harness)
    harness.bulk.poll_results = [UpstreamError(message="timeout")]

    with pytest.raises(UpstreamError):
        await harness.orchestrator.handle_poll_bulk(poll)

    [entry] = harness.ledger.by_entity("orders")
    assert entry.status == EtlJobStatus.RUNNING


@pytest.mark.asyncio
async def test_poll_for_failed_entry_is_ignored(harness):
    poll = await _started(harness)
    [entry] = harness.ledger.by_entity("orders")
    await harness.ledger.update(entry.id, status=EtlJobStatus.FAILED, error_message="gone")

    result = await harness.orchestrator.handle_poll_bulk(poll)

    assert result["status"] == "failed"
    assert harness.bulk.polled == []
    assert harness.queue.of_type("bulk_customers") == []


@pytest.mark.asyncio
async def test_poll_retry_after_failed_hand_off_enqueues_next_stage(harness, monkeypatch):
    poll = await _started(harness)
    harness.bulk.poll_results = [handle("op-orders", "COMPLETED", url="https://files/result.jsonl")]
    enqueue = harness.queue.enqueue
    failures = []

    async def flaky_enqueue(request):
        if request.job_type == "bulk_customers" and not failures:
            failures.append(request)
            raise ConnectionError("queue unavailable")
        return await enqueue(request)

    monkeypatch.setattr(harness.queue, "enqueue", flaky_enqueue)

    with pytest.raises(ConnectionError):
        await harness.orchestrator.handle_poll_bulk(poll)

    [entry] = harness.ledger.by_entity("orders")
    assert entry.status == EtlJobStatus.COMPLETED
    assert harness.queue.of_type("bulk_customers") == []

    retry = replace(poll, attempts=2)
    result = await harness.orchestrator.handle_poll_bulk(retry)
    again = await harness.orchestrator.handle_poll_bulk(replace(poll, attempts=3))

    assert result["status"] == "completed"
    assert result["next"] is not None
    assert again["next"] == result["next"]
    assert len(harness.queue.of_type("bulk_customers")) == 1
    assert harness.bulk.polled == ["op-orders"]
    assert len(harness.bulk.processed) == 1


@pytest.mark.asyncio
async def test_poll_retry_for_completed_products_finishes_sync(harness):
    await _completed_entry(harness.ledger, "orders")
    await _completed_entry(harness.ledger, "customers")
    poll = await _started(harness, "bulk_products")
    [entry] = harness.ledger.by_entity("products")
    await harness.ledger.update(entry.id, status=EtlJobStatus.COMPLETED, rows_written=4)

    result = await harness.orchestrator.handle_poll_bulk(replace(poll, attempts=2))

    assert result["next"] is None
    harness.inventory.trigger.assert_awaited_once_with(brand_id="brand-1", connection_id="conn-1")
    assert harness.connections.status_updates[-1][1] == "completed"
    assert harness.bulk.polled == []


@pytest.mark.asyncio
async def test_poll_requires_operation_and_entry(harness):
    with pytest.raises(InvalidJobPayloadError):
        await harness.orchestrator.handle_poll_bulk(make_job("poll_bulk", {**BASE_PAYLOAD, "entity": "orders"}))


@pytest.mark.asyncio
async def test_products_completion_triggers_inventory_and_completes_connection(harness):
    await _completed_entry(harness.ledger, "orders")
    await _completed_entry(harness.ledger, "customers")
    poll = await _started(harness, "bulk_products")
    harness.bulk.poll_results = [handle("op-products", "COMPLETED", url="https://files/products.jsonl")]

    result = await harness.orchestrator.handle_poll_bulk(poll)

    assert result["next"] is None
    harness.inventory.trigger.assert_awaited_once_with(brand_id="brand-1", connection_id="conn-1")
    connection_id, status, metadata = harness.connections.status_updates[-1]
    assert status == "completed"
    assert [m["status"] for m in metadata["milestones"]] == ["completed", "completed", "completed"]


@pytest.mark.asyncio
async def test_repair_export_does_not_chain_or_move_connection_status(harness):
    await _completed_entry(harness.ledger, "orders")
    await _completed_entry(harness.ledger, "customers")
    await _completed_entry(harness.ledger, "products")
    payload = {**BASE_PAYLOAD, "sinceDate": "2026-01-03", "untilDate": "2026-01-05", "chain": False}
    poll = await _started(harness, "bulk_orders", payload)

    assert harness.bulk.started[-1][1:] == ("2026-01-03", "2026-01-05")
    [repair] = [job for job in harness.ledger.jobs.values() if job.job_type == "bulk_orders_repair"]
    assert repair.status == EtlJobStatus.RUNNING

    harness.bulk.poll_results = [handle("op-orders", "FAILED")]
    with pytest.raises(BulkOperationFailedError):
        await harness.orchestrator.handle_poll_bulk(poll)

    assert (await harness.ledger.get(repair.id)).status == EtlJobStatus.FAILED
    assert harness.queue.of_type("bulk_customers") == []
    assert all(status != "failed" for _, status, _ in harness.connections.status_updates)


@pytest.mark.asyncio
async def test_completed_repair_export_does_not_chain(harness):
    payload = {**BASE_PAYLOAD, "sinceDate": "2026-01-03", "untilDate": "2026-01-04", "chain": False}
    poll = await _started(harness, "bulk_orders", payload)
    harness.bulk.poll_results = [handle("op-orders", "COMPLETED", url="https://files/repair.jsonl")]

    result = await harness.orchestrator.handle_poll_bulk(poll)

    assert "next" not in result
    assert harness.queue.of_type("bulk_customers") == []
    harness.inventory.trigger.assert_not_called()


# ---------------------------------------------------------------------------
# refresh_range
# ---------------------------------------------------------------------------

RANGE_PAYLOAD = {
    **BASE_PAYLOAD,
    "rangeStart": "2026-01-05T00:00:00Z",
    "rangeEnd": "2026-01-06T00:00:00Z",
    "reason": "stale_day",
}


@pytest.mark.asyncio
async def test_refresh_range_fetches_and_records_rows(harness):
    result = await harness.orchestrator.handle_refresh_range(make_job(JobType.REFRESH_RANGE.value, RANGE_PAYLOAD))

    [(start, end)] = harness.recent.ranges
    assert start.isoformat() == "2026-01-05T00:00:00+00:00"
    assert end.isoformat() == "2026-01-06T00:00:00+00:00"
    [entry] = harness.ledger.by_entity("recent")
    assert entry.job_type == "refresh_range"
    assert entry.status == EtlJobStatus.COMPLETED
    assert entry.rows_written == 13
    assert result["counts"] == {"orders": 4, "line_items": 9}


@pytest.mark.asyncio
async def test_refresh_range_retry_reuses_open_entry(harness):
    harness.recent.error = UpstreamError(message="HTTP 502")
    with pytest.raises(UpstreamError):
        await harness.orchestrator.handle_refresh_range(make_job("refresh_range", RANGE_PAYLOAD, attempts=1))

    harness.recent.error = None
    await harness.orchestrator.handle_refresh_range(make_job("refresh_range", RANGE_PAYLOAD, attempts=2))

    [entry] = harness.ledger.by_entity("recent")
    assert entry.status == EtlJobStatus.COMPLETED


@pytest.mark.asyncio
async def test_refresh_range_requires_bounds(harness):
    payload = {**BASE_PAYLOAD, "rangeStart": "2026-01-05T00:00:00Z"}

    with pytest.raises(InvalidJobPayloadError):
        await harness.orchestrator.handle_refresh_range(make_job("refresh_range", payload))

    with pytest.raises(InvalidJobPayloadError):
        await harness.orchestrator.handle_refresh_range(
            make_job("refresh_range", {**payload, "rangeEnd": "not a date"})
        )
