from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from storesync.jobs.worker import JobsWorker
from storesync.kernel.errors import ConnectionNotFoundError, UpstreamError
from tests.support.job_queue import make_job

pytestmark = pytest.mark.unit


def _queue(job=None, *, failed_status="queued"):
    queue = AsyncMock()
    queue.claim_next_job.return_value = job
    queue.mark_job_failed.return_value = failed_status
    queue.extend_lease.return_value = True
    return queue


@pytest.mark.asyncio
async def test_run_once_returns_false_when_nothing_claimed(settings):
    queue = _queue()
    worker = JobsWorker(queue, {}, settings=settings)

    assert await worker.run_once() is False
    queue.mark_job_succeeded.assert_not_called()


@pytest.mark.asyncio
async def test_run_once_returns_false_when_claim_errors(settings):
    queue = _queue()
    queue.claim_next_job.side_effect = OSError("db down")
    worker = JobsWorker(queue, {}, settings=settings)

    assert await worker.run_once() is False


@pytest.mark.asyncio
async def test_successful_job_is_marked_succeeded_with_result(settings):
    job = make_job("recent_sync", {"brandId": "brand-1", "connectionId": "conn-1"})
    queue = _queue(job)
    handler = AsyncMock(return_value={"next_job_id": "job-2"})
    worker = JobsWorker(queue, {"recent_sync": handler}, settings=settings)

    assert await worker.run_once() is True

    handler.assert_awaited_once_with(job)
    queue.mark_job_succeeded.assert_awaited_once_with(job_id=job.id, result={"next_job_id": "job-2"})
    queue.mark_job_failed.assert_not_called()


@pytest.mark.asyncio
async def test_transient_failure_is_retried_with_backoff(settings):
    job = make_job("bulk_orders", {}, attempts=2)
    queue = _queue(job)
    handler = AsyncMock(side_effect=UpstreamError(message="HTTP 503"))
    worker = JobsWorker(queue, {"bulk_orders": handler}, settings=settings)

    await worker.run_once()

    kwargs = queue.mark_job_failed.call_args.kwargs
    assert kwargs["retryable"] is True
    assert kwargs["attempts"] == 2
    assert kwargs["backoff_seconds"] == 10
    assert kwargs["error"] == "HTTP 503"


@pytest.mark.asyncio
async def test_non_retryable_failure_is_not_retried(settings):
    job = make_job("bulk_orders", {})
    queue = _queue(job, failed_status="failed")
    handler = AsyncMock(side_effect=ConnectionNotFoundError(connection_id="conn-1"))
    worker = JobsWorker(queue, {"bulk_orders": handler}, settings=settings)

    await worker.run_once()

    assert queue.mark_job_failed.call_args.kwargs["retryable"] is False


@pytest.mark.asyncio
async def test_unknown_job_type_fails_without_retry(settings):
    job = make_job("mystery", {})
    queue = _queue(job, failed_status="failed")
    worker = JobsWorker(queue, {}, settings=settings)

    assert await worker.run_once() is True

    kwargs = queue.mark_job_failed.call_args.kwargs
    assert kwargs["retryable"] is False
    assert "mystery" in kwargs["error"]


@pytest.mark.asyncio
async def test_failure_to_record_success_does_not_escape(settings):
    job = make_job("recent_sync", {})
    queue = _queue(job)
    queue.mark_job_succeeded.side_effect = OSError("db down")
    worker = JobsWorker(queue, {"recent_sync": AsyncMock(return_value=None)}, settings=settings)

    assert await worker.run_once() is True
    queue.mark_job_failed.assert_not_called()
