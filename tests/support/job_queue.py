from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from storesync.jobs.queue import ClaimedJob, EnqueueJobRequest


@dataclass
class FakeJobQueue:
    """
    In-memory stand-in for the durable queue.

    Records every request, honours idempotency keys the way the unique
    constraint does, and can hand jobs back out as `ClaimedJob`s so tests can
    drive handlers step by step.
    """

    requests: list[tuple[str, EnqueueJobRequest]] = field(default_factory=list)
    _by_key: dict[tuple[str, str], str] = field(default_factory=dict)
    _pending: list[tuple[str, EnqueueJobRequest]] = field(default_factory=list)
    _counter: int = 0

    async def enqueue(self, request: EnqueueJobRequest) -> str:
        if request.idempotency_key is not None:
            existing = self._by_key.get((request.brand_id, request.idempotency_key))
            if existing is not None:
                return existing

        self._counter += 1
        job_id = f"job-{self._counter}"
        if request.idempotency_key is not None:
            self._by_key[(request.brand_id, request.idempotency_key)] = job_id
        self.requests.append((job_id, request))
        self._pending.append((job_id, request))
        return job_id

    async def requeue(
        self,
        job: ClaimedJob,
        *,
        delay_seconds: float,
        payload: dict[str, Any] | None = None,
        priority: int | None = None,
    ) -> str:
        return await self.enqueue(
            EnqueueJobRequest(
                brand_id=job.brand_id,
                job_type=job.job_type,
                payload=payload if payload is not None else job.payload,
                priority=job.priority if priority is None else priority,
                delay_seconds=delay_seconds,
                max_attempts=job.max_attempts,
                max_concurrency=job.max_concurrency,
                resource_key=job.resource_key,
            )
        )

    def of_type(self, job_type: str) -> list[EnqueueJobRequest]:
        return [request for _, request in self.requests if request.job_type == job_type]

    def pop(self, job_type: str | None = None, *, attempts: int = 1) -> ClaimedJob:
        """Take the oldest pending job (optionally of one type) as a claimed job."""
        for index, (job_id, request) in enumerate(self._pending):
            if job_type is None or request.job_type == job_type:
                del self._pending[index]
                return claimed(job_id, request, attempts=attempts)
        raise LookupError(f"No pending {job_type or 'job'}")

    @property
    def pending_types(self) -> list[str]:
        return [request.job_type for _, request in self._pending]


def claimed(job_id: str, request: EnqueueJobRequest, *, attempts: int = 1) -> ClaimedJob:
    return ClaimedJob(
        id=job_id,
        brand_id=request.brand_id,
        job_type=request.job_type,
        status="running",
        priority=request.priority,
        run_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
        resource_key=request.resource_key,
        attempts=attempts,
        max_attempts=request.max_attempts,
        max_concurrency=request.max_concurrency,
        payload=dict(request.payload),
    )


def make_job(
    job_type: str,
    payload: dict[str, Any],
    *,
    job_id: str = "job-under-test",
    brand_id: str = "brand-1",
    attempts: int = 1,
    max_attempts: int = 5,
) -> ClaimedJob:
    return ClaimedJob(
        id=job_id,
        brand_id=brand_id,
        job_type=job_type,
        status="running",
        priority=0,
        run_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
        resource_key=None,
        attempts=attempts,
        max_attempts=max_attempts,
        payload=payload,
    )
