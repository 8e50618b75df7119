"""Postgres-backed durable background job queue."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Protocol
from uuid import uuid4

import structlog

from storesync.db import client as db_client
from storesync.kernel.time import utc_now

logger = structlog.get_logger()

# Serializes claims so per-type concurrency counts cannot be raced by two
# workers claiming at the same moment.
_CLAIM_LOCK_KEY = 7_310_422_001


@dataclass(frozen=True)
class EnqueueJobRequest:
    brand_id: str
    job_type: str
    payload: dict[str, Any]
    priority: int = 0
    delay_seconds: float = 0
    run_at: datetime | None = None
    max_attempts: int = 5
    max_concurrency: int | None = None
    idempotency_key: str | None = None
    resource_key: str | None = None


@dataclass(frozen=True)
class ClaimedJob:
    id: str
    brand_id: str
    job_type: str
    status: str
    priority: int
    run_at: datetime
    resource_key: str | None
    attempts: int
    max_attempts: int
    max_concurrency: int | None = None
    payload: dict[str, Any] = field(default_factory=dict)

    @property
    def is_last_attempt(self) -> bool:
        return self.attempts >= self.max_attempts


class JobQueue(Protocol):
    """What handlers need from the queue: scheduling more work."""

    async def enqueue(self, request: EnqueueJobRequest) -> str:
        ...

    async def requeue(
        self,
        job: ClaimedJob,
        *,
        delay_seconds: float,
        payload: dict[str, Any] | None = None,
        priority: int | None = None,
    ) -> str:
        ...


def compute_backoff_seconds(*, attempt: int) -> int:
    # attempt=1 -> 5s, attempt=2 -> 10s, attempt=3 -> 20s, clamped at 5 minutes
    return min(300, max(5, 5 * 2 ** max(0, attempt - 1)))


def _resolve_run_at(request: EnqueueJobRequest, now: datetime) -> datetime:
    if request.run_at is not None:
        return request.run_at
    return now + timedelta(seconds=max(0.0, float(request.delay_seconds)))


class PostgresJobQueue:
    """
    Durable priority queue over the `background_job` table.

    - Delayed scheduling via `run_at`.
    - Per-job-type concurrency: a job is only claimable while fewer than its
      `max_concurrency` jobs of the same type hold a live lease.
    - Resource isolation: jobs sharing a `resource_key` never run concurrently.
    - Leases make processing crash-only: expired leases are requeued.
    """

    async def enqueue(self, request: EnqueueJobRequest) -> str:
        """
        Enqueue a durable job.

        Idempotency: if `idempotency_key` is provided, the (brand_id, idempotency_key)
        unique constraint ensures deduplication.
        """
        job_id = str(uuid4())
        now = utc_now()
        run_at = _resolve_run_at(request, now)

        pool = await db_client.get_db_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                INSERT INTO background_job (
                    id, brand_id, job_type, status, priority, run_at,
                    resource_key, attempts, max_attempts, max_concurrency,
                    idempotency_key, payload, created_at, updated_at
                )
                VALUES (
                    $1, $2, $3, 'queued', $4, $5,
                    $6, 0, $7, $8,
                    $9, $10, $11, $11
                )
                ON CONFLICT (brand_id, idempotency_key)
                DO UPDATE SET updated_at = EXCLUDED.updated_at
                RETURNING id
                """,
                job_id,
                request.brand_id,
                request.job_type,
                int(request.priority),
                run_at,
                request.resource_key,
                int(max(1, request.max_attempts)),
                request.max_concurrency,
                request.idempotency_key,
                request.payload,
                now,
            )

        resolved_id = str(row["id"]) if row else job_id
        logger.info(
            "Job enqueued",
            job_id=resolved_id,
            job_type=request.job_type,
            brand_id=request.brand_id,
            priority=request.priority,
            run_at=run_at.isoformat(),
        )
        return resolved_id

    async def requeue(
        self,
        job: ClaimedJob,
        *,
        delay_seconds: float,
        payload: dict[str, Any] | None = None,
        priority: int | None = None,
    ) -> str:
        """Re-insert the same logical job to run again after `delay_seconds`."""
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

    async def claim_next_job(self, *, worker_id: str, lease_seconds: int) -> ClaimedJob | None:
        """Claim the next runnable job using a lease (FOR UPDATE SKIP LOCKED)."""
        now = utc_now()
        lease_until = now + timedelta(seconds=max(5, lease_seconds))

        pool = await db_client.get_db_pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                await conn.execute("SELECT pg_advisory_xact_lock($1)", _CLAIM_LOCK_KEY)
                row = await conn.fetchrow(
                    """
                    UPDATE background_job
                    SET status = 'running',
                        locked_by = $1,
                        lease_until = $2,
                        attempts = attempts + 1,
                        started_at = COALESCE(started_at, $3),
                        updated_at = $3
                    WHERE id = (
                        SELECT bj.id
                        FROM background_job bj
                        WHERE bj.status = 'queued'
                          AND bj.run_at <= $3
                          AND (bj.lease_until IS NULL OR bj.lease_until < $3)
                          AND (
                            bj.resource_key IS NULL
                            OR NOT EXISTS (
                              SELECT 1
                              FROM background_job running
                              WHERE running.status = 'running'
                                AND running.resource_key = bj.resource_key
                                AND running.lease_until > $3
                            )
                          )
                          AND (
                            bj.max_concurrency IS NULL
                            OR (
                              SELECT COUNT(*)
                              FROM background_job running
                              WHERE running.status = 'running'
                                AND running.job_type = bj.job_type
                                AND running.lease_until > $3
                            ) < bj.max_concurrency
                          )
                        ORDER BY bj.priority DESC, bj.run_at ASC, bj.created_at ASC
                        FOR UPDATE SKIP LOCKED
                        LIMIT 1
                    )
                    RETURNING
                        id::text,
                        brand_id,
                        job_type,
                        status,
                        priority,
                        run_at,
                        resource_key,
                        attempts,
                        max_attempts,
                        max_concurrency,
                        payload
                    """,
                    worker_id,
                    lease_until,
                    now,
                )

        if not row:
            return None

        return ClaimedJob(
            id=str(row["id"]),
            brand_id=row["brand_id"],
            job_type=row["job_type"],
            status=row["status"],
            priority=int(row["priority"] or 0),
            run_at=row["run_at"],
            resource_key=row["resource_key"],
            attempts=int(row["attempts"] or 0),
            max_attempts=int(row["max_attempts"] or 5),
            max_concurrency=row["max_concurrency"],
            payload=row["payload"] or {},
        )

    async def mark_job_succeeded(self, *, job_id: str, result: dict[str, Any] | None = None) -> None:
        now = utc_now()
        pool = await db_client.get_db_pool()
        async with pool.acquire() as conn:
            await conn.execute(
                """
                UPDATE background_job
                SET status = 'succeeded',
                    completed_at = $2,
                    lease_until = NULL,
                    result = $3,
                    last_error = NULL,
                    updated_at = $2
                WHERE id = $1
                """,
                job_id,
                now,
                result or {},
            )

    async def mark_job_failed(
        self,
        *,
        job_id: str,
        error: str,
        attempts: int,
        max_attempts: int,
        backoff_seconds: int,
        retryable: bool = True,
    ) -> str:
        """Record a failed attempt. Returns the resulting status (queued or failed)."""
        now = utc_now()
        status = "queued" if retryable and attempts < max_attempts else "failed"
        next_run_at = now + timedelta(seconds=max(1, backoff_seconds))

        pool = await db_client.get_db_pool()
        async with pool.acquire() as conn:
            await conn.execute(
                """
                UPDATE background_job
                SET status = $2,
                    completed_at = CASE WHEN $2 = 'failed' THEN $3::timestamptz ELSE NULL END,
                    lease_until = NULL,
                    last_error = $4,
                    run_at = CASE WHEN $2 = 'queued' THEN $5::timestamptz ELSE run_at END,
                    updated_at = $3::timestamptz
                WHERE id = $1
                """,
                job_id,
                status,
                now,
                error,
                next_run_at,
            )
        return status

    async def cancel_job(self, *, job_id: str) -> bool:
        now = utc_now()
        pool = await db_client.get_db_pool()
        async with pool.acquire() as conn:
            status = await conn.fetchval(
                """
                UPDATE background_job
                SET status = 'cancelled',
                    completed_at = $2,
                    lease_until = NULL,
                    updated_at = $2
                WHERE id = $1 AND status IN ('queued', 'running')
                RETURNING status
                """,
                job_id,
                now,
            )
        return status is not None

    async def extend_lease(self, *, job_id: str, worker_id: str, lease_seconds: int) -> bool:
        now = utc_now()
        lease_until = now + timedelta(seconds=max(5, lease_seconds))
        pool = await db_client.get_db_pool()
        async with pool.acquire() as conn:
            updated = await conn.execute(
                """
                UPDATE background_job
                SET lease_until = $3,
                    updated_at = $2
                WHERE id = $1
                  AND status = 'running'
                  AND locked_by = $4
                """,
                job_id,
                now,
                lease_until,
                worker_id,
            )
        # asyncpg returns strings like "UPDATE 1"
        return str(updated).endswith("1")

    async def requeue_expired_running_jobs(self, *, limit: int = 500) -> int:
        """
        Requeue jobs that were marked 'running' but whose lease expired.

        Without this, a worker crash can leave jobs stuck in 'running' forever.
        """
        now = utc_now()
        safe_limit = int(max(1, limit))

        pool = await db_client.get_db_pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(
                """
                WITH expired AS (
                    SELECT id
                    FROM background_job
                    WHERE status = 'running'
                      AND lease_until IS NOT NULL
                      AND lease_until < $2::timestamptz
                    ORDER BY lease_until ASC
                    LIMIT $1
                    FOR UPDATE SKIP LOCKED
                )
                UPDATE background_job bj
                SET status = CASE WHEN bj.attempts >= bj.max_attempts THEN 'failed' ELSE 'queued' END,
                    completed_at = CASE WHEN bj.attempts >= bj.max_attempts THEN $2::timestamptz ELSE NULL END,
                    lease_until = NULL,
                    locked_by = NULL,
                    last_error = COALESCE(bj.last_error, 'Lease expired'),
                    run_at = CASE WHEN bj.attempts >= bj.max_attempts THEN bj.run_at ELSE $2::timestamptz END,
                    updated_at = $2::timestamptz
                FROM expired
                WHERE bj.id = expired.id
                RETURNING bj.id::text
                """,
                safe_limit,
                now,
            )

        return len(rows or [])

    async def purge_finished_jobs(
        self,
        *,
        completed_before: datetime,
        failed_before: datetime,
    ) -> int:
        """Delete succeeded/cancelled jobs and failed jobs past their retention."""
        pool = await db_client.get_db_pool()
        async with pool.acquire() as conn:
            result = await conn.execute(
                """
                DELETE FROM background_job
                WHERE (status IN ('succeeded', 'cancelled') AND completed_at < $1)
                   OR (status = 'failed' AND completed_at < $2)
                """,
                completed_before,
                failed_before,
            )
        # "DELETE <n>"
        try:
            return int(str(result).split()[-1])
        except (ValueError, IndexError):
            return 0


