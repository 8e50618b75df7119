"""
Durable Jobs Worker

Executes sync jobs from the Postgres-backed `background_job` queue.
Runs `job_worker_concurrency` claim loops side by side; per-type limits and
resource isolation are enforced by the queue at claim time.
"""

from __future__ import annotations

import asyncio
import signal
from datetime import timedelta
from typing import Any, Awaitable, Callable
from uuid import uuid4

import structlog

from storesync.config import Settings, get_settings
from storesync.db.client import close_db, close_db_pool, init_db
from storesync.jobs.queue import ClaimedJob, PostgresJobQueue, compute_backoff_seconds
from storesync.kernel.errors import UnknownJobTypeError, is_retryable
from storesync.kernel.logging import configure_logging
from storesync.kernel.time import utc_now
from storesync.monitoring import jobs_total

logger = structlog.get_logger()

JobHandler = Callable[[ClaimedJob], Awaitable[dict[str, Any] | None]]


class JobsWorker:
    def __init__(
        self,
        queue: PostgresJobQueue,
        handlers: dict[str, JobHandler],
        *,
        settings: Settings | None = None,
    ) -> None:
        self.queue = queue
        self.handlers = dict(handlers)
        self.settings = settings or get_settings()
        self.worker_id = f"jobs-worker:{uuid4()}"
        self._shutdown = asyncio.Event()

    async def run_forever(self) -> None:
        slots = max(1, int(self.settings.job_worker_concurrency))
        logger.info(
            "Jobs worker starting",
            worker_id=self.worker_id,
            lease_seconds=self.settings.job_worker_lease_seconds,
            slots=slots,
            job_types=sorted(self.handlers),
        )

        reaper_task = asyncio.create_task(self._reap_expired_running_jobs())
        slot_tasks = [asyncio.create_task(self._slot_loop(index)) for index in range(slots)]
        try:
            await asyncio.gather(*slot_tasks)
        finally:
            for task in slot_tasks:
                task.cancel()
            reaper_task.cancel()
            await asyncio.gather(reaper_task, *slot_tasks, return_exceptions=True)
            logger.info("Jobs worker stopped", worker_id=self.worker_id)

    async def shutdown(self) -> None:
        self._shutdown.set()

    async def _slot_loop(self, slot: int) -> None:
        while not self._shutdown.is_set():
            processed = await self.run_once()
            if not processed:
                await self._idle()

    async def _idle(self) -> None:
        try:
            await asyncio.wait_for(
                self._shutdown.wait(),
                timeout=self.settings.job_worker_poll_interval_seconds,
            )
        except asyncio.TimeoutError:
            pass

    async def run_once(self) -> bool:
        """Claim and execute at most one job. Returns False when nothing ran."""
        try:
            job = await self.queue.claim_next_job(
                worker_id=self.worker_id,
                lease_seconds=self.settings.job_worker_lease_seconds,
            )
        except Exception as exc:
            logger.warning(
                "Failed to claim job (will retry)",
                worker_id=self.worker_id,
                error=str(exc),
            )
            return False
        if not job:
            return False

        # Never crash the worker loop because of a single job.
        try:
            await self._execute_claimed_job(job)
        except Exception as exc:
            logger.error(
                "Unhandled exception executing job",
                worker_id=self.worker_id,
                job_id=job.id,
                job_type=job.job_type,
                error=str(exc),
            )
        return True

    async def _reap_expired_running_jobs(self) -> None:
        """
        Periodically requeue jobs stuck in 'running' with expired leases, and
        purge finished jobs past their retention.
        """
        interval = max(5, int(self.settings.job_worker_reaper_interval_seconds))
        limit = int(max(1, self.settings.job_worker_reaper_limit))

        while not self._shutdown.is_set():
            try:
                requeued = await self.queue.requeue_expired_running_jobs(limit=limit)
                if requeued:
                    logger.warning(
                        "Requeued expired running jobs",
                        worker_id=self.worker_id,
                        count=requeued,
                    )
                now = utc_now()
                purged = await self.queue.purge_finished_jobs(
                    completed_before=now - timedelta(hours=self.settings.completed_job_retention_hours),
                    failed_before=now - timedelta(days=self.settings.failed_job_retention_days),
                )
                if purged:
                    logger.info("Purged finished jobs", worker_id=self.worker_id, count=purged)
            except Exception as exc:
                logger.warning(
                    "Queue housekeeping failed",
                    worker_id=self.worker_id,
                    error=str(exc),
                )

            try:
                await asyncio.wait_for(self._shutdown.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass

    async def _execute_claimed_job(self, job: ClaimedJob) -> None:
        started_at = utc_now()
        structlog.contextvars.bind_contextvars(job_id=job.id, job_type=job.job_type, brand_id=job.brand_id)
        logger.info(
            "Executing job",
            attempts=job.attempts,
            max_attempts=job.max_attempts,
        )

        lease_task = asyncio.create_task(self._lease_heartbeat(job.id))
        try:
            result = await self._dispatch(job)
            try:
                await self.queue.mark_job_succeeded(job_id=job.id, result=result or {})
            except Exception as exc:
                # The reaper makes the job runnable again once the lease expires.
                logger.error(
                    "Failed to mark job succeeded",
                    worker_id=self.worker_id,
                    error=str(exc),
                )
            jobs_total.labels(job_type=job.job_type, outcome="succeeded").inc()
            logger.info(
                "Job succeeded",
                duration_seconds=(utc_now() - started_at).total_seconds(),
            )
        except Exception as exc:
            retryable = is_retryable(exc)
            backoff_seconds = compute_backoff_seconds(attempt=job.attempts)
            status = "failed"
            try:
                status = await self.queue.mark_job_failed(
                    job_id=job.id,
                    error=str(exc),
                    attempts=job.attempts,
                    max_attempts=job.max_attempts,
                    backoff_seconds=backoff_seconds,
                    retryable=retryable,
                )
            except Exception as mark_exc:
                logger.error(
                    "Failed to mark job failed",
                    worker_id=self.worker_id,
                    error=str(mark_exc),
                )
            jobs_total.labels(job_type=job.job_type, outcome="retried" if status == "queued" else "failed").inc()
            logger.warning(
                "Job failed",
                attempts=job.attempts,
                max_attempts=job.max_attempts,
                retryable=retryable,
                backoff_seconds=backoff_seconds if status == "queued" else None,
                error_type=type(exc).__name__,
                error=str(exc),
            )
        finally:
            lease_task.cancel()
            await asyncio.gather(lease_task, return_exceptions=True)
            structlog.contextvars.unbind_contextvars("job_id", "job_type", "brand_id")

    async def _dispatch(self, job: ClaimedJob) -> dict[str, Any] | None:
        handler = self.handlers.get(job.job_type)
        if handler is None:
            raise UnknownJobTypeError(job_type=job.job_type)
        return await handler(job)

    async def _lease_heartbeat(self, job_id: str) -> None:
        interval = max(5.0, self.settings.job_worker_lease_seconds / 3)
        while not self._shutdown.is_set():
            await asyncio.sleep(interval)
            try:
                ok = await self.queue.extend_lease(
                    job_id=job_id,
                    worker_id=self.worker_id,
                    lease_seconds=self.settings.job_worker_lease_seconds,
                )
            except Exception as exc:
                logger.warning(
                    "Failed to extend lease",
                    worker_id=self.worker_id,
                    job_id=job_id,
                    error=str(exc),
                )
                return
            if not ok:
                return


async def _run() -> None:
    from storesync.services import build_services

    settings = get_settings()
    configure_logging(settings.log_level, settings.log_format)
    await init_db()
    services = build_services(settings)
    worker = JobsWorker(services.queue, services.handlers(), settings=settings)

    loop = asyncio.get_running_loop()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, lambda: asyncio.create_task(worker.shutdown()))
        except NotImplementedError:
            signal.signal(sig, lambda *_: asyncio.create_task(worker.shutdown()))

    try:
        await worker.run_forever()
    finally:
        await services.aclose()
        await close_db_pool()
        await close_db()


def main() -> None:
    asyncio.run(_run())


if __name__ == "__main__":
    main()
