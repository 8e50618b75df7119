"""Durable job queue, job types and the worker that runs them."""

from storesync.jobs.queue import (
    ClaimedJob,
    EnqueueJobRequest,
    JobQueue,
    PostgresJobQueue,
    compute_backoff_seconds,
)
from storesync.jobs.types import BulkEntity, JobType, SyncJobPayload

__all__ = [
    "BulkEntity",
    "ClaimedJob",
    "EnqueueJobRequest",
    "JobQueue",
    "JobType",
    "PostgresJobQueue",
    "SyncJobPayload",
    "compute_backoff_seconds",
]
