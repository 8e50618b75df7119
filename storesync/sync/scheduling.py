"""Build queue requests for sync job types with their configured policy."""

from __future__ import annotations

import hashlib
from typing import Any

import pydantic

from storesync.config import Settings
from storesync.jobs.queue import ClaimedJob, EnqueueJobRequest
from storesync.jobs.types import (
    BULK_JOB_TYPES,
    JobType,
    SyncJobPayload,
    bulk_resource_key,
    job_policies,
)
from storesync.kernel.errors import InvalidJobPayloadError

_BULK_TYPES = frozenset(BULK_JOB_TYPES.values())


def idempotency_key(*parts: Any) -> str:
    """Short deterministic key so re-running a producer does not duplicate jobs."""
    material = ":".join(str(part) for part in parts)
    return hashlib.sha256(material.encode("utf-8")).hexdigest()


def build_request(
    settings: Settings,
    job_type: JobType,
    payload: SyncJobPayload,
    *,
    delay_seconds: float = 0,
    idempotency_key: str | None = None,
    priority: int | None = None,
) -> EnqueueJobRequest:
    policy = job_policies(settings)[job_type]
    resource_key = bulk_resource_key(payload.connection_id) if job_type in _BULK_TYPES else None
    return EnqueueJobRequest(
        brand_id=payload.brand_id,
        job_type=job_type.value,
        payload=payload.to_job(),
        priority=policy.priority if priority is None else priority,
        delay_seconds=delay_seconds,
        max_attempts=policy.max_attempts,
        max_concurrency=policy.max_concurrency,
        idempotency_key=idempotency_key,
        resource_key=resource_key,
    )


def parse_payload(job: ClaimedJob) -> SyncJobPayload:
    try:
        return SyncJobPayload.from_job(job.payload)
    except pydantic.ValidationError as exc:
        raise InvalidJobPayloadError(job_type=job.job_type, message=str(exc)) from exc
