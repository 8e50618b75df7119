"""Aggregate sync status derived from ledger entries."""

from __future__ import annotations

from typing import Iterable

from storesync.jobs.types import BULK_JOB_TYPES, BULK_SEQUENCE, JobType
from storesync.ledger.models import EtlJob, EtlJobStatus, Milestone, SyncStatus

NOT_STARTED = "not_started"
IN_PROGRESS = "in_progress"
COMPLETED = "completed"
FAILED = "failed"

# Milestones follow the full import only; repair exports and range refreshes
# never move the connection status.
_IMPORT_JOB_TYPES = {entity.value: job_type.value for entity, job_type in BULK_JOB_TYPES.items()}

# Ledger job types that feed the status view.
STATUS_JOB_TYPES: tuple[str, ...] = (JobType.RECENT_SYNC.value, *_IMPORT_JOB_TYPES.values())


def latest_by_entity(jobs: Iterable[EtlJob]) -> dict[str, EtlJob]:
    """Most recent ledger entry per entity (highest id wins)."""
    latest: dict[str, EtlJob] = {}
    for job in jobs:
        current = latest.get(job.entity)
        if current is None or job.id > current.id:
            latest[job.entity] = job
    return latest


def compute_sync_status(jobs: Iterable[EtlJob]) -> SyncStatus:
    """
    Fold ledger entries into the dashboard view.

    Only the latest entry per bulk entity counts, so a failed attempt that was
    later re-run successfully no longer marks the connection failed.
    """
    jobs = list(jobs)
    latest = latest_by_entity(job for job in jobs if _IMPORT_JOB_TYPES.get(job.entity) == job.job_type)
    started = bool(latest) or any(job.job_type == JobType.RECENT_SYNC.value for job in jobs)

    milestones: list[Milestone] = []
    progress_total = 0.0
    for entity in BULK_SEQUENCE:
        job = latest.get(entity.value)
        if job is None:
            milestones.append(Milestone(entity=entity.value, status=EtlJobStatus.PENDING.value))
            continue
        milestones.append(
            Milestone(entity=entity.value, status=job.status.value, rows_written=job.rows_written)
        )
        if job.status == EtlJobStatus.COMPLETED:
            progress_total += 100.0
        elif job.status == EtlJobStatus.RUNNING:
            progress_total += max(0.0, min(100.0, job.progress_pct))

    statuses = [m.status for m in milestones]
    if not started:
        overall = NOT_STARTED
    elif EtlJobStatus.FAILED.value in statuses:
        overall = FAILED
    elif all(status == EtlJobStatus.COMPLETED.value for status in statuses):
        overall = COMPLETED
    else:
        overall = IN_PROGRESS

    return SyncStatus(
        overall_status=overall,
        milestones=milestones,
        progress_pct=round(progress_total / len(BULK_SEQUENCE), 1),
    )
