"""
Sync status and trigger routes

Read side of the ETL ledger (per-brand status and job history) plus the
internal trigger used when a connection is created or refreshed by hand.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from storesync.api.deps import get_services, require_internal_secret
from storesync.ledger import compute_sync_status
from storesync.ledger.status import STATUS_JOB_TYPES
from storesync.services import Services
from storesync.sync.triggers import trigger_sync

router = APIRouter(tags=["Sync"])


class MilestoneResponse(BaseModel):
    entity: str
    status: str
    rows_written: int = 0


class SyncStatusResponse(BaseModel):
    brand_id: str
    connection_id: str | None = None
    overall_status: str
    progress_pct: float
    milestones: list[MilestoneResponse]


class EtlJobResponse(BaseModel):
    id: int
    brand_id: str
    connection_id: str | None = None
    entity: str
    job_type: str
    status: str
    external_bulk_handle: str | None = None
    rows_written: int = 0
    total_rows: int | None = None
    progress_pct: float | None = None
    error_message: str | None = None
    created_at: str | None = None
    started_at: str | None = None
    completed_at: str | None = None
    failed_at: str | None = None


class ListEtlJobsResponse(BaseModel):
    jobs: list[EtlJobResponse]


class TriggerSyncRequest(BaseModel):
    reason: str = Field(default="manual", max_length=64)


class TriggerSyncResponse(BaseModel):
    job_id: str


@router.get("/sync-status/{brand_id}", response_model=SyncStatusResponse)
async def get_sync_status(
    brand_id: str,
    connection_id: str | None = Query(None, description="Restrict to one connection"),
    services: Services = Depends(get_services),
) -> SyncStatusResponse:
    jobs = await services.ledger.list_for_brand(
        brand_id,
        connection_id=connection_id,
        job_types=STATUS_JOB_TYPES,
    )
    status = compute_sync_status(jobs)
    return SyncStatusResponse(brand_id=brand_id, connection_id=connection_id, **status.to_dict())


@router.get("/etl-jobs/{brand_id}", response_model=ListEtlJobsResponse)
async def list_etl_jobs(
    brand_id: str,
    connection_id: str | None = Query(None),
    limit: int = Query(100, ge=1, le=500),
    services: Services = Depends(get_services),
) -> ListEtlJobsResponse:
    jobs = await services.ledger.list_for_brand(brand_id, connection_id=connection_id, limit=limit)
    return ListEtlJobsResponse(jobs=[EtlJobResponse(**job.to_dict()) for job in jobs])


@router.post(
    "/connections/{connection_id}/sync",
    response_model=TriggerSyncResponse,
    status_code=202,
    dependencies=[Depends(require_internal_secret)],
)
async def post_trigger_sync(
    connection_id: str,
    request: TriggerSyncRequest | None = None,
    services: Services = Depends(get_services),
) -> TriggerSyncResponse:
    reason = request.reason if request else "manual"
    job_id = await trigger_sync(
        services.queue,
        services.connections,
        connection_id,
        reason=reason,
        settings=services.settings,
    )
    return TriggerSyncResponse(job_id=job_id)

