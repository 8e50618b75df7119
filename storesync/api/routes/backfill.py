"""Gap report and backfill trigger routes."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from storesync.api.deps import get_services, require_internal_secret
from storesync.backfill import RefreshMode
from storesync.services import Services

router = APIRouter(tags=["Backfill"])


class BackfillResponse(BaseModel):
    brand_id: str
    mode: RefreshMode
    job_ids: list[str]


class GapReportResponse(BaseModel):
    brand_id: str
    platforms: dict[str, dict[str, Any]]


@router.post(
    "/backfill/{brand_id}",
    response_model=BackfillResponse,
    status_code=202,
    dependencies=[Depends(require_internal_secret)],
)
async def post_backfill(
    brand_id: str,
    mode: RefreshMode = Query(RefreshMode.STANDARD),
    services: Services = Depends(get_services),
) -> BackfillResponse:
    """Enqueue a detector scan plus repairs for each active shop connection."""
    job_ids = await services.backfill.request_refresh(brand_id, mode)
    return BackfillResponse(brand_id=brand_id, mode=mode, job_ids=job_ids)


@router.get(
    "/gaps/{brand_id}",
    response_model=GapReportResponse,
    dependencies=[Depends(require_internal_secret)],
)
async def get_gap_report(
    brand_id: str,
    lookback_days: int | None = Query(None, ge=1, le=730),
    services: Services = Depends(get_services),
) -> GapReportResponse:
    gap_results = await services.detector.detect_all_gaps(brand_id, lookback_days)
    platforms: dict[str, dict[str, Any]] = {}
    for platform, result in gap_results.items():
        stale = await services.detector.detect_stale_days(brand_id, platform, lookback_days)
        platforms[platform] = {"gaps": result.to_dict(), "stale": stale.to_dict()}
    return GapReportResponse(brand_id=brand_id, platforms=platforms)
