"""
Backfill Service

Runs the detector for a connection, applies the backfill policy and enqueues
repair work:

- stale days -> one `refresh_range` job per day (recent REST fetch)
- gaps       -> targeted `bulk_orders` exports per repair window, not chained
               to the customers/products stages
"""

from __future__ import annotations

from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any, Callable

import structlog

from storesync.backfill.detection import GapDetector
from storesync.backfill.policy import BackfillDecision, should_trigger_backfill
from storesync.backfill.windows import generate_backfill_windows
from storesync.config import Settings, get_settings
from storesync.connections import Connection, ConnectionRepository, require_syncable
from storesync.jobs.queue import ClaimedJob, JobQueue
from storesync.jobs.types import BulkEntity, JobType, SyncJobPayload
from storesync.kernel.time import get_zone, isoformat_z, local_date, start_of_day, utc_now
from storesync.ledger.status import IN_PROGRESS
from storesync.monitoring import backfill_ranges_total
from storesync.sync.scheduling import build_request, idempotency_key, parse_payload

logger = structlog.get_logger()


class RefreshMode(str, Enum):
    STANDARD = "standard"
    DEEP = "deep"
    COMPREHENSIVE = "comprehensive"


_MODE_LOOKBACK_DAYS = {
    RefreshMode.DEEP: 90,
}


class BackfillService:
    def __init__(
        self,
        *,
        queue: JobQueue,
        detector: GapDetector,
        connections: ConnectionRepository,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.queue = queue
        self.detector = detector
        self.connections = connections
        self.settings = settings or get_settings()
        self.clock = clock

    def lookback_for(self, mode: RefreshMode | str) -> int:
        mode = RefreshMode(mode)
        if mode == RefreshMode.STANDARD:
            return self.settings.gap_lookback_days
        if mode == RefreshMode.COMPREHENSIVE:
            return self.settings.deep_scan_lookback_days
        return _MODE_LOOKBACK_DAYS[mode]

    async def evaluate(self, brand_id: str, platform: str, lookback_days: int) -> BackfillDecision:
        gaps = await self.detector.detect_gaps(brand_id, platform, lookback_days)
        stale = await self.detector.detect_stale_days(brand_id, platform, lookback_days)
        return should_trigger_backfill(gaps, stale.stale_days, platform=platform)

    async def remediate(self, connection: Connection, decision: BackfillDecision) -> list[str]:
        """Enqueue repair jobs for every range in the decision. Returns job ids."""
        if not decision.should_backfill:
            return []

        tz = get_zone(self.settings.business_timezone)
        scan_day = local_date(self.clock(), tz).isoformat()
        job_ids: list[str] = []

        for repair in decision.ranges:
            if repair.kind == "stale":
                job_ids.append(await self._enqueue_refresh(connection, repair.start_date, scan_day))
            else:
                job_ids.extend(await self._enqueue_gap_repair(connection, repair.start_date, repair.end_date, scan_day))
            backfill_ranges_total.labels(kind=repair.kind).inc()

        logger.info(
            "Backfill repairs enqueued",
            brand_id=connection.brand_id,
            connection_id=connection.id,
            stale_days=decision.total_stale_days,
            missing_days=decision.total_missing_days,
            job_count=len(job_ids),
        )
        return job_ids

    async def _enqueue_refresh(self, connection: Connection, day: date, scan_day: str) -> str:
        tz = get_zone(self.settings.business_timezone)
        payload = SyncJobPayload(
            brand_id=connection.brand_id,
            connection_id=connection.id,
            shop_identifier=connection.shop,
            range_start=isoformat_z(start_of_day(day, tz)),
            range_end=isoformat_z(start_of_day(day + timedelta(days=1), tz)),
            reason="stale_day",
        )
        return await self.queue.enqueue(
            build_request(
                self.settings,
                JobType.REFRESH_RANGE,
                payload,
                idempotency_key=idempotency_key(JobType.REFRESH_RANGE.value, connection.id, day, scan_day),
            )
        )

    async def _enqueue_gap_repair(self, connection: Connection, first: date, last: date, scan_day: str) -> list[str]:
        tz = get_zone(self.settings.business_timezone)
        windows = generate_backfill_windows(
            start_of_day(first, tz),
            start_of_day(last + timedelta(days=1), tz),
            window_days=self.settings.gap_repair_window_days,
        )
        job_ids: list[str] = []
        for window in windows:
            since = local_date(window.start, tz).isoformat()
            until = local_date(window.end, tz).isoformat()
            payload = SyncJobPayload(
                brand_id=connection.brand_id,
                connection_id=connection.id,
                shop_identifier=connection.shop,
                entity=BulkEntity.ORDERS,
                since_date=since,
                until_date=until,
                chain=False,
                reason="gap",
            )
            job_ids.append(
                await self.queue.enqueue(
                    build_request(
                        self.settings,
                        JobType.BULK_ORDERS,
                        payload,
                        idempotency_key=idempotency_key("gap_repair", connection.id, since, until, scan_day),
                    )
                )
            )
        return job_ids

    async def run_for_connection(self, connection: Connection, lookback_days: int) -> dict[str, Any]:
        if connection.sync_status == IN_PROGRESS:
            logger.info(
                "Skipping backfill while historical sync runs",
                brand_id=connection.brand_id,
                connection_id=connection.id,
            )
            return {"connection_id": connection.id, "skipped": "sync_in_progress"}

        decision = await self.evaluate(connection.brand_id, connection.platform_type, lookback_days)
        job_ids = await self.remediate(connection, decision)
        return {"connection_id": connection.id, "decision": decision.to_dict(), "job_ids": job_ids}

    async def request_refresh(self, brand_id: str, mode: RefreshMode | str = RefreshMode.STANDARD) -> list[str]:
        """Enqueue a backfill_scan job for each active shop connection of the brand."""
        mode = RefreshMode(mode)
        lookback = self.lookback_for(mode)
        day = local_date(self.clock(), get_zone(self.settings.business_timezone)).isoformat()
        job_ids: list[str] = []
        for connection in await self.connections.list_active(brand_id):
            if connection.platform_type != "shopify":
                continue
            payload = SyncJobPayload(
                brand_id=brand_id,
                connection_id=connection.id,
                lookback_days=lookback,
                reason=mode.value,
            )
            job_ids.append(
                await self.queue.enqueue(
                    build_request(
                        self.settings,
                        JobType.BACKFILL_SCAN,
                        payload,
                        idempotency_key=idempotency_key(JobType.BACKFILL_SCAN.value, connection.id, mode.value, day),
                    )
                )
            )
        logger.info("Backfill scans requested", brand_id=brand_id, mode=mode.value, job_count=len(job_ids))
        return job_ids

    async def deep_scan(self, brand_id: str) -> list[str]:
        """Operator-triggered one-time cleanup over the long window."""
        return await self.request_refresh(brand_id, RefreshMode.COMPREHENSIVE)

    async def handle_backfill_scan(self, job: ClaimedJob) -> dict[str, Any]:
        payload = parse_payload(job)
        connection = await require_syncable(self.connections, payload.connection_id)
        lookback = payload.lookback_days or self.settings.gap_lookback_days
        return await self.run_for_connection(connection, lookback)
