"""
Sync Orchestrator

Job handlers that drive a connection's historical import:

    recent_sync -> bulk_orders -> poll_bulk ... -> bulk_customers -> poll_bulk ...
                -> bulk_products -> poll_bulk ... -> inventory reconciliation

The platform accepts one bulk operation per account, so each stage is started
only from the completion handler of the previous one. Polling is a queue job
that re-enqueues itself until the operation reaches a terminal state.

Ledger rules:
- A conflicting in-flight operation re-enqueues the stage and leaves the ledger
  entry running.
- Transient platform failures leave the entry running while the queue retries;
  the final attempt marks it failed.
- Terminal operation failures and missing connections mark it failed at once.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable

import structlog

from storesync.config import Settings, get_settings
from storesync.connections import Connection, ConnectionRepository, require_syncable
from storesync.jobs.queue import ClaimedJob, JobQueue
from storesync.jobs.types import (
    BULK_JOB_TYPES,
    BulkEntity,
    JobMetadata,
    JobType,
    SyncJobPayload,
    next_entity,
)
from storesync.kernel.errors import (
    BulkOperationConflictError,
    BulkOperationFailedError,
    InvalidJobPayloadError,
    NonRetryableError,
)
from storesync.kernel.time import parse_iso8601
from storesync.ledger import EtlJob, EtlJobLedger, EtlJobStatus, compute_sync_status
from storesync.ledger.status import COMPLETED, FAILED, IN_PROGRESS, STATUS_JOB_TYPES
from storesync.shopify.bulk_client import BulkOperationClient
from storesync.shopify.recent import RecentOrdersClient
from storesync.sync.inventory import InventoryReconciler
from storesync.sync.scheduling import build_request, idempotency_key, parse_payload

logger = structlog.get_logger()

_ENTITY_BY_JOB_TYPE = {job_type.value: entity for entity, job_type in BULK_JOB_TYPES.items()}

RECENT_ENTITY = "recent"


@dataclass
class PlatformClients:
    """Builds platform clients for a freshly loaded connection."""

    bulk: Callable[[Connection], BulkOperationClient]
    recent: Callable[[Connection], RecentOrdersClient]


def _ledger_job_type(job_type: JobType, payload: SyncJobPayload) -> str:
    # Targeted repair exports are tracked apart from the connection's full import.
    return job_type.value if payload.chain else f"{job_type.value}_repair"


class ShopifySyncOrchestrator:
    def __init__(
        self,
        *,
        queue: JobQueue,
        ledger: EtlJobLedger,
        connections: ConnectionRepository,
        clients: PlatformClients,
        inventory: InventoryReconciler | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.queue = queue
        self.ledger = ledger
        self.connections = connections
        self.clients = clients
        self.inventory = inventory
        self.settings = settings or get_settings()

    # ------------------------------------------------------------------
    # recent_sync
    # ------------------------------------------------------------------

    async def handle_recent_sync(self, job: ClaimedJob) -> dict[str, Any]:
        """
        Entry point of a connection's import.

        The quick recent fetch is bypassed: the stage records an empty ledger
        entry and hands straight over to the orders bulk export.
        """
        payload = parse_payload(job)
        connection = await require_syncable(self.connections, payload.connection_id)

        entry = await self.ledger.create(
            brand_id=payload.brand_id,
            connection_id=connection.id,
            entity=RECENT_ENTITY,
            job_type=JobType.RECENT_SYNC.value,
            status=EtlJobStatus.RUNNING,
        )
        await self.ledger.update(entry.id, status=EtlJobStatus.COMPLETED, rows_written=0)

        await self.connections.update_sync_status(
            connection.id,
            IN_PROGRESS,
            metadata={"sync_stage": "historical_import", "historical_sync_queued": True},
        )

        stage_payload = SyncJobPayload(
            brand_id=payload.brand_id,
            connection_id=connection.id,
            shop_identifier=connection.shop,
            entity=BulkEntity.ORDERS,
        )
        next_job_id = await self.queue.enqueue(
            build_request(
                self.settings,
                JobType.BULK_ORDERS,
                stage_payload,
                idempotency_key=idempotency_key(JobType.BULK_ORDERS.value, connection.id, job.id),
            )
        )
        logger.info(
            "Recent sync handed over to bulk import",
            connection_id=connection.id,
            etl_job_id=entry.id,
            next_job_id=next_job_id,
        )
        return {"etl_job_id": entry.id, "next_job_id": next_job_id}

    # ------------------------------------------------------------------
    # bulk_orders / bulk_customers / bulk_products
    # ------------------------------------------------------------------

    async def handle_bulk_export(self, job: ClaimedJob) -> dict[str, Any]:
        entity = _ENTITY_BY_JOB_TYPE.get(job.job_type)
        if entity is None:
            raise InvalidJobPayloadError(job_type=job.job_type, message="not a bulk export job type")
        job_type = JobType(job.job_type)
        payload = parse_payload(job)
        payload.entity = entity

        entry: EtlJob | None = None
        try:
            connection = await require_syncable(self.connections, payload.connection_id)
            entry = await self._open_ledger_entry(job_type, payload)
            if entry.external_bulk_handle:
                logger.info(
                    "Bulk stage already started",
                    etl_job_id=entry.id,
                    bulk_operation_id=entry.external_bulk_handle,
                )
                return {"etl_job_id": entry.id, "status": "already_started"}

            client = self.clients.bulk(connection)
            await self._cancel_if_stuck(client, connection)
            handle = await client.start_bulk_export(
                entity,
                since_date=payload.since_date,
                until_date=payload.until_date,
            )
        except BulkOperationConflictError as exc:
            return await self._retry_after_conflict(job, payload, entry, exc)
        except Exception as exc:
            await self._fail_entry_if_final(job, payload, entry, exc)
            raise

        entry = await self.ledger.update(entry.id, external_bulk_handle=handle.id)
        poll_payload = payload.model_copy(
            update={
                "bulk_operation_id": handle.id,
                "metadata": JobMetadata(etl_job_id=entry.id),
            }
        )
        poll_job_id = await self.queue.enqueue(
            build_request(
                self.settings,
                JobType.POLL_BULK,
                poll_payload,
                delay_seconds=self.settings.bulk_poll_interval_seconds,
            )
        )
        return {
            "etl_job_id": entry.id,
            "bulk_operation_id": handle.id,
            "poll_job_id": poll_job_id,
        }

    async def _open_ledger_entry(self, job_type: JobType, payload: SyncJobPayload) -> EtlJob:
        ledger_job_type = _ledger_job_type(job_type, payload)
        if payload.metadata.etl_job_id is not None:
            entry = await self.ledger.get(payload.metadata.etl_job_id)
            if entry is not None and not entry.status.is_terminal:
                return entry

        entry = await self.ledger.find_open(
            connection_id=payload.connection_id,
            entity=payload.entity.value,
            job_type=ledger_job_type,
        )
        if entry is not None:
            if entry.status == EtlJobStatus.PENDING:
                entry = await self.ledger.update(entry.id, status=EtlJobStatus.RUNNING)
            return entry

        return await self.ledger.create(
            brand_id=payload.brand_id,
            connection_id=payload.connection_id,
            entity=payload.entity.value,
            job_type=ledger_job_type,
            status=EtlJobStatus.RUNNING,
        )

    async def _cancel_if_stuck(self, client: BulkOperationClient, connection: Connection) -> None:
        existing = await client.check_existing()
        if existing is None or not client.is_stuck(existing):
            return
        logger.warning(
            "Cancelling stuck bulk operation",
            connection_id=connection.id,
            bulk_operation_id=existing.id,
            status=existing.status.value,
            created_at=existing.created_at.isoformat() if existing.created_at else None,
        )
        await client.cancel_existing(existing.id)

    async def _retry_after_conflict(
        self,
        job: ClaimedJob,
        payload: SyncJobPayload,
        entry: EtlJob | None,
        exc: BulkOperationConflictError,
    ) -> dict[str, Any]:
        metadata = payload.metadata.model_copy(update={"etl_job_id": entry.id if entry else None})
        retry_payload = payload.model_copy(update={"metadata": metadata})
        delay = self.settings.bulk_conflict_retry_seconds
        retry_job_id = await self.queue.requeue(job, delay_seconds=delay, payload=retry_payload.to_job())
        logger.info(
            "Bulk operation in flight, stage re-enqueued",
            connection_id=payload.connection_id,
            entity=payload.entity.value if payload.entity else None,
            etl_job_id=entry.id if entry else None,
            in_flight_operation_id=exc.operation_id,
            delay_seconds=delay,
            retry_job_id=retry_job_id,
        )
        return {
            "etl_job_id": entry.id if entry else None,
            "status": "conflict_retry",
            "retry_job_id": retry_job_id,
        }

    # ------------------------------------------------------------------
    # poll_bulk
    # ------------------------------------------------------------------

    async def handle_poll_bulk(self, job: ClaimedJob) -> dict[str, Any]:
        payload = parse_payload(job)
        if payload.entity is None or not payload.bulk_operation_id or payload.metadata.etl_job_id is None:
            raise InvalidJobPayloadError(
                job_type=job.job_type,
                message="poll_bulk requires entity, bulkOperationId and metadata.etlJobId",
            )

        entry = await self.ledger.get(payload.metadata.etl_job_id)
        if entry is None:
            raise InvalidJobPayloadError(
                job_type=job.job_type,
                message=f"ETL job {payload.metadata.etl_job_id} does not exist",
            )
        if entry.status == EtlJobStatus.COMPLETED and payload.chain:
            # A retry after the ledger was closed: finish the hand-off. The next
            # stage's idempotency key keeps it from being enqueued twice.
            logger.info("Resuming hand-off for completed stage", etl_job_id=entry.id, attempts=job.attempts)
            await self.refresh_overall_status(payload.brand_id, payload.connection_id)
            return {
                "etl_job_id": entry.id,
                "status": entry.status.value,
                "next": await self._start_next_stage(payload, entry),
            }
        if entry.status.is_terminal:
            logger.info("Ignoring poll for finished stage", etl_job_id=entry.id, status=entry.status.value)
            return {"etl_job_id": entry.id, "status": entry.status.value}

        try:
            connection = await require_syncable(self.connections, payload.connection_id)
            client = self.clients.bulk(connection)
            handle = await client.poll_status(payload.bulk_operation_id)

            if not handle.is_terminal:
                if handle.object_count is not None:
                    await self.ledger.update(entry.id, total_rows=handle.object_count)
                next_poll_id = await self.queue.requeue(
                    job,
                    delay_seconds=self.settings.bulk_poll_interval_seconds,
                )
                logger.debug(
                    "Bulk operation still running",
                    bulk_operation_id=handle.id,
                    status=handle.status.value,
                    object_count=handle.object_count,
                )
                return {"etl_job_id": entry.id, "status": handle.status.value, "next_poll_job_id": next_poll_id}

            if handle.status.is_failure:
                raise BulkOperationFailedError(
                    operation_id=handle.id,
                    status=handle.status.value,
                    error_code=handle.error_code,
                )

            result = await client.download_and_process(handle.url, payload.entity)
        except Exception as exc:
            await self._fail_entry_if_final(job, payload, entry, exc)
            raise

        entry = await self.ledger.update(
            entry.id,
            status=EtlJobStatus.COMPLETED,
            rows_written=result.rows_written,
            total_rows=handle.object_count if handle.object_count is not None else result.lines_read,
        )
        logger.info(
            "Bulk stage completed",
            connection_id=payload.connection_id,
            entity=payload.entity.value,
            etl_job_id=entry.id,
            rows_written=result.rows_written,
            lines_skipped=result.lines_skipped,
        )
        await self.refresh_overall_status(payload.brand_id, payload.connection_id)

        response: dict[str, Any] = {
            "etl_job_id": entry.id,
            "status": EtlJobStatus.COMPLETED.value,
            "counts": result.counts,
        }
        if payload.chain:
            response["next"] = await self._start_next_stage(payload, entry)
        return response

    async def _start_next_stage(self, payload: SyncJobPayload, completed: EtlJob) -> str | None:
        following = next_entity(payload.entity)
        if following is None:
            if self.inventory is not None:
                await self.inventory.trigger(brand_id=payload.brand_id, connection_id=payload.connection_id)
            return None

        job_type = BULK_JOB_TYPES[following]
        next_payload = SyncJobPayload(
            brand_id=payload.brand_id,
            connection_id=payload.connection_id,
            shop_identifier=payload.shop_identifier,
            entity=following,
        )
        next_job_id = await self.queue.enqueue(
            build_request(
                self.settings,
                job_type,
                next_payload,
                idempotency_key=idempotency_key(job_type.value, payload.connection_id, completed.id),
            )
        )
        logger.info(
            "Next bulk stage enqueued",
            connection_id=payload.connection_id,
            entity=following.value,
            job_id=next_job_id,
        )
        return next_job_id

    # ------------------------------------------------------------------
    # refresh_range
    # ------------------------------------------------------------------

    async def handle_refresh_range(self, job: ClaimedJob) -> dict[str, Any]:
        """Re-fetch a narrow date range through the recent API."""
        payload = parse_payload(job)
        if not payload.range_start or not payload.range_end:
            raise InvalidJobPayloadError(job_type=job.job_type, message="refresh_range requires rangeStart and rangeEnd")
        try:
            start = parse_iso8601(payload.range_start)
            end = parse_iso8601(payload.range_end)
        except ValueError as exc:
            raise InvalidJobPayloadError(job_type=job.job_type, message=str(exc)) from exc

        entry: EtlJob | None = None
        try:
            connection = await require_syncable(self.connections, payload.connection_id)
            entry = await self._refresh_ledger_entry(payload, job)
            counts = await self.clients.recent(connection).fetch_range(start, end)
        except Exception as exc:
            await self._fail_entry_if_final(job, payload, entry, exc)
            raise

        rows = sum(counts.values())
        await self.ledger.update(entry.id, status=EtlJobStatus.COMPLETED, rows_written=rows)
        logger.info(
            "Range refreshed",
            connection_id=payload.connection_id,
            range_start=payload.range_start,
            range_end=payload.range_end,
            reason=payload.reason,
            rows_written=rows,
        )
        return {"etl_job_id": entry.id, "counts": counts}

    async def _refresh_ledger_entry(self, payload: SyncJobPayload, job: ClaimedJob) -> EtlJob:
        if payload.metadata.etl_job_id is not None:
            entry = await self.ledger.get(payload.metadata.etl_job_id)
            if entry is not None and not entry.status.is_terminal:
                return entry
        if job.attempts > 1:
            entry = await self.ledger.find_open(
                connection_id=payload.connection_id,
                entity=RECENT_ENTITY,
                job_type=JobType.REFRESH_RANGE.value,
            )
            if entry is not None:
                return entry
        return await self.ledger.create(
            brand_id=payload.brand_id,
            connection_id=payload.connection_id,
            entity=RECENT_ENTITY,
            job_type=JobType.REFRESH_RANGE.value,
            status=EtlJobStatus.RUNNING,
        )

    # ------------------------------------------------------------------
    # shared
    # ------------------------------------------------------------------

    async def _fail_entry_if_final(
        self,
        job: ClaimedJob,
        payload: SyncJobPayload,
        entry: EtlJob | None,
        exc: BaseException,
    ) -> None:
        """Mark the ledger entry failed when the queue will not run this job again."""
        if entry is None or entry.status.is_terminal:
            return
        if not isinstance(exc, NonRetryableError) and not job.is_last_attempt:
            logger.warning(
                "Stage attempt failed, will retry",
                etl_job_id=entry.id,
                attempts=job.attempts,
                max_attempts=job.max_attempts,
                error=str(exc),
            )
            return

        await self.ledger.update(entry.id, status=EtlJobStatus.FAILED, error_message=str(exc)[:2000])
        logger.error(
            "Stage failed",
            etl_job_id=entry.id,
            entity=entry.entity,
            job_type=job.job_type,
            error=str(exc),
        )
        await self.refresh_overall_status(payload.brand_id, payload.connection_id)

    async def refresh_overall_status(self, brand_id: str, connection_id: str) -> str:
        """
        Recompute the connection's aggregate status after a terminal ledger update.

        Only completed and failed are written; anything else leaves the
        connection in progress.
        """
        jobs = await self.ledger.list_for_brand(
            brand_id,
            connection_id=connection_id,
            job_types=STATUS_JOB_TYPES,
        )
        status = compute_sync_status(jobs)
        if status.overall_status in (COMPLETED, FAILED):
            await self.connections.update_sync_status(
                connection_id,
                status.overall_status,
                metadata={
                    "sync_stage": status.overall_status,
                    "milestones": [milestone.to_dict() for milestone in status.milestones],
                },
            )
        return status.overall_status
