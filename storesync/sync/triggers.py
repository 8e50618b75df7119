"""Entry points that start a connection's sync."""

from __future__ import annotations

import structlog

from storesync.config import Settings, get_settings
from storesync.connections import ConnectionRepository, require_syncable
from storesync.jobs.queue import JobQueue
from storesync.jobs.types import JobType, SyncJobPayload
from storesync.kernel.time import utc_now
from storesync.sync.scheduling import build_request, idempotency_key

logger = structlog.get_logger()


async def trigger_sync(
    queue: JobQueue,
    connections: ConnectionRepository,
    connection_id: str,
    *,
    reason: str = "manual",
    settings: Settings | None = None,
) -> str:
    """
    Enqueue a recent_sync job for a connection.

    Repeated triggers within the same hour collapse onto one job.
    """
    settings = settings or get_settings()
    connection = await require_syncable(connections, connection_id)

    payload = SyncJobPayload(
        brand_id=connection.brand_id,
        connection_id=connection.id,
        shop_identifier=connection.shop,
        reason=reason,
    )
    bucket = utc_now().strftime("%Y%m%d%H")
    job_id = await queue.enqueue(
        build_request(
            settings,
            JobType.RECENT_SYNC,
            payload,
            idempotency_key=idempotency_key(JobType.RECENT_SYNC.value, connection.id, reason, bucket),
        )
    )
    logger.info(
        "Sync triggered",
        connection_id=connection.id,
        brand_id=connection.brand_id,
        reason=reason,
        job_id=job_id,
    )
    return job_id


async def on_connection_created(
    queue: JobQueue,
    connections: ConnectionRepository,
    connection_id: str,
    *,
    settings: Settings | None = None,
) -> str:
    return await trigger_sync(queue, connections, connection_id, reason="initial_connection", settings=settings)
