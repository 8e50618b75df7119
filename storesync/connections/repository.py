"""
Platform Connection Repository

Loads connection credentials freshly for every job and records the aggregate
sync status on the connection row.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol

import structlog
from sqlalchemy import text

from storesync.db.client import get_db_session
from storesync.kernel.errors import ConnectionInactiveError, ConnectionNotFoundError
from storesync.kernel.time import utc_now

logger = structlog.get_logger()


@dataclass
class Connection:
    id: str
    brand_id: str
    platform_type: str
    shop: str | None
    access_token: str | None
    status: str = "active"
    sync_status: str = "not_started"
    metadata: dict[str, Any] = field(default_factory=dict)
    last_synced_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    def __repr__(self) -> str:
        # Never render the credential.
        return f"Connection(id={self.id!r}, platform_type={self.platform_type!r}, shop={self.shop!r}, status={self.status!r})"


class ConnectionRepository(Protocol):
    async def get(self, connection_id: str) -> Connection | None:
        ...

    async def list_active(self, brand_id: str) -> list[Connection]:
        ...

    async def update_sync_status(
        self,
        connection_id: str,
        sync_status: str,
        *,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        ...


async def require_syncable(repo: ConnectionRepository, connection_id: str) -> Connection:
    """
    Load a connection that a sync job can run against.

    Raises non-retryable errors: retrying against a missing or revoked
    connection would loop forever.
    """
    connection = await repo.get(connection_id)
    if connection is None:
        raise ConnectionNotFoundError(connection_id=connection_id)
    if not connection.is_active:
        raise ConnectionInactiveError(connection_id=connection_id, reason=f"status is {connection.status}")
    if not connection.access_token:
        raise ConnectionInactiveError(connection_id=connection_id, reason="no access token")
    if not connection.shop:
        raise ConnectionInactiveError(connection_id=connection_id, reason="no shop domain")
    return connection


def _row_to_connection(row: Any) -> Connection:
    return Connection(
        id=str(row["id"]),
        brand_id=row["brand_id"],
        platform_type=row["platform_type"],
        shop=row.get("shop"),
        access_token=row.get("access_token"),
        status=row.get("status") or "active",
        sync_status=row.get("sync_status") or "not_started",
        metadata=dict(row.get("metadata") or {}),
        last_synced_at=row.get("last_synced_at"),
    )


class PostgresConnectionRepository:
    """Connection storage in the `platform_connections` table."""

    async def get(self, connection_id: str) -> Connection | None:
        async with get_db_session() as session:
            result = await session.execute(
                text(
                    """
                    SELECT id, brand_id, platform_type, shop, access_token,
                           status, sync_status, metadata, last_synced_at
                    FROM platform_connections
                    WHERE id = :connection_id
                    """
                ),
                {"connection_id": connection_id},
            )
            row = result.mappings().first()
        return _row_to_connection(row) if row else None

    async def list_active(self, brand_id: str) -> list[Connection]:
        async with get_db_session() as session:
            result = await session.execute(
                text(
                    """
                    SELECT id, brand_id, platform_type, shop, access_token,
                           status, sync_status, metadata, last_synced_at
                    FROM platform_connections
                    WHERE brand_id = :brand_id AND status = 'active'
                    ORDER BY created_at ASC
                    """
                ),
                {"brand_id": brand_id},
            )
            rows = result.mappings().all()
        return [_row_to_connection(row) for row in rows]

    async def update_sync_status(
        self,
        connection_id: str,
        sync_status: str,
        *,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        now = utc_now()
        async with get_db_session() as session:
            await session.execute(
                text(
                    """
                    UPDATE platform_connections
                    SET sync_status = :sync_status,
                        metadata = COALESCE(metadata, '{}'::jsonb) || CAST(:metadata AS jsonb),
                        last_synced_at = COALESCE(CAST(:last_synced_at AS timestamptz), last_synced_at),
                        updated_at = :now
                    WHERE id = :connection_id
                    """
                ),
                {
                    "connection_id": connection_id,
                    "sync_status": sync_status,
                    "metadata": json.dumps(metadata or {}),
                    "last_synced_at": now if sync_status == "completed" else None,
                    "now": now,
                },
            )
        logger.info(
            "Connection sync status updated",
            connection_id=connection_id,
            sync_status=sync_status,
        )
