"""
ETL Job Ledger Repository

Persists one row per unit of sync work in the `etl_job` table. Entries are
never deleted and their status only moves forward.
"""

from __future__ import annotations

from typing import Any, Iterable, Protocol

import structlog
from sqlalchemy import text

from storesync.db.client import get_db_session
from storesync.kernel.errors import InvalidLedgerTransitionError, NotFoundError, ValidationError
from storesync.kernel.time import utc_now
from storesync.ledger.models import (
    UPDATABLE_FIELDS,
    EtlJob,
    EtlJobStatus,
    can_transition,
)

logger = structlog.get_logger()

_SELECT_COLUMNS = """
    id, brand_id, connection_id, entity, job_type, status,
    external_bulk_handle, rows_written, total_rows, progress_pct,
    error_message, created_at, started_at, completed_at, failed_at
"""


class EtlJobLedger(Protocol):
    async def create(
        self,
        *,
        brand_id: str,
        connection_id: str | None,
        entity: str,
        job_type: str,
        status: EtlJobStatus = EtlJobStatus.PENDING,
    ) -> EtlJob:
        ...

    async def update(self, job_id: int, **fields: Any) -> EtlJob:
        ...

    async def get(self, job_id: int) -> EtlJob | None:
        ...

    async def find_open(self, *, connection_id: str, entity: str, job_type: str) -> EtlJob | None:
        ...

    async def list_for_brand(
        self,
        brand_id: str,
        *,
        connection_id: str | None = None,
        job_types: Iterable[str] | None = None,
        limit: int = 100,
    ) -> list[EtlJob]:
        ...


def prepare_update(current: EtlJob, fields: dict[str, Any], *, now) -> dict[str, Any]:
    """
    Validate a partial update against the current entry and stamp timestamps.

    Shared by every ledger implementation so transition rules live in one place.
    """
    unknown = set(fields) - UPDATABLE_FIELDS
    if unknown:
        raise ValidationError(message=f"Unknown ledger fields: {sorted(unknown)}")

    values = dict(fields)
    requested = values.get("status")
    if requested is None:
        if current.status.is_terminal:
            raise InvalidLedgerTransitionError(
                job_id=str(current.id),
                current=current.status.value,
                requested=current.status.value,
            )
        return values

    requested = EtlJobStatus(requested)
    if not can_transition(current.status, requested):
        raise InvalidLedgerTransitionError(
            job_id=str(current.id),
            current=current.status.value,
            requested=requested.value,
        )

    values["status"] = requested.value
    if requested == EtlJobStatus.RUNNING and current.started_at is None:
        values["started_at"] = now
    elif requested == EtlJobStatus.COMPLETED:
        values["completed_at"] = now
        values.setdefault("progress_pct", 100.0)
        if current.started_at is None:
            values["started_at"] = now
    elif requested == EtlJobStatus.FAILED:
        values["failed_at"] = now
    return values


class PostgresEtlJobLedger:
    """Ledger backed by the `etl_job` table."""

    async def create(
        self,
        *,
        brand_id: str,
        connection_id: str | None,
        entity: str,
        job_type: str,
        status: EtlJobStatus = EtlJobStatus.PENDING,
    ) -> EtlJob:
        now = utc_now()
        started_at = now if status == EtlJobStatus.RUNNING else None
        async with get_db_session() as session:
            result = await session.execute(
                text(
                    f"""
                    INSERT INTO etl_job (
                        brand_id, connection_id, entity, job_type, status,
                        rows_written, progress_pct, created_at, started_at, updated_at
                    ) VALUES (
                        :brand_id, :connection_id, :entity, :job_type, :status,
                        0, 0, :now, :started_at, :now
                    )
                    RETURNING {_SELECT_COLUMNS}
                    """
                ),
                {
                    "brand_id": brand_id,
                    "connection_id": connection_id,
                    "entity": entity,
                    "job_type": job_type,
                    "status": EtlJobStatus(status).value,
                    "now": now,
                    "started_at": started_at,
                },
            )
            row = result.mappings().one()

        job = EtlJob.from_row(row)
        logger.info(
            "ETL job created",
            etl_job_id=job.id,
            brand_id=brand_id,
            entity=entity,
            job_type=job_type,
            status=job.status.value,
        )
        return job

    async def update(self, job_id: int, **fields: Any) -> EtlJob:
        now = utc_now()
        async with get_db_session() as session:
            result = await session.execute(
                text(f"SELECT {_SELECT_COLUMNS} FROM etl_job WHERE id = :id FOR UPDATE"),
                {"id": job_id},
            )
            row = result.mappings().first()
            if row is None:
                raise NotFoundError(message=f"ETL job {job_id} not found", code="ledger.not_found")

            current = EtlJob.from_row(row)
            values = prepare_update(current, fields, now=now)
            if not values:
                return current

            assignments = ", ".join(f"{column} = :{column}" for column in values)
            result = await session.execute(
                text(
                    f"""
                    UPDATE etl_job
                    SET {assignments}, updated_at = :updated_at
                    WHERE id = :id
                    RETURNING {_SELECT_COLUMNS}
                    """
                ),
                {**values, "updated_at": now, "id": job_id},
            )
            updated = EtlJob.from_row(result.mappings().one())

        if "status" in values and values["status"] != current.status.value:
            logger.info(
                "ETL job status changed",
                etl_job_id=job_id,
                previous=current.status.value,
                status=updated.status.value,
                rows_written=updated.rows_written,
            )
        return updated

    async def get(self, job_id: int) -> EtlJob | None:
        async with get_db_session() as session:
            result = await session.execute(
                text(f"SELECT {_SELECT_COLUMNS} FROM etl_job WHERE id = :id"),
                {"id": job_id},
            )
            row = result.mappings().first()
        return EtlJob.from_row(row) if row else None

    async def find_open(self, *, connection_id: str, entity: str, job_type: str) -> EtlJob | None:
        """Most recent non-terminal entry for a connection stage, if one exists."""
        async with get_db_session() as session:
            result = await session.execute(
                text(
                    f"""
                    SELECT {_SELECT_COLUMNS}
                    FROM etl_job
                    WHERE connection_id = :connection_id
                      AND entity = :entity
                      AND job_type = :job_type
                      AND status IN ('pending', 'running')
                    ORDER BY id DESC
                    LIMIT 1
                    """
                ),
                {"connection_id": connection_id, "entity": entity, "job_type": job_type},
            )
            row = result.mappings().first()
        return EtlJob.from_row(row) if row else None

    async def list_for_brand(
        self,
        brand_id: str,
        *,
        connection_id: str | None = None,
        job_types: Iterable[str] | None = None,
        limit: int = 100,
    ) -> list[EtlJob]:
        params: dict[str, Any] = {"brand_id": brand_id, "limit": max(1, int(limit))}
        connection_filter = ""
        if connection_id:
            connection_filter = "AND connection_id = :connection_id"
            params["connection_id"] = connection_id
        type_filter = ""
        if job_types is not None:
            type_filter = "AND job_type = ANY(:job_types)"
            params["job_types"] = list(job_types)

        async with get_db_session() as session:
            result = await session.execute(
                text(
                    f"""
                    SELECT {_SELECT_COLUMNS}
                    FROM etl_job
                    WHERE brand_id = :brand_id
                    {connection_filter}
                    {type_filter}
                    ORDER BY id DESC
                    LIMIT :limit
                    """
                ),
                params,
            )
            rows = result.mappings().all()
        return [EtlJob.from_row(row) for row in rows]
