"""ETL job ledger domain types."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class EtlJobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (EtlJobStatus.COMPLETED, EtlJobStatus.FAILED)


_ALLOWED_TRANSITIONS: dict[EtlJobStatus, frozenset[EtlJobStatus]] = {
    EtlJobStatus.PENDING: frozenset({EtlJobStatus.PENDING, EtlJobStatus.RUNNING, EtlJobStatus.FAILED}),
    EtlJobStatus.RUNNING: frozenset({EtlJobStatus.RUNNING, EtlJobStatus.COMPLETED, EtlJobStatus.FAILED}),
    EtlJobStatus.COMPLETED: frozenset(),
    EtlJobStatus.FAILED: frozenset(),
}


def can_transition(current: EtlJobStatus, requested: EtlJobStatus) -> bool:
    return requested in _ALLOWED_TRANSITIONS[current]


# Columns callers may change through `update`.
UPDATABLE_FIELDS = frozenset(
    {
        "status",
        "external_bulk_handle",
        "rows_written",
        "total_rows",
        "progress_pct",
        "error_message",
    }
)


@dataclass
class EtlJob:
    id: int
    brand_id: str
    connection_id: str | None
    entity: str
    job_type: str
    status: EtlJobStatus = EtlJobStatus.PENDING
    external_bulk_handle: str | None = None
    rows_written: int = 0
    total_rows: int | None = None
    progress_pct: float = 0.0
    error_message: str | None = None
    created_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    failed_at: datetime | None = None

    @classmethod
    def from_row(cls, row: Any) -> "EtlJob":
        return cls(
            id=int(row["id"]),
            brand_id=row["brand_id"],
            connection_id=row.get("connection_id"),
            entity=row["entity"],
            job_type=row["job_type"],
            status=EtlJobStatus(row["status"]),
            external_bulk_handle=row.get("external_bulk_handle"),
            rows_written=int(row.get("rows_written") or 0),
            total_rows=row.get("total_rows"),
            progress_pct=float(row.get("progress_pct") or 0.0),
            error_message=row.get("error_message"),
            created_at=row.get("created_at"),
            started_at=row.get("started_at"),
            completed_at=row.get("completed_at"),
            failed_at=row.get("failed_at"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "brand_id": self.brand_id,
            "connection_id": self.connection_id,
            "entity": self.entity,
            "job_type": self.job_type,
            "status": self.status.value,
            "external_bulk_handle": self.external_bulk_handle,
            "rows_written": self.rows_written,
            "total_rows": self.total_rows,
            "progress_pct": self.progress_pct,
            "error_message": self.error_message,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "failed_at": self.failed_at.isoformat() if self.failed_at else None,
        }


@dataclass
class Milestone:
    entity: str
    status: str
    rows_written: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {"entity": self.entity, "status": self.status, "rows_written": self.rows_written}


@dataclass
class SyncStatus:
    overall_status: str
    milestones: list[Milestone] = field(default_factory=list)
    progress_pct: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "overall_status": self.overall_status,
            "milestones": [m.to_dict() for m in self.milestones],
            "progress_pct": self.progress_pct,
        }
