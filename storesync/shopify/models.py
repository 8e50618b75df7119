"""Wire models for the platform's bulk operation API."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class BulkOperationStatus(str, Enum):
    CREATED = "CREATED"
    RUNNING = "RUNNING"
    CANCELING = "CANCELING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELED = "CANCELED"
    EXPIRED = "EXPIRED"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL

    @property
    def is_failure(self) -> bool:
        return self in (BulkOperationStatus.FAILED, BulkOperationStatus.CANCELED, BulkOperationStatus.EXPIRED)


_TERMINAL = frozenset(
    {
        BulkOperationStatus.COMPLETED,
        BulkOperationStatus.FAILED,
        BulkOperationStatus.CANCELED,
        BulkOperationStatus.EXPIRED,
    }
)


class BulkOperationHandle(BaseModel):
    """A provider-side bulk operation as observed through polling."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    status: BulkOperationStatus
    error_code: str | None = Field(default=None, alias="errorCode")
    url: str | None = None
    partial_data_url: str | None = Field(default=None, alias="partialDataUrl")
    created_at: datetime | None = Field(default=None, alias="createdAt")
    completed_at: datetime | None = Field(default=None, alias="completedAt")
    object_count: int | None = Field(default=None, alias="objectCount")

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal


class ProcessResult(BaseModel):
    """Outcome of downloading and persisting one bulk result file."""

    counts: dict[str, int] = Field(default_factory=dict)
    lines_read: int = 0
    lines_skipped: int = 0

    @property
    def rows_written(self) -> int:
        return sum(self.counts.values())
