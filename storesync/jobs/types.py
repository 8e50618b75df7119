"""Job types, their queue policies, and the shared payload shape."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from storesync.config import Settings


class JobType(str, Enum):
    RECENT_SYNC = "recent_sync"
    BULK_ORDERS = "bulk_orders"
    BULK_CUSTOMERS = "bulk_customers"
    BULK_PRODUCTS = "bulk_products"
    POLL_BULK = "poll_bulk"
    REFRESH_RANGE = "refresh_range"
    BACKFILL_SCAN = "backfill_scan"


class BulkEntity(str, Enum):
    ORDERS = "orders"
    CUSTOMERS = "customers"
    PRODUCTS = "products"


# The platform accepts one bulk operation per account at a time, so stages run
# strictly in this order.
BULK_SEQUENCE: tuple[BulkEntity, ...] = (
    BulkEntity.ORDERS,
    BulkEntity.CUSTOMERS,
    BulkEntity.PRODUCTS,
)

BULK_JOB_TYPES: dict[BulkEntity, JobType] = {
    BulkEntity.ORDERS: JobType.BULK_ORDERS,
    BulkEntity.CUSTOMERS: JobType.BULK_CUSTOMERS,
    BulkEntity.PRODUCTS: JobType.BULK_PRODUCTS,
}


def next_entity(entity: BulkEntity) -> BulkEntity | None:
    index = BULK_SEQUENCE.index(entity)
    if index + 1 < len(BULK_SEQUENCE):
        return BULK_SEQUENCE[index + 1]
    return None


@dataclass(frozen=True)
class JobPolicy:
    priority: int
    max_concurrency: int | None
    max_attempts: int


def job_policies(settings: Settings) -> dict[JobType, JobPolicy]:
    bulk = settings.bulk_export_concurrency
    attempts = settings.job_max_attempts
    return {
        JobType.RECENT_SYNC: JobPolicy(priority=10, max_concurrency=settings.recent_sync_concurrency, max_attempts=attempts),
        JobType.BULK_ORDERS: JobPolicy(priority=5, max_concurrency=bulk, max_attempts=attempts),
        JobType.BULK_CUSTOMERS: JobPolicy(priority=4, max_concurrency=bulk, max_attempts=attempts),
        JobType.BULK_PRODUCTS: JobPolicy(priority=3, max_concurrency=bulk, max_attempts=attempts),
        JobType.POLL_BULK: JobPolicy(
            priority=5,
            max_concurrency=settings.poll_bulk_concurrency,
            max_attempts=settings.bulk_poll_max_attempts,
        ),
        JobType.REFRESH_RANGE: JobPolicy(priority=2, max_concurrency=settings.refresh_range_concurrency, max_attempts=attempts),
        JobType.BACKFILL_SCAN: JobPolicy(priority=1, max_concurrency=1, max_attempts=3),
    }


def bulk_resource_key(connection_id: str) -> str:
    return f"shopify-bulk:{connection_id}"


class JobMetadata(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    etl_job_id: int | None = Field(default=None, alias="etlJobId")


class SyncJobPayload(BaseModel):
    """
    Queue payload shared by every sync job type.

    Serialized with camelCase keys, matching what producers outside this
    service enqueue. The access token is optional: handlers always reload the
    credential from the connection row.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    brand_id: str = Field(alias="brandId")
    connection_id: str = Field(alias="connectionId")
    shop_identifier: str | None = Field(default=None, alias="shopIdentifier")
    access_token: str | None = Field(default=None, alias="accessToken")
    entity: BulkEntity | None = None
    bulk_operation_id: str | None = Field(default=None, alias="bulkOperationId")
    metadata: JobMetadata = Field(default_factory=JobMetadata)

    # Targeted repair exports: restrict the query and do not chain stages.
    since_date: str | None = Field(default=None, alias="sinceDate")
    until_date: str | None = Field(default=None, alias="untilDate")
    chain: bool = True

    # refresh_range / backfill_scan
    range_start: str | None = Field(default=None, alias="rangeStart")
    range_end: str | None = Field(default=None, alias="rangeEnd")
    reason: str | None = None
    lookback_days: int | None = Field(default=None, alias="lookbackDays")

    @classmethod
    def from_job(cls, payload: dict[str, Any]) -> "SyncJobPayload":
        return cls.model_validate(payload or {})

    def to_job(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
