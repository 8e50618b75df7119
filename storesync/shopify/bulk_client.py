"""
Bulk Operation Client

Drives the platform's asynchronous bulk export API for one connection:
submit a query, observe the handle by polling, then stream the JSONL result
file into the fact tables with natural-key upserts.

The platform allows one non-terminal bulk operation per account. A conflicting
in-flight handle is surfaced as `BulkOperationConflictError` so callers can
back off and retry instead of failing.
"""

from __future__ import annotations

import json
from collections import defaultdict
from datetime import timedelta
from typing import Any, Protocol

import httpx
import structlog

from storesync.config import Settings, get_settings
from storesync.connections import Connection
from storesync.jobs.types import BulkEntity
from storesync.kernel.errors import (
    BulkOperationConflictError,
    ConnectionInactiveError,
    RecordParseError,
    UpstreamError,
)
from storesync.kernel.time import utc_now
from storesync.monitoring import bulk_lines_skipped_total
from storesync.shopify import queries
from storesync.shopify.http import request_with_retry
from storesync.shopify.models import BulkOperationHandle, BulkOperationStatus, ProcessResult
from storesync.shopify.records import (
    RecordTransform,
    gid_type,
    transform_customer,
    transform_line_item,
    transform_order,
    transform_product,
    transform_variant,
)
from storesync.storage.facts import TABLE_KEYS, FactStore, dedupe_rows

logger = structlog.get_logger()


# record type tag -> (fact table, transform), per export entity
ENTITY_RECORDS: dict[BulkEntity, dict[str, tuple[str, RecordTransform]]] = {
    BulkEntity.ORDERS: {
        "Order": ("shopify_orders", transform_order),
        "LineItem": ("shopify_line_items", transform_line_item),
    },
    BulkEntity.CUSTOMERS: {
        "Customer": ("shopify_customers", transform_customer),
    },
    BulkEntity.PRODUCTS: {
        "Product": ("shopify_products", transform_product),
        "ProductVariant": ("shopify_product_variants", transform_variant),
    },
}

_CONFLICT_HINTS = ("already in progress", "already running", "a bulk query operation for this app and shop is already")


class BulkOperationClient(Protocol):
    async def check_existing(self) -> BulkOperationHandle | None:
        ...

    def is_stuck(self, handle: BulkOperationHandle) -> bool:
        ...

    async def start_bulk_export(
        self,
        entity: BulkEntity,
        *,
        since_date: str | None = None,
        until_date: str | None = None,
    ) -> BulkOperationHandle:
        ...

    async def poll_status(self, operation_id: str) -> BulkOperationHandle:
        ...

    async def cancel_existing(self, operation_id: str | None = None) -> bool:
        ...

    async def download_and_process(self, result_url: str | None, entity: BulkEntity) -> ProcessResult:
        ...


class ShopifyBulkClient:
    """Bulk export client bound to a single store connection."""

    def __init__(
        self,
        connection: Connection,
        fact_store: FactStore,
        *,
        http_client: httpx.AsyncClient,
        settings: Settings | None = None,
    ) -> None:
        self.connection = connection
        self.fact_store = fact_store
        self.http = http_client
        self.settings = settings or get_settings()

    @property
    def graphql_url(self) -> str:
        return f"https://{self.connection.shop}/admin/api/{self.settings.shopify_api_version}/graphql.json"

    async def _graphql(self, query: str, *, variables: dict[str, Any] | None = None, operation: str) -> dict[str, Any]:
        try:
            response = await request_with_retry(
                self.http,
                "POST",
                self.graphql_url,
                json={"query": query, "variables": variables or {}},
                headers={
                    "X-Shopify-Access-Token": self.connection.access_token or "",
                    "Content-Type": "application/json",
                },
                max_attempts=self.settings.shopify_http_max_attempts,
                rate_limit_key=f"shopify:{self.connection.shop}",
                rate_limit_per_minute=self.settings.shopify_rate_limit_per_minute,
                operation=operation,
            )
        except (httpx.TimeoutException, httpx.NetworkError) as exc:
            raise UpstreamError(
                message=f"Platform request failed: {exc}",
                code="upstream.network",
                meta={"operation": operation},
            ) from exc

        if response.status_code in (401, 403):
            raise ConnectionInactiveError(
                connection_id=self.connection.id,
                reason=f"access token rejected ({response.status_code})",
            )
        if response.status_code >= 400:
            raise UpstreamError(
                message=f"Platform returned HTTP {response.status_code}",
                code="upstream.http",
                meta={"operation": operation, "status_code": response.status_code},
            )

        body = response.json()
        if body.get("errors"):
            raise UpstreamError(
                message=f"GraphQL errors: {json.dumps(body['errors'])[:500]}",
                code="upstream.graphql",
                meta={"operation": operation},
            )
        return body.get("data") or {}

    async def get_current_operation(self) -> BulkOperationHandle | None:
        """The account's most recent bulk operation, terminal or not."""
        data = await self._graphql(queries.CURRENT_BULK_OPERATION, operation="current_bulk_operation")
        node = data.get("currentBulkOperation")
        return BulkOperationHandle.model_validate(node) if node else None

    async def check_existing(self) -> BulkOperationHandle | None:
        """Return the in-flight bulk operation for the account, if any."""
        current = await self.get_current_operation()
        if current is None or current.is_terminal:
            return None
        return current

    def is_stuck(self, handle: BulkOperationHandle) -> bool:
        if handle.is_terminal or handle.created_at is None:
            return False
        age = utc_now() - handle.created_at
        return age > timedelta(hours=self.settings.bulk_stuck_after_hours)

    async def start_bulk_export(
        self,
        entity: BulkEntity,
        *,
        since_date: str | None = None,
        until_date: str | None = None,
    ) -> BulkOperationHandle:
        existing = await self.check_existing()
        if existing is not None:
            raise BulkOperationConflictError(operation_id=existing.id, status=existing.status.value)

        entity = BulkEntity(entity)
        bulk_query = queries.build_bulk_query(
            entity,
            since_date=since_date or self.settings.shopify_bulk_since_date,
            until_date=until_date,
        )
        data = await self._graphql(
            queries.RUN_BULK_QUERY,
            variables={"query": bulk_query},
            operation="bulk_run_query",
        )
        payload = data.get("bulkOperationRunQuery") or {}
        user_errors = payload.get("userErrors") or []
        if user_errors:
            messages = "; ".join(str(error.get("message")) for error in user_errors)
            if any(hint in messages.lower() for hint in _CONFLICT_HINTS):
                raise BulkOperationConflictError(operation_id="unknown", status="RUNNING", message=messages)
            raise UpstreamError(
                message=f"Bulk query rejected: {messages}",
                code="upstream.bulk_rejected",
                meta={"entity": entity.value},
            )

        operation = payload.get("bulkOperation")
        if not operation:
            raise UpstreamError(message="No bulk operation returned", code="upstream.bulk_missing")

        handle = BulkOperationHandle.model_validate(operation)
        logger.info(
            "Bulk export started",
            connection_id=self.connection.id,
            entity=entity.value,
            bulk_operation_id=handle.id,
            status=handle.status.value,
            since_date=since_date or self.settings.shopify_bulk_since_date,
            until_date=until_date,
        )
        return handle

    async def poll_status(self, operation_id: str) -> BulkOperationHandle:
        data = await self._graphql(
            queries.BULK_OPERATION_BY_ID,
            variables={"id": operation_id},
            operation="bulk_poll",
        )
        node = data.get("node")
        if not node:
            raise UpstreamError(
                message=f"Bulk operation {operation_id} not found",
                code="upstream.bulk_missing",
                meta={"operation_id": operation_id},
            )
        return BulkOperationHandle.model_validate(node)

    async def cancel_existing(self, operation_id: str | None = None) -> bool:
        """
        Cancel a non-terminal bulk operation.

        With no id, targets the account's current operation. Returns True when
        nothing is left running.
        """
        if operation_id is None:
            current = await self.check_existing()
            if current is None:
                return True
            operation_id = current.id

        data = await self._graphql(
            queries.CANCEL_BULK_OPERATION,
            variables={"id": operation_id},
            operation="bulk_cancel",
        )
        payload = data.get("bulkOperationCancel") or {}
        user_errors = payload.get("userErrors") or []
        if user_errors:
            logger.warning(
                "Bulk operation cancel rejected",
                connection_id=self.connection.id,
                bulk_operation_id=operation_id,
                errors=[error.get("message") for error in user_errors],
            )
            return False

        logger.info("Bulk operation cancelled", connection_id=self.connection.id, bulk_operation_id=operation_id)
        return True

    async def download_and_process(self, result_url: str | None, entity: BulkEntity) -> ProcessResult:
        """
        Stream a JSONL result file and upsert its records in fixed-size batches.

        Malformed or untransformable lines are logged and skipped. A missing
        URL means the export matched nothing.
        """
        entity = BulkEntity(entity)
        result = ProcessResult(counts={tag: 0 for tag in ENTITY_RECORDS[entity]})
        if not result_url:
            logger.info("Bulk export produced no results", connection_id=self.connection.id, entity=entity.value)
            return result

        processor = _BatchProcessor(
            entity=entity,
            brand_id=self.connection.brand_id,
            connection_id=self.connection.id,
            fact_store=self.fact_store,
            result=result,
        )
        batch_size = max(1, int(self.settings.bulk_batch_size))

        try:
            async with self.http.stream("GET", result_url, timeout=None) as response:
                if response.status_code >= 400:
                    raise UpstreamError(
                        message=f"Failed to download bulk results: HTTP {response.status_code}",
                        code="upstream.download",
                        meta={"status_code": response.status_code},
                    )
                batch: list[tuple[int, str]] = []
                async for line in response.aiter_lines():
                    if not line.strip():
                        continue
                    result.lines_read += 1
                    batch.append((result.lines_read, line))
                    if len(batch) >= batch_size:
                        await processor.process(batch)
                        batch = []
                if batch:
                    await processor.process(batch)
        except (httpx.TimeoutException, httpx.NetworkError) as exc:
            raise UpstreamError(message=f"Bulk result download failed: {exc}", code="upstream.download") from exc

        if entity == BulkEntity.ORDERS and processor.order_ids:
            await self.fact_store.refresh_order_line_counts(self.connection.brand_id, processor.order_ids)

        logger.info(
            "Bulk results processed",
            connection_id=self.connection.id,
            entity=entity.value,
            lines_read=result.lines_read,
            lines_skipped=result.lines_skipped,
            counts=result.counts,
        )
        return result


class _BatchProcessor:
    def __init__(
        self,
        *,
        entity: BulkEntity,
        brand_id: str,
        connection_id: str,
        fact_store: FactStore,
        result: ProcessResult,
    ) -> None:
        self.entity = entity
        self.brand_id = brand_id
        self.connection_id = connection_id
        self.fact_store = fact_store
        self.result = result
        self.handlers = ENTITY_RECORDS[entity]
        self.order_ids: set[str] = set()
        # Natural keys written so far per record type; counts report distinct rows.
        self.seen_keys: dict[str, set[tuple[Any, ...]]] = defaultdict(set)

    def _skip(self, line_number: int, reason: str, error: str) -> None:
        self.result.lines_skipped += 1
        bulk_lines_skipped_total.labels(entity=self.entity.value, reason=reason).inc()
        logger.warning(
            "Skipping bulk result line",
            entity=self.entity.value,
            line_number=line_number,
            reason=reason,
            error=error,
        )

    async def process(self, batch: list[tuple[int, str]]) -> None:
        synced_at = utc_now()
        grouped: dict[str, list[dict[str, Any]]] = defaultdict(list)

        for line_number, line in batch:
            try:
                item = json.loads(line)
            except json.JSONDecodeError as exc:
                self._skip(line_number, "invalid_json", str(exc))
                continue
            if not isinstance(item, dict):
                self._skip(line_number, "invalid_json", "line is not an object")
                continue

            tag = item.get("__typename") or gid_type(item.get("id"))
            handler = self.handlers.get(tag or "")
            if handler is None:
                self._skip(line_number, "unknown_type", f"unexpected record type {tag!r}")
                continue

            table, transform = handler
            try:
                row = transform(item, self.brand_id, self.connection_id, synced_at)
            except RecordParseError as exc:
                self._skip(line_number, "transform", exc.message)
                continue
            except (AttributeError, KeyError, TypeError, ValueError) as exc:
                self._skip(line_number, "transform", f"{type(exc).__name__}: {exc}")
                continue
            grouped[tag].append(row)

        # Parents before children so a child row never lands ahead of its parent.
        for tag, (table, _) in self.handlers.items():
            rows = dedupe_rows(grouped.get(tag, []), TABLE_KEYS[table])
            if not rows:
                continue
            await self.fact_store.upsert_rows(table, rows)
            keys = TABLE_KEYS[table]
            self.seen_keys[tag].update(tuple(row[column] for column in keys) for row in rows)
            self.result.counts[tag] = len(self.seen_keys[tag])
            if tag == "Order":
                self.order_ids.update(row["order_id"] for row in rows)
