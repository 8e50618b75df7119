"""
Fact Store

Natural-key upserts into the synced fact tables, plus the per-day activity
reads the gap and staleness detector runs on.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Iterable, Protocol

import structlog
from sqlalchemy import JSON, text

from storesync.db.client import get_db_session
from storesync.db.models import (
    ShopifyCustomer,
    ShopifyLineItem,
    ShopifyOrder,
    ShopifyProduct,
    ShopifyProductVariant,
)
from storesync.monitoring import rows_upserted_total

logger = structlog.get_logger()


_MODELS = {
    model.__tablename__: model
    for model in (ShopifyOrder, ShopifyLineItem, ShopifyCustomer, ShopifyProduct, ShopifyProductVariant)
}

TABLE_KEYS: dict[str, tuple[str, ...]] = {
    name: tuple(column.name for column in model.__table__.primary_key.columns)
    for name, model in _MODELS.items()
}

# Which table answers "did we ingest anything for this day" per platform.
PLATFORM_FACT_TABLES: dict[str, str] = {
    "shopify": "shopify_orders",
}


@dataclass(frozen=True)
class DayActivity:
    row_count: int
    last_write: datetime | None


def dedupe_rows(rows: Iterable[dict[str, Any]], key_columns: tuple[str, ...]) -> list[dict[str, Any]]:
    """Collapse rows sharing a natural key; the last occurrence wins."""
    by_key: dict[tuple[Any, ...], dict[str, Any]] = {}
    for row in rows:
        by_key[tuple(row.get(column) for column in key_columns)] = row
    return list(by_key.values())


class FactStore(Protocol):
    async def upsert_rows(self, table: str, rows: list[dict[str, Any]]) -> int:
        ...

    async def refresh_order_line_counts(self, brand_id: str, order_ids: Iterable[str]) -> None:
        ...

    async def daily_activity(
        self,
        *,
        brand_id: str,
        platform: str,
        start: datetime,
        end: datetime,
        timezone_name: str,
    ) -> dict[date, DayActivity]:
        ...


def _build_upsert(table: str) -> tuple[str, list[str], set[str]]:
    model = _MODELS[table]
    columns = [column.name for column in model.__table__.columns]
    json_columns = {column.name for column in model.__table__.columns if isinstance(column.type, JSON)}
    keys = TABLE_KEYS[table]

    values = ", ".join(
        f"CAST(:{name} AS jsonb)" if name in json_columns else f":{name}" for name in columns
    )
    updates = ",\n        ".join(f"{name} = EXCLUDED.{name}" for name in columns if name not in keys)
    sql = (
        f"INSERT INTO {table} ({', '.join(columns)})\n"
        f"VALUES ({values})\n"
        f"ON CONFLICT ({', '.join(keys)}) DO UPDATE SET\n        {updates}"
    )
    return sql, columns, json_columns


_UPSERT_SQL = {table: _build_upsert(table) for table in _MODELS}


class PostgresFactStore:
    """Fact tables in Postgres, written with INSERT ... ON CONFLICT DO UPDATE."""

    async def upsert_rows(self, table: str, rows: list[dict[str, Any]]) -> int:
        if not rows:
            return 0
        if table not in _UPSERT_SQL:
            raise ValueError(f"Unknown fact table: {table}")

        sql, columns, json_columns = _UPSERT_SQL[table]
        unique_rows = dedupe_rows(rows, TABLE_KEYS[table])
        params = [
            {
                name: (json.dumps(row.get(name)) if name in json_columns and row.get(name) is not None else row.get(name))
                for name in columns
            }
            for row in unique_rows
        ]

        async with get_db_session() as session:
            await session.execute(text(sql), params)

        rows_upserted_total.labels(table=table).inc(len(unique_rows))
        logger.debug("Upserted fact rows", table=table, count=len(unique_rows))
        return len(unique_rows)

    async def refresh_order_line_counts(self, brand_id: str, order_ids: Iterable[str]) -> None:
        ids = sorted(set(order_ids))
        if not ids:
            return
        async with get_db_session() as session:
            await session.execute(
                text(
                    """
                    UPDATE shopify_orders o
                    SET line_items_count = counts.line_count
                    FROM (
                        SELECT order_id, COUNT(*) AS line_count
                        FROM shopify_line_items
                        WHERE brand_id = :brand_id AND order_id = ANY(:order_ids)
                        GROUP BY order_id
                    ) counts
                    WHERE o.brand_id = :brand_id AND o.order_id = counts.order_id
                    """
                ),
                {"brand_id": brand_id, "order_ids": ids},
            )

    async def daily_activity(
        self,
        *,
        brand_id: str,
        platform: str,
        start: datetime,
        end: datetime,
        timezone_name: str,
    ) -> dict[date, DayActivity]:
        """Row count and latest write per business day in [start, end)."""
        table = PLATFORM_FACT_TABLES.get(platform)
        if table is None:
            raise ValueError(f"No fact table for platform: {platform}")

        async with get_db_session() as session:
            result = await session.execute(
                text(
                    f"""
                    SELECT (created_at AT TIME ZONE :tz)::date AS day,
                           COUNT(*) AS row_count,
                           MAX(synced_at) AS last_write
                    FROM {table}
                    WHERE brand_id = :brand_id
                      AND created_at >= :start
                      AND created_at < :end
                    GROUP BY 1
                    """
                ),
                {"brand_id": brand_id, "tz": timezone_name, "start": start, "end": end},
            )
            rows = result.mappings().all()

        return {
            row["day"]: DayActivity(row_count=int(row["row_count"]), last_write=row["last_write"])
            for row in rows
        }
