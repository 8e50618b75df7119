"""Fact table persistence."""

from storesync.storage.facts import (
    PLATFORM_FACT_TABLES,
    TABLE_KEYS,
    DayActivity,
    FactStore,
    PostgresFactStore,
    dedupe_rows,
)

__all__ = [
    "PLATFORM_FACT_TABLES",
    "TABLE_KEYS",
    "DayActivity",
    "FactStore",
    "PostgresFactStore",
    "dedupe_rows",
]
