"""
Prometheus Metrics

Counters for the sync pipeline. Exposed by the API's /metrics endpoint.
"""

from prometheus_client import Counter

jobs_total = Counter(
    "storesync_jobs_total",
    "Queue jobs processed by job type and outcome",
    ["job_type", "outcome"],
)

rows_upserted_total = Counter(
    "storesync_rows_upserted_total",
    "Fact rows written by table",
    ["table"],
)

bulk_lines_skipped_total = Counter(
    "storesync_bulk_lines_skipped_total",
    "Bulk result lines skipped by entity and reason",
    ["entity", "reason"],
)

http_retries_total = Counter(
    "storesync_http_retries_total",
    "Platform HTTP retries by operation and reason",
    ["operation", "reason", "status_code"],
)

backfill_ranges_total = Counter(
    "storesync_backfill_ranges_total",
    "Repair ranges enqueued by kind",
    ["kind"],
)
