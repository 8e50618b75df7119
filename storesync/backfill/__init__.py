"""Gap and staleness detection, backfill policy and remediation."""

from storesync.backfill.detection import (
    DataGap,
    GapDetectionResult,
    GapDetector,
    StaleDay,
    StaleDayResult,
    find_gaps,
    find_stale_days,
)
from storesync.backfill.policy import BackfillDecision, RepairRange, should_trigger_backfill
from storesync.backfill.service import BackfillService, RefreshMode

__all__ = [
    "BackfillDecision",
    "BackfillService",
    "DataGap",
    "GapDetectionResult",
    "GapDetector",
    "RefreshMode",
    "RepairRange",
    "StaleDay",
    "StaleDayResult",
    "find_gaps",
    "find_stale_days",
    "should_trigger_backfill",
]
