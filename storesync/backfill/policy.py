"""Backfill decision policy."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Iterable

from storesync.backfill.detection import DataGap, GapDetectionResult, StaleDay


@dataclass(frozen=True)
class RepairRange:
    """An inclusive range of business days to re-ingest."""

    start_date: date
    end_date: date
    kind: str  # "stale" or "gap"
    platform: str

    @property
    def day_count(self) -> int:
        return (self.end_date - self.start_date).days + 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
            "kind": self.kind,
            "platform": self.platform,
            "day_count": self.day_count,
        }


@dataclass
class BackfillDecision:
    should_backfill: bool
    critical_gaps: list[DataGap] = field(default_factory=list)
    stale_dates_to_refresh: list[date] = field(default_factory=list)
    total_missing_days: int = 0
    total_stale_days: int = 0
    ranges: list[RepairRange] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "should_backfill": self.should_backfill,
            "critical_gaps": [gap.to_dict() for gap in self.critical_gaps],
            "stale_dates_to_refresh": [day.isoformat() for day in self.stale_dates_to_refresh],
            "total_missing_days": self.total_missing_days,
            "total_stale_days": self.total_stale_days,
            "ranges": [r.to_dict() for r in self.ranges],
        }


def should_trigger_backfill(
    gap_results: GapDetectionResult | Iterable[GapDetectionResult],
    stale_days: Iterable[StaleDay] = (),
    *,
    platform: str = "shopify",
) -> BackfillDecision:
    """
    Any missing day or any stale day triggers a backfill.

    Repair ranges are ordered stale days first (most recent first), then gaps
    from the most recent back, since recent numbers are the ones users look at.
    """
    if isinstance(gap_results, GapDetectionResult):
        gap_results = [gap_results]

    critical_gaps: list[DataGap] = []
    total_missing_days = 0
    for result in gap_results:
        total_missing_days += result.total_missing_days
        critical_gaps.extend(gap for gap in result.gaps if gap.day_count >= 1)

    stale = sorted({day.date: day for day in stale_days}.values(), key=lambda d: d.date, reverse=True)
    stale_dates = [day.date for day in stale]

    ranges = [RepairRange(start_date=d, end_date=d, kind="stale", platform=platform) for d in stale_dates]
    ranges.extend(
        RepairRange(start_date=gap.start_date, end_date=gap.end_date, kind="gap", platform=gap.platform)
        for gap in sorted(critical_gaps, key=lambda g: g.end_date, reverse=True)
    )

    return BackfillDecision(
        should_backfill=total_missing_days >= 1 or len(stale_dates) >= 1,
        critical_gaps=critical_gaps,
        stale_dates_to_refresh=stale_dates,
        total_missing_days=total_missing_days,
        total_stale_days=len(stale_dates),
        ranges=ranges,
    )
