"""
Gap & Staleness Detection

Two scans over a lookback window of business days (the window ends today and
includes it):

- gaps: maximal runs of days with zero fact rows
- stale days: days with rows whose latest write happened before that day's
  23:59 cutoff, i.e. a mid-day snapshot that was never refreshed. Today is
  never stale since it has not ended yet.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Callable, Iterable
from zoneinfo import ZoneInfo

import structlog

from storesync.config import Settings, get_settings
from storesync.connections import ConnectionRepository
from storesync.kernel.time import (
    coerce_utc,
    end_of_day_cutoff,
    get_zone,
    isoformat_z,
    iter_days,
    start_of_day,
    today_in,
    utc_now,
)
from storesync.storage.facts import PLATFORM_FACT_TABLES, DayActivity, FactStore

logger = structlog.get_logger()


@dataclass(frozen=True)
class DataGap:
    start_date: date
    end_date: date
    platform: str
    day_count: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
            "platform": self.platform,
            "day_count": self.day_count,
        }


@dataclass
class GapDetectionResult:
    platform: str
    window_start: date
    window_end: date
    gaps: list[DataGap] = field(default_factory=list)
    earliest_data_date: date | None = None
    last_data_date: date | None = None

    @property
    def has_gaps(self) -> bool:
        return bool(self.gaps)

    @property
    def total_missing_days(self) -> int:
        return sum(gap.day_count for gap in self.gaps)

    def to_dict(self) -> dict[str, Any]:
        return {
            "platform": self.platform,
            "window_start": self.window_start.isoformat(),
            "window_end": self.window_end.isoformat(),
            "has_gaps": self.has_gaps,
            "gaps": [gap.to_dict() for gap in self.gaps],
            "total_missing_days": self.total_missing_days,
            "earliest_data_date": self.earliest_data_date.isoformat() if self.earliest_data_date else None,
            "last_data_date": self.last_data_date.isoformat() if self.last_data_date else None,
        }


@dataclass(frozen=True)
class StaleDay:
    date: date
    last_sync_time: datetime
    day_of_week: str
    suspected_stale: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "date": self.date.isoformat(),
            "last_sync_time": isoformat_z(self.last_sync_time),
            "day_of_week": self.day_of_week,
            "suspected_stale": self.suspected_stale,
        }


@dataclass
class StaleDayResult:
    platform: str
    stale_days: list[StaleDay] = field(default_factory=list)

    @property
    def total_stale_days(self) -> int:
        return len(self.stale_days)

    def to_dict(self) -> dict[str, Any]:
        return {
            "platform": self.platform,
            "stale_days": [day.to_dict() for day in self.stale_days],
            "total_stale_days": self.total_stale_days,
        }


def lookback_window(today: date, lookback_days: int) -> tuple[date, date]:
    """`lookback_days` calendar days ending with (and including) today."""
    days = max(1, int(lookback_days))
    return today - timedelta(days=days - 1), today


def find_gaps(days_with_data: Iterable[date], start: date, end: date, platform: str) -> list[DataGap]:
    present = set(days_with_data)
    gaps: list[DataGap] = []
    gap_start: date | None = None
    previous: date | None = None

    for day in iter_days(start, end):
        if day in present:
            if gap_start is not None:
                gaps.append(_gap(gap_start, previous, platform))
                gap_start = None
        elif gap_start is None:
            gap_start = day
        previous = day

    if gap_start is not None:
        gaps.append(_gap(gap_start, end, platform))
    return gaps


def _gap(start: date, end: date, platform: str) -> DataGap:
    return DataGap(start_date=start, end_date=end, platform=platform, day_count=(end - start).days + 1)


def find_stale_days(
    activity: dict[date, DayActivity],
    *,
    today: date,
    tz: ZoneInfo,
) -> list[StaleDay]:
    stale: list[StaleDay] = []
    for day in sorted(activity):
        entry = activity[day]
        if entry.row_count <= 0 or entry.last_write is None:
            continue
        if day >= today:
            continue
        last_write = coerce_utc(entry.last_write)
        if last_write < end_of_day_cutoff(day, tz):
            stale.append(
                StaleDay(
                    date=day,
                    last_sync_time=last_write,
                    day_of_week=day.strftime("%A"),
                )
            )
    return stale


class GapDetector:
    def __init__(
        self,
        fact_store: FactStore,
        connections: ConnectionRepository,
        *,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.fact_store = fact_store
        self.connections = connections
        self.settings = settings or get_settings()
        self.clock = clock

    @property
    def zone(self) -> ZoneInfo:
        return get_zone(self.settings.business_timezone)

    async def _window_activity(
        self, brand_id: str, platform: str, lookback_days: int | None
    ) -> tuple[date, date, date, dict[date, DayActivity]]:
        tz = self.zone
        today = today_in(tz, now=self.clock())
        start, end = lookback_window(today, lookback_days or self.settings.gap_lookback_days)
        activity = await self.fact_store.daily_activity(
            brand_id=brand_id,
            platform=platform,
            start=start_of_day(start, tz),
            end=start_of_day(end + timedelta(days=1), tz),
            timezone_name=self.settings.business_timezone,
        )
        return today, start, end, activity

    async def detect_gaps(
        self,
        brand_id: str,
        platform: str = "shopify",
        lookback_days: int | None = None,
    ) -> GapDetectionResult:
        _, start, end, activity = await self._window_activity(brand_id, platform, lookback_days)
        days_with_data = sorted(day for day, entry in activity.items() if entry.row_count > 0)
        result = GapDetectionResult(
            platform=platform,
            window_start=start,
            window_end=end,
            gaps=find_gaps(days_with_data, start, end, platform),
            earliest_data_date=days_with_data[0] if days_with_data else None,
            last_data_date=days_with_data[-1] if days_with_data else None,
        )
        logger.info(
            "Gap detection finished",
            brand_id=brand_id,
            platform=platform,
            window_start=start.isoformat(),
            window_end=end.isoformat(),
            gap_count=len(result.gaps),
            total_missing_days=result.total_missing_days,
        )
        return result

    async def detect_stale_days(
        self,
        brand_id: str,
        platform: str = "shopify",
        lookback_days: int | None = None,
    ) -> StaleDayResult:
        today, start, end, activity = await self._window_activity(brand_id, platform, lookback_days)
        result = StaleDayResult(platform=platform, stale_days=find_stale_days(activity, today=today, tz=self.zone))
        logger.info(
            "Stale day detection finished",
            brand_id=brand_id,
            platform=platform,
            window_start=start.isoformat(),
            window_end=end.isoformat(),
            stale_days=result.total_stale_days,
        )
        return result

    async def detect_all_gaps(
        self, brand_id: str, lookback_days: int | None = None
    ) -> dict[str, GapDetectionResult]:
        """Gap scan for every platform the brand has an active connection on."""
        results: dict[str, GapDetectionResult] = {}
        for connection in await self.connections.list_active(brand_id):
            platform = connection.platform_type
            if platform in results or platform not in PLATFORM_FACT_TABLES:
                continue
            try:
                results[platform] = await self.detect_gaps(brand_id, platform, lookback_days)
            except Exception as exc:
                logger.error(
                    "Gap detection failed for platform",
                    brand_id=brand_id,
                    platform=platform,
                    error=str(exc),
                )
        return results
