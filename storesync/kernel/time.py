from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

UTC = timezone.utc

# Last minute of a business day; writes at or after this instant count as
# having observed the whole day.
END_OF_DAY = time(23, 59)


def utc_now() -> datetime:
    """Return a tz-aware UTC timestamp."""
    return datetime.now(UTC)


def is_tz_aware(value: datetime) -> bool:
    """True if a datetime is timezone-aware (has a non-None UTC offset)."""
    return value.tzinfo is not None and value.utcoffset() is not None


def coerce_utc(value: datetime, *, assume_naive_is_utc: bool = True) -> datetime:
    """Coerce any datetime to tz-aware UTC."""
    if is_tz_aware(value):
        return value.astimezone(UTC)

    if not assume_naive_is_utc:
        raise ValueError("Naive datetime cannot be coerced without an explicit assumption")

    return value.replace(tzinfo=UTC)


def isoformat_z(value: datetime) -> str:
    """RFC3339-ish UTC string with a `Z` suffix."""
    dt = coerce_utc(value)
    return dt.isoformat().replace("+00:00", "Z")


def parse_iso8601(value: str) -> datetime:
    """Parse ISO8601/RFC3339 timestamps into tz-aware UTC datetimes.

    Supports `Z` suffix. Naive timestamps are treated as UTC.
    """
    normalized = value.strip()
    if normalized.endswith("Z"):
        normalized = normalized[:-1] + "+00:00"
    dt = datetime.fromisoformat(normalized)
    return coerce_utc(dt)


def parse_optional_iso8601(value: str | None) -> datetime | None:
    if not value:
        return None
    return parse_iso8601(value)


def get_zone(name: str) -> ZoneInfo:
    return ZoneInfo(name)


def local_date(value: datetime, tz: ZoneInfo) -> date:
    """Calendar date of `value` in the business timezone."""
    return coerce_utc(value).astimezone(tz).date()


def today_in(tz: ZoneInfo, *, now: datetime | None = None) -> date:
    return local_date(now or utc_now(), tz)


def start_of_day(day: date, tz: ZoneInfo) -> datetime:
    return datetime.combine(day, time.min, tzinfo=tz).astimezone(UTC)


def end_of_day_cutoff(day: date, tz: ZoneInfo) -> datetime:
    """The 23:59 boundary of `day` in the business timezone, as UTC."""
    return datetime.combine(day, END_OF_DAY, tzinfo=tz).astimezone(UTC)


def iter_days(start: date, end: date):
    """Yield each date from `start` to `end`, inclusive."""
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)
