"""Split repair ranges into contiguous windows."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta


@dataclass
class BackfillWindow:
    """Represents a backfill window."""

    start: datetime
    end: datetime


def generate_backfill_windows(
    start_date: datetime,
    end_date: datetime,
    window_days: int = 1,
) -> list[BackfillWindow]:
    """Generate contiguous [start, end) windows of at most `window_days`."""
    windows: list[BackfillWindow] = []
    cursor = start_date
    step = timedelta(days=max(1, int(window_days)))

    while cursor < end_date:
        window_end = min(cursor + step, end_date)
        windows.append(BackfillWindow(start=cursor, end=window_end))
        cursor = window_end

    return windows
