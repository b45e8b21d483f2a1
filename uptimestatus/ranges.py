"""Date-range planning and the provider's packed uptime percentage format.

The provider accepts a list of "start_end" unix ranges and answers with one
uptime percentage per range, joined with "-". We always ask for one range per
calendar day (newest first) followed by a single range covering the whole
window, so the last value in the answer is the overall average.
"""

import math
from collections.abc import Sequence
from datetime import UTC, date, datetime, time, timedelta, tzinfo

from .models import DateRange


def truncate_percent(value: float) -> float:
    """Truncate (not round) a percentage to 2 decimals."""
    # round first: 0.29 * 100 is 28.999999999999996
    return math.floor(round(value * 100, 6)) / 100


def reference_today(now: datetime | None = None, tz: tzinfo = UTC) -> datetime:
    """Return midnight of the current day in the reference timezone."""
    if now is None:
        now = datetime.now(tz)
    elif now.tzinfo is None:
        now = now.replace(tzinfo=UTC)
    local = now.astimezone(tz)
    return datetime.combine(local.date(), time.min, tzinfo=tz)


def plan_ranges(days: int, today: datetime) -> list[DateRange]:
    """Build the ranges for a window of ``days`` days ending with ``today``.

    Args:
        days: Number of calendar days in the window.
        today: Midnight of the newest day, timezone aware (naive means UTC).

    Returns:
        ``days`` one-day ranges, newest first, followed by one range
        spanning the whole window.
    """
    if today.tzinfo is None:
        today = today.replace(tzinfo=UTC)

    ranges: list[DateRange] = []
    for offset in range(days):
        # Wall-clock arithmetic so DST days stay calendar days.
        day_start = today - timedelta(days=offset)
        day_end = day_start + timedelta(days=1)
        ranges.append(DateRange(int(day_start.timestamp()), int(day_end.timestamp())))

    ranges.append(DateRange(ranges[-1].start, ranges[0].end))
    return ranges


def range_dates(days: int, today: datetime) -> list[date]:
    """Calendar dates of the daily ranges, in the same newest-first order."""
    return [(today - timedelta(days=offset)).date() for offset in range(days)]


def encode_ranges(ranges: Sequence[DateRange]) -> str:
    """Format ranges for the provider's custom_uptime_ranges parameter."""
    return "-".join(r.encode() for r in ranges)


def encode_uptime_ranges(values: Sequence[float]) -> str:
    """Pack percentages the way the provider returns them."""
    return "-".join(repr(float(v)) for v in values)


def decode_uptime_ranges(text: str | None, count: int) -> list[float]:
    """Unpack ``count`` truncated percentages from the provider's string.

    Missing or non-numeric items decode as 0; extra items are ignored.
    """
    parts = text.split("-") if text else []
    values: list[float] = []
    for index in range(count):
        try:
            value = float(parts[index])
        except (IndexError, ValueError):
            value = 0.0
        if math.isnan(value) or math.isinf(value):
            value = 0.0
        values.append(truncate_percent(value))
    return values
