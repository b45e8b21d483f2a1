"""Turn raw provider monitor records into per-day availability buckets."""

import logging
from collections.abc import Sequence
from datetime import UTC, date, datetime, tzinfo
from typing import Any

from .models import (
    AggregatedMonitor,
    DailyBucket,
    DateRange,
    OutageEvent,
    OutageTotals,
    ResponseTimeSample,
    status_from_code,
)
from .ranges import decode_uptime_ranges

logger = logging.getLogger(__name__)


def day_key(timestamp: int, tz: tzinfo = UTC) -> date:
    """Calendar day containing ``timestamp`` in the reference timezone."""
    return datetime.fromtimestamp(timestamp, tz).date()


def _parse_response_times(raw: Any) -> list[ResponseTimeSample] | None:
    if raw is None:
        return None
    samples = []
    for item in raw:
        try:
            samples.append(ResponseTimeSample(datetime=int(item["datetime"]), value=float(item["value"])))
        except (KeyError, TypeError, ValueError):
            logger.debug("Skipping malformed response time sample: %r", item)
    return samples


def _parse_average_response_time(raw: Any) -> float | None:
    if raw in (None, ""):
        return None
    try:
        return float(raw)
    except (TypeError, ValueError):
        return None


def aggregate_monitor(
    raw: dict[str, Any],
    ranges: Sequence[DateRange],
    days: int,
    tz: tzinfo = UTC,
) -> AggregatedMonitor:
    """Aggregate one raw provider monitor record.

    Args:
        raw: Monitor record as returned by the provider.
        ranges: The ranges the data was requested with: ``days`` daily
            ranges newest first, then the combined range.
        days: Number of daily buckets.
        tz: Reference timezone for calendar-day boundaries.

    Returns:
        A freshly built AggregatedMonitor.
    """
    percents = decode_uptime_ranges(raw.get("custom_uptime_ranges"), days + 1)
    average = percents[-1]
    window = ranges[days]

    daily: list[DailyBucket] = []
    index_by_day: dict[date, int] = {}
    for index in range(days):
        day = day_key(ranges[index].start, tz)
        index_by_day[day] = index
        daily.append(DailyBucket(date=day, uptime=percents[index]))

    logs = [OutageEvent.from_raw(entry) for entry in raw.get("logs") or []]
    total = OutageTotals()

    for event in logs:
        if not event.is_down:
            continue
        if event.datetime not in window:
            continue
        index = index_by_day.get(day_key(event.datetime, tz))
        if index is not None:
            bucket = daily[index]
            bucket.outage_count += 1
            bucket.outage_duration += event.duration
        total.add(event.duration)

    return AggregatedMonitor(
        id=int(raw.get("id", 0)),
        name=str(raw.get("friendly_name", "")),
        url=str(raw.get("url") or ""),
        status=status_from_code(raw.get("status")),
        average=average,
        daily=daily,
        total=total,
        logs=logs,
        response_times=_parse_response_times(raw.get("response_times")),
        avg_response_time=_parse_average_response_time(raw.get("average_response_time")),
    )


def aggregate_monitors(
    raw_monitors: Sequence[dict[str, Any]],
    ranges: Sequence[DateRange],
    days: int,
    tz: tzinfo = UTC,
) -> list[AggregatedMonitor]:
    """Aggregate every monitor returned for one credential."""
    return [aggregate_monitor(raw, ranges, days, tz) for raw in raw_monitors]
