"""Data models for aggregated uptime data."""

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any


class MonitorStatus(str, Enum):
    """Coarse monitor state derived from the provider's status code."""

    OK = "ok"
    DOWN = "down"
    PAUSED = "paused"
    UNKNOWN = "unknown"


# Provider status codes: 0=paused, 1=not checked yet, 2=up, 8=seems down, 9=down
_STATUS_CODES = {
    2: MonitorStatus.OK,
    8: MonitorStatus.DOWN,
    9: MonitorStatus.DOWN,
    0: MonitorStatus.PAUSED,
}


def status_from_code(code: object) -> MonitorStatus:
    """Map a raw provider status code to a MonitorStatus."""
    if isinstance(code, bool) or not isinstance(code, int):
        return MonitorStatus.UNKNOWN
    return _STATUS_CODES.get(code, MonitorStatus.UNKNOWN)


# Provider log types: 1=down, 2=up, 98=started, 99=paused
LOG_TYPE_DOWN = 1
LOG_TYPE_UP = 2


@dataclass(frozen=True)
class DateRange:
    """Half-open unix time range [start, end)."""

    start: int
    end: int

    def __contains__(self, timestamp: int) -> bool:
        return self.start <= timestamp < self.end

    @property
    def seconds(self) -> int:
        return self.end - self.start

    def encode(self) -> str:
        """Format as the provider's "start_end" pair."""
        return f"{self.start}_{self.end}"


@dataclass(frozen=True)
class OutageEvent:
    """A single provider log entry.

    Attributes:
        type: Provider log type (see LOG_TYPE_*).
        datetime: Unix timestamp of the transition.
        duration: Seconds spent in this state.
        reason_code: Provider reason code, if any.
        reason_detail: Human readable reason, if any.
    """

    type: int
    datetime: int
    duration: int
    reason_code: str | None = None
    reason_detail: str | None = None

    @property
    def is_down(self) -> bool:
        return self.type == LOG_TYPE_DOWN

    @classmethod
    def from_raw(cls, raw: dict[str, Any]) -> "OutageEvent":
        reason = raw.get("reason") or {}
        code = reason.get("code")
        detail = reason.get("detail")
        return cls(
            type=int(raw.get("type", 0)),
            datetime=int(raw.get("datetime", 0)),
            duration=max(int(raw.get("duration") or 0), 0),
            reason_code=str(code) if code is not None else None,
            reason_detail=str(detail) if detail is not None else None,
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "type": self.type,
            "datetime": self.datetime,
            "duration": self.duration,
        }
        if self.reason_code is not None or self.reason_detail is not None:
            data["reason"] = {"code": self.reason_code, "detail": self.reason_detail}
        return data


@dataclass(frozen=True)
class ResponseTimeSample:
    """One response time measurement reported by the provider."""

    datetime: int
    value: float

    def to_dict(self) -> dict[str, Any]:
        return {"datetime": self.datetime, "value": self.value}


@dataclass
class DailyBucket:
    """One calendar day of availability data for a monitor.

    Attributes:
        date: Calendar day in the reference timezone.
        uptime: Uptime percentage (0-100), truncated to 2 decimals.
        outage_count: Number of "down" events that started on this day.
        outage_duration: Total seconds of those events.
    """

    date: date
    uptime: float
    outage_count: int = 0
    outage_duration: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "date": self.date.isoformat(),
            "uptime": self.uptime,
            "down": {"times": self.outage_count, "duration": self.outage_duration},
        }


@dataclass
class OutageTotals:
    """Running outage count and duration across the whole window."""

    count: int = 0
    duration: int = 0

    def add(self, duration: int) -> None:
        self.count += 1
        self.duration += duration

    def to_dict(self) -> dict[str, int]:
        return {"times": self.count, "duration": self.duration}


@dataclass
class AggregatedMonitor:
    """Per-monitor aggregation result, rebuilt on every fetch.

    daily is newest first and always has one bucket per requested day.
    """

    id: int
    name: str
    url: str
    status: MonitorStatus
    average: float
    daily: list[DailyBucket]
    total: OutageTotals
    logs: list[OutageEvent] = field(default_factory=list)
    response_times: list[ResponseTimeSample] | None = None
    avg_response_time: float | None = None

    def to_dict(self, include_logs: bool = False) -> dict[str, Any]:
        """Convert to the public JSON shape."""
        data: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "url": self.url,
            "status": self.status.value,
            "average": self.average,
            "daily": [bucket.to_dict() for bucket in self.daily],
            "total": self.total.to_dict(),
        }
        if self.avg_response_time is not None:
            data["avgResponseTime"] = self.avg_response_time
        if include_logs:
            data["logs"] = [log.to_dict() for log in self.logs]
            if self.response_times is not None:
                data["responseTimes"] = [sample.to_dict() for sample in self.response_times]
        return data


@dataclass(frozen=True)
class GlobalStats:
    """Summary over the current monitor set; never persisted."""

    total: int = 0
    up: int = 0
    down: int = 0
    paused: int = 0
    average: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "up": self.up,
            "down": self.down,
            "paused": self.paused,
            "avgUptime": self.average,
        }


@dataclass(frozen=True)
class Incident:
    """A "down" event flattened out of a monitor's logs."""

    id: str
    monitor_id: int
    monitor_name: str
    type: str
    datetime: int
    duration: int
    reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "monitorId": self.monitor_id,
            "monitorName": self.monitor_name,
            "type": self.type,
            "datetime": self.datetime,
            "duration": self.duration,
            "reason": self.reason,
        }
