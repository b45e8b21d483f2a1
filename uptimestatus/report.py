"""Plain-text rendering of merged monitor data for the command line."""

from collections.abc import Sequence
from datetime import datetime, tzinfo

from .merger import MergeResult
from .models import AggregatedMonitor, Incident, MonitorStatus

STATUS_TEXT = {
    MonitorStatus.OK: "正常",
    MonitorStatus.DOWN: "故障",
    MonitorStatus.PAUSED: "已暂停",
    MonitorStatus.UNKNOWN: "未知",
}


def format_duration(seconds: float) -> str:
    """Format a duration as days/hours/minutes/seconds, e.g. "1天 2小时 3分 4秒"."""
    s = int(seconds)
    d, s = divmod(s, 86400)
    h, s = divmod(s, 3600)
    m, s = divmod(s, 60)

    parts = []
    if d > 0:
        parts.append(f"{d}天")
    if h > 0:
        parts.append(f"{h}小时")
    if m > 0:
        parts.append(f"{m}分")
    if s > 0 or not parts:
        parts.append(f"{s}秒")
    return " ".join(parts)


def format_response_time(ms: float) -> str:
    if ms < 1000:
        return f"{round(ms)}ms"
    return f"{ms / 1000:.2f}s"


def _monitor_line(monitor: AggregatedMonitor) -> str:
    response = format_response_time(monitor.avg_response_time) if monitor.avg_response_time is not None else "-"
    return (
        f"{monitor.name[:24]:<24}  {STATUS_TEXT[monitor.status]:<4}  {monitor.average:>6.2f}%  "
        f"{monitor.total.count:>4}  {format_duration(monitor.total.duration):<16}  {response}"
    )


def render_report(
    result: MergeResult,
    monitors: Sequence[AggregatedMonitor],
    incidents: Sequence[Incident],
    tz: tzinfo,
) -> str:
    """Render the monitor table, global stats, recent incidents and errors."""
    lines = [f"{'NAME':<24}  {'STATUS':<4}  {'UPTIME':>7}  {'DOWN':>4}  {'DOWNTIME':<16}  RESPONSE"]
    lines.extend(_monitor_line(monitor) for monitor in monitors)

    stats = result.stats
    lines.append("")
    lines.append(
        f"Total {stats.total} | up {stats.up} | down {stats.down} | paused {stats.paused} | "
        f"average uptime {stats.average:.2f}%"
    )

    if incidents:
        lines.append("")
        lines.append("Recent incidents:")
        for incident in incidents:
            when = datetime.fromtimestamp(incident.datetime, tz).strftime("%Y-%m-%d %H:%M:%S")
            reason = f" ({incident.reason})" if incident.reason else ""
            lines.append(f"  {when}  {incident.monitor_name}  {format_duration(incident.duration)}{reason}")

    for key, message in result.errors.items():
        lines.append(f"Error for key {key}: {message}")

    return "\n".join(lines)
