"""Fan-out across provider credentials and merge the aggregated monitors."""

import logging
import threading
import time
from collections.abc import Callable, Sequence
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import UTC, datetime, tzinfo
from typing import Any

from .aggregator import aggregate_monitors
from .config import Config, ConfigError, UpstreamConfig
from .models import AggregatedMonitor, GlobalStats, Incident, MonitorStatus
from .ranges import plan_ranges, reference_today, truncate_percent
from .upstream import UpstreamError, fetch_monitors, mask_key

logger = logging.getLogger(__name__)

# Credentials are few; cap concurrent upstream requests anyway.
MAX_WORKERS = 4

INCIDENT_LIMIT = 20

# Sort order used by the "status" sort: problems first.
STATUS_ORDER = {
    MonitorStatus.DOWN: 0,
    MonitorStatus.UNKNOWN: 1,
    MonitorStatus.PAUSED: 2,
    MonitorStatus.OK: 3,
}

Fetcher = Callable[..., list[dict[str, Any]]]


@dataclass
class MergeResult:
    """Merged monitors from every credential plus derived stats.

    errors maps a masked credential to its failure message; it is only
    populated when partial results are allowed.
    """

    monitors: list[AggregatedMonitor]
    stats: GlobalStats
    errors: dict[str, str] = field(default_factory=dict)

    @property
    def is_partial(self) -> bool:
        return bool(self.errors)


def compute_stats(monitors: Sequence[AggregatedMonitor]) -> GlobalStats:
    """Count monitors by status and average their uptime (0 when empty)."""
    total = len(monitors)
    average = sum(m.average for m in monitors) / total if total else 0.0
    return GlobalStats(
        total=total,
        up=sum(1 for m in monitors if m.status is MonitorStatus.OK),
        down=sum(1 for m in monitors if m.status is MonitorStatus.DOWN),
        paused=sum(1 for m in monitors if m.status is MonitorStatus.PAUSED),
        average=truncate_percent(average),
    )


def collect_incidents(monitors: Sequence[AggregatedMonitor], limit: int = INCIDENT_LIMIT) -> list[Incident]:
    """Most recent "down" events across all monitors, newest first."""
    incidents = [
        Incident(
            id=f"{monitor.id}-{index}",
            monitor_id=monitor.id,
            monitor_name=monitor.name,
            type="down",
            datetime=log.datetime,
            duration=log.duration,
            reason=log.reason_detail,
        )
        for monitor in monitors
        for index, log in enumerate(monitor.logs)
        if log.is_down
    ]
    incidents.sort(key=lambda incident: incident.datetime, reverse=True)
    return incidents[:limit]


def filter_monitors(
    monitors: Sequence[AggregatedMonitor],
    *,
    search: str = "",
    status: str = "all",
    sort_by: str = "name",
) -> list[AggregatedMonitor]:
    """Search, filter by status and sort a monitor list for display."""
    result = list(monitors)

    if search:
        query = search.lower()
        result = [m for m in result if query in m.name.lower() or query in m.url.lower()]

    if status != "all":
        result = [m for m in result if m.status.value == status]

    if sort_by == "status":
        result.sort(key=lambda m: STATUS_ORDER[m.status])
    elif sort_by == "uptime":
        result.sort(key=lambda m: m.average)
    else:
        result.sort(key=lambda m: m.name.lower())

    return result


def run_cycle(
    api_key: str,
    days: int,
    upstream: UpstreamConfig,
    tz: tzinfo = UTC,
    *,
    fetcher: Fetcher = fetch_monitors,
    now: datetime | None = None,
) -> list[AggregatedMonitor]:
    """Plan ranges, fetch one credential's monitors and aggregate them."""
    today = reference_today(now, tz)
    ranges = plan_ranges(days, today)
    raw_monitors = fetcher(
        api_key,
        ranges,
        api_url=upstream.api_url,
        timeout=upstream.timeout,
        response_times_limit=upstream.response_times_limit,
    )
    return aggregate_monitors(raw_monitors, ranges, days, tz)


def merge_results(
    api_keys: Sequence[str],
    cycle: Callable[[str], list[AggregatedMonitor]],
    partial: bool = False,
) -> MergeResult:
    """Run ``cycle`` for every credential concurrently and merge the results.

    Monitors are concatenated in credential order without de-duplication.

    Raises:
        UpstreamError, ConfigError: The first failing credential's error,
            unless ``partial`` is set.
    """
    results: dict[int, list[AggregatedMonitor]] = {}
    failures: dict[int, Exception] = {}

    if api_keys:
        with ThreadPoolExecutor(max_workers=min(MAX_WORKERS, len(api_keys))) as executor:
            futures = {executor.submit(cycle, key): index for index, key in enumerate(api_keys)}

            for future in as_completed(futures):
                index = futures[future]
                try:
                    results[index] = future.result()
                except (UpstreamError, ConfigError) as e:
                    logger.error("Fetch failed for key %s: %s", mask_key(api_keys[index]), e)
                    failures[index] = e

    if failures and not partial:
        raise failures[min(failures)]

    monitors = [monitor for index in sorted(results) for monitor in results[index]]
    errors = {mask_key(api_keys[index]): str(failures[index]) for index in sorted(failures)}
    return MergeResult(monitors=monitors, stats=compute_stats(monitors), errors=errors)


@dataclass
class _Entry:
    monitors: list[AggregatedMonitor]
    fetched_at: float


class MonitorStore:
    """Per-credential result store for the client-side view.

    Results are keyed by (credential, days). A fresh entry is reused, and a
    fetch already in flight for the same key is joined instead of being
    started again.
    """

    def __init__(
        self,
        config: Config,
        fetcher: Fetcher = fetch_monitors,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._config = config
        self._fetcher = fetcher
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[tuple[str, int], _Entry] = {}
        self._inflight: dict[tuple[str, int], Future] = {}
        self.last_updated: float | None = None

    @property
    def api_keys(self) -> list[str]:
        return list(self._config.upstream.api_keys)

    def is_loading(self) -> bool:
        """True while any fetch is in flight."""
        with self._lock:
            return bool(self._inflight)

    def get(self, api_key: str, days: int) -> list[AggregatedMonitor]:
        """Return monitors for one credential, fetching only when stale."""
        key = (api_key, days)
        stale_seconds = self._config.aggregation.stale_seconds

        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and self._clock() - entry.fetched_at < stale_seconds:
                return entry.monitors

            pending = self._inflight.get(key)
            owner = pending is None
            if owner:
                pending = Future()
                self._inflight[key] = pending

        if not owner:
            logger.debug("Joining in-flight fetch for key %s", mask_key(api_key))
            return pending.result()

        try:
            monitors = run_cycle(
                api_key,
                days,
                self._config.upstream,
                self._config.aggregation.tzinfo,
                fetcher=self._fetcher,
            )
        except Exception as e:
            with self._lock:
                del self._inflight[key]
            pending.set_exception(e)
            raise

        with self._lock:
            fetched_at = self._clock()
            self._entries[key] = _Entry(monitors, fetched_at)
            self.last_updated = fetched_at if self.last_updated is None else max(self.last_updated, fetched_at)
            del self._inflight[key]
        pending.set_result(monitors)
        return monitors

    def refresh(self, days: int | None = None) -> MergeResult:
        """Fetch (or reuse) every credential's monitors and merge them.

        Raises:
            ConfigError: If no credentials are configured.
            UpstreamError: On the first failing credential, unless partial
                results are enabled.
        """
        if days is None:
            days = self._config.aggregation.days
        api_keys = self.api_keys
        if not api_keys:
            raise ConfigError("No upstream API keys configured (set UPTIME_API_KEYS)")

        return merge_results(
            api_keys,
            lambda api_key: self.get(api_key, days),
            partial=self._config.aggregation.partial_results,
        )

    def invalidate(self, api_key: str | None = None) -> None:
        """Drop stored results so the next refresh goes upstream."""
        with self._lock:
            if api_key is None:
                self._entries.clear()
            else:
                for key in [k for k in self._entries if k[0] == api_key]:
                    del self._entries[key]
