"""Tests for the multi-key merger and the per-key result store."""

import threading
import time
from datetime import UTC, datetime
from typing import Any

import pytest

from uptimestatus.config import AggregationConfig, Config, ConfigError, UpstreamConfig
from uptimestatus.merger import (
    MonitorStore,
    collect_incidents,
    compute_stats,
    filter_monitors,
    merge_results,
    run_cycle,
)
from uptimestatus.models import AggregatedMonitor, MonitorStatus, OutageEvent, OutageTotals
from uptimestatus.upstream import UpstreamError


def make_monitor(
    id: int,
    name: str = "",
    status: MonitorStatus = MonitorStatus.OK,
    average: float = 100.0,
    url: str = "",
    logs: list[OutageEvent] | None = None,
) -> AggregatedMonitor:
    return AggregatedMonitor(
        id=id,
        name=name or f"monitor-{id}",
        url=url or f"https://{id}.example.com",
        status=status,
        average=average,
        daily=[],
        total=OutageTotals(),
        logs=logs or [],
    )


class FakeFetcher:
    """Records calls and returns canned monitor records per key."""

    def __init__(self, by_key: dict[str, Any] | None = None) -> None:
        self.by_key = by_key or {}
        self.calls: list[tuple[str, int]] = []
        self._lock = threading.Lock()

    def __call__(self, api_key: str, ranges: list, **kwargs: Any) -> list[dict[str, Any]]:
        with self._lock:
            self.calls.append((api_key, len(ranges) - 1))
        result = self.by_key.get(api_key, [])
        if isinstance(result, Exception):
            raise result
        return result


def raw_monitor(id: int, status: int = 2, uptime: str = "100-100-100-100-100-100-100-99.5") -> dict[str, Any]:
    return {
        "id": id,
        "friendly_name": f"monitor-{id}",
        "url": f"https://{id}.example.com",
        "status": status,
        "custom_uptime_ranges": uptime,
        "logs": [],
    }


@pytest.fixture
def config() -> Config:
    return Config(
        upstream=UpstreamConfig(api_keys=["key-one-123456", "key-two-123456"]),
        aggregation=AggregationConfig(days=7, stale_seconds=120),
    )


class TestComputeStats:
    """Tests for compute_stats."""

    def test_empty_list_average_is_zero(self) -> None:
        stats = compute_stats([])

        assert stats.total == 0
        assert stats.average == 0.0

    def test_counts_by_status(self) -> None:
        monitors = [
            make_monitor(1, status=MonitorStatus.OK),
            make_monitor(2, status=MonitorStatus.OK),
            make_monitor(3, status=MonitorStatus.DOWN),
            make_monitor(4, status=MonitorStatus.PAUSED),
            make_monitor(5, status=MonitorStatus.UNKNOWN),
        ]

        stats = compute_stats(monitors)

        assert stats.total == 5
        assert stats.up == 2
        assert stats.down == 1
        assert stats.paused == 1

    def test_average_is_truncated(self) -> None:
        monitors = [make_monitor(1, average=99.99), make_monitor(2, average=95.5), make_monitor(3, average=100.0)]

        assert compute_stats(monitors).average == 98.49

    def test_to_dict(self) -> None:
        data = compute_stats([make_monitor(1, average=50.0)]).to_dict()

        assert data == {"total": 1, "up": 1, "down": 0, "paused": 0, "avgUptime": 50.0}


class TestMergeResults:
    """Tests for merge_results."""

    def test_concatenates_in_key_order(self) -> None:
        monitors = {"a": [make_monitor(1), make_monitor(2)], "b": [make_monitor(3)]}

        result = merge_results(["a", "b"], lambda key: monitors[key])

        assert [m.id for m in result.monitors] == [1, 2, 3]
        assert result.stats.total == 3
        assert not result.is_partial

    def test_duplicate_ids_are_kept(self) -> None:
        result = merge_results(["a", "b"], lambda key: [make_monitor(1)])

        assert [m.id for m in result.monitors] == [1, 1]

    def test_fail_fast_raises_first_error(self) -> None:
        def cycle(key: str) -> list[AggregatedMonitor]:
            if key == "bad":
                raise UpstreamError("api_key not found.")
            return [make_monitor(1)]

        with pytest.raises(UpstreamError, match="api_key not found."):
            merge_results(["good", "bad"], cycle)

    def test_fail_fast_surfaces_configuration_error(self) -> None:
        def cycle(key: str) -> list[AggregatedMonitor]:
            raise ConfigError("no key")

        with pytest.raises(ConfigError):
            merge_results([""], cycle)

    def test_partial_returns_successes_and_errors(self) -> None:
        def cycle(key: str) -> list[AggregatedMonitor]:
            if key == "bad-key-123456":
                raise UpstreamError("rate limited")
            return [make_monitor(1, average=90.0)]

        result = merge_results(["good-key-123456", "bad-key-123456"], cycle, partial=True)

        assert [m.id for m in result.monitors] == [1]
        assert result.errors == {"bad-ke***": "rate limited"}
        assert result.is_partial
        assert result.stats.average == 90.0

    def test_no_keys_is_empty(self) -> None:
        result = merge_results([], lambda key: [])

        assert result.monitors == []
        assert result.stats.average == 0.0

    def test_runs_credentials_concurrently(self) -> None:
        """Both cycles are in flight at the same time."""
        barrier = threading.Barrier(2, timeout=5)

        def cycle(key: str) -> list[AggregatedMonitor]:
            barrier.wait()
            return [make_monitor(1)]

        result = merge_results(["a", "b"], cycle)

        assert len(result.monitors) == 2


class TestRunCycle:
    """Tests for run_cycle."""

    def test_plans_fetches_and_aggregates(self) -> None:
        fetcher = FakeFetcher({"key": [raw_monitor(1, status=9)]})
        upstream = UpstreamConfig(api_url="https://upstream.example/v2/getMonitors", timeout=7)

        monitors = run_cycle("key", 7, upstream, fetcher=fetcher, now=datetime(2026, 1, 17, 12, tzinfo=UTC))

        assert fetcher.calls == [("key", 7)]
        assert len(monitors) == 1
        assert monitors[0].status is MonitorStatus.DOWN
        assert len(monitors[0].daily) == 7
        assert monitors[0].daily[0].date.isoformat() == "2026-01-17"
        assert monitors[0].average == 99.5

    def test_passes_upstream_settings(self) -> None:
        seen: dict[str, Any] = {}

        def fetcher(api_key: str, ranges: list, **kwargs: Any) -> list:
            seen.update(kwargs)
            return []

        upstream = UpstreamConfig(api_url="https://upstream.example/x", timeout=7, response_times_limit=3)
        run_cycle("key", 7, upstream, fetcher=fetcher)

        assert seen == {"api_url": "https://upstream.example/x", "timeout": 7, "response_times_limit": 3}


class TestMonitorStore:
    """Tests for MonitorStore."""

    @pytest.fixture
    def clock(self) -> list[float]:
        return [1_000.0]

    def _store(self, config: Config, fetcher: FakeFetcher, clock: list[float]) -> MonitorStore:
        return MonitorStore(config, fetcher=fetcher, clock=lambda: clock[0])

    def test_refresh_merges_all_keys(self, config: Config, clock: list[float]) -> None:
        fetcher = FakeFetcher(
            {"key-one-123456": [raw_monitor(1)], "key-two-123456": [raw_monitor(2, status=9)]}
        )
        store = self._store(config, fetcher, clock)

        result = store.refresh()

        assert [m.id for m in result.monitors] == [1, 2]
        assert result.stats.up == 1
        assert result.stats.down == 1
        assert store.last_updated == 1_000.0

    def test_fresh_results_are_reused(self, config: Config, clock: list[float]) -> None:
        fetcher = FakeFetcher({"key-one-123456": [raw_monitor(1)]})
        store = self._store(config, fetcher, clock)

        store.get("key-one-123456", 7)
        clock[0] += 60
        store.get("key-one-123456", 7)

        assert len(fetcher.calls) == 1

    def test_stale_results_are_refetched(self, config: Config, clock: list[float]) -> None:
        fetcher = FakeFetcher({"key-one-123456": [raw_monitor(1)]})
        store = self._store(config, fetcher, clock)

        store.get("key-one-123456", 7)
        clock[0] += 121
        store.get("key-one-123456", 7)

        assert len(fetcher.calls) == 2

    def test_window_is_part_of_the_key(self, config: Config, clock: list[float]) -> None:
        fetcher = FakeFetcher({"key-one-123456": [raw_monitor(1)]})
        store = self._store(config, fetcher, clock)

        store.get("key-one-123456", 7)
        store.get("key-one-123456", 30)

        assert fetcher.calls == [("key-one-123456", 7), ("key-one-123456", 30)]

    def test_invalidate_forces_refetch(self, config: Config, clock: list[float]) -> None:
        fetcher = FakeFetcher({"key-one-123456": [raw_monitor(1)]})
        store = self._store(config, fetcher, clock)

        store.get("key-one-123456", 7)
        store.invalidate("key-one-123456")
        store.get("key-one-123456", 7)

        assert len(fetcher.calls) == 2

    def test_failed_fetch_is_not_stored(self, config: Config, clock: list[float]) -> None:
        fetcher = FakeFetcher({"key-one-123456": UpstreamError("boom")})
        store = self._store(config, fetcher, clock)

        with pytest.raises(UpstreamError):
            store.get("key-one-123456", 7)

        fetcher.by_key["key-one-123456"] = [raw_monitor(1)]
        assert len(store.get("key-one-123456", 7)) == 1
        assert not store.is_loading()

    def test_refresh_fails_fast(self, config: Config, clock: list[float]) -> None:
        fetcher = FakeFetcher({"key-one-123456": [raw_monitor(1)], "key-two-123456": UpstreamError("bad key")})
        store = self._store(config, fetcher, clock)

        with pytest.raises(UpstreamError, match="bad key"):
            store.refresh()

    def test_refresh_partial_results(self, clock: list[float]) -> None:
        config = Config(
            upstream=UpstreamConfig(api_keys=["key-one-123456", "key-two-123456"]),
            aggregation=AggregationConfig(days=7, partial_results=True),
        )
        fetcher = FakeFetcher({"key-one-123456": [raw_monitor(1)], "key-two-123456": UpstreamError("bad key")})
        store = self._store(config, fetcher, clock)

        result = store.refresh()

        assert [m.id for m in result.monitors] == [1]
        assert result.errors == {"key-tw***": "bad key"}

    def test_refresh_without_keys(self, clock: list[float]) -> None:
        store = self._store(Config(), FakeFetcher(), clock)

        with pytest.raises(ConfigError, match="No upstream API keys"):
            store.refresh()

    def test_concurrent_gets_share_one_fetch(self, config: Config, clock: list[float]) -> None:
        """A second request for the same key joins the in-flight fetch."""
        entered = threading.Event()
        release = threading.Event()
        calls: list[str] = []

        def slow_fetcher(api_key: str, ranges: list, **kwargs: Any) -> list[dict[str, Any]]:
            calls.append(api_key)
            entered.set()
            release.wait(timeout=5)
            return [raw_monitor(1)]

        store = MonitorStore(config, fetcher=slow_fetcher, clock=lambda: clock[0])
        results: list[list[AggregatedMonitor]] = []

        def worker() -> None:
            results.append(store.get("key-one-123456", 7))

        first = threading.Thread(target=worker)
        first.start()
        assert entered.wait(timeout=5)
        assert store.is_loading()

        second = threading.Thread(target=worker)
        second.start()
        time.sleep(0.05)
        release.set()
        first.join(timeout=5)
        second.join(timeout=5)

        assert calls == ["key-one-123456"]
        assert len(results) == 2
        assert results[0] is results[1]
        assert not store.is_loading()


class TestFilterMonitors:
    """Tests for filter_monitors."""

    @pytest.fixture
    def monitors(self) -> list[AggregatedMonitor]:
        return [
            make_monitor(1, name="Website", status=MonitorStatus.OK, average=99.9, url="https://www.example.com"),
            make_monitor(2, name="api", status=MonitorStatus.DOWN, average=80.0, url="https://api.example.com"),
            make_monitor(3, name="Blog", status=MonitorStatus.PAUSED, average=100.0, url="https://blog.example.org"),
            make_monitor(4, name="Cron", status=MonitorStatus.UNKNOWN, average=50.0, url="https://cron.example.net"),
        ]

    def test_default_sorts_by_name(self, monitors: list[AggregatedMonitor]) -> None:
        result = filter_monitors(monitors)

        assert [m.name for m in result] == ["api", "Blog", "Cron", "Website"]

    def test_search_matches_name_or_url(self, monitors: list[AggregatedMonitor]) -> None:
        assert [m.id for m in filter_monitors(monitors, search="WEB")] == [1]
        assert [m.id for m in filter_monitors(monitors, search="example.org")] == [3]

    def test_status_filter(self, monitors: list[AggregatedMonitor]) -> None:
        assert [m.id for m in filter_monitors(monitors, status="down")] == [2]

    def test_sort_by_status_puts_problems_first(self, monitors: list[AggregatedMonitor]) -> None:
        result = filter_monitors(monitors, sort_by="status")

        assert [m.status for m in result] == [
            MonitorStatus.DOWN,
            MonitorStatus.UNKNOWN,
            MonitorStatus.PAUSED,
            MonitorStatus.OK,
        ]

    def test_sort_by_uptime_ascending(self, monitors: list[AggregatedMonitor]) -> None:
        result = filter_monitors(monitors, sort_by="uptime")

        assert [m.average for m in result] == [50.0, 80.0, 99.9, 100.0]


class TestCollectIncidents:
    """Tests for collect_incidents."""

    def test_newest_first_down_events_only(self) -> None:
        monitors = [
            make_monitor(
                1,
                name="A",
                logs=[
                    OutageEvent(type=1, datetime=100, duration=10, reason_detail="Timeout"),
                    OutageEvent(type=2, datetime=150, duration=10),
                ],
            ),
            make_monitor(2, name="B", logs=[OutageEvent(type=1, datetime=200, duration=30)]),
        ]

        incidents = collect_incidents(monitors)

        assert [i.id for i in incidents] == ["2-0", "1-0"]
        assert incidents[1].reason == "Timeout"
        assert incidents[0].monitor_name == "B"
        assert incidents[0].type == "down"

    def test_respects_limit(self) -> None:
        logs = [OutageEvent(type=1, datetime=t, duration=1) for t in range(30)]

        incidents = collect_incidents([make_monitor(1, logs=logs)], limit=20)

        assert len(incidents) == 20
        assert incidents[0].datetime == 29
