"""Tests for the per-run metrics context and acceptance checks."""

from __future__ import annotations

import pytest

from car_sync.sync.metrics import (
    AcceptanceTargets,
    LatencyWindow,
    SyncMetrics,
    evaluate_acceptance,
)


class FakeClock:
    def __init__(self, start: float = 100.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now


class TestLatencyWindow:
    """Sliding latency samples."""

    def test_empty_window(self) -> None:
        window = LatencyWindow()

        assert window.average() == 0.0
        assert window.percentile(0.95) == 0.0

    def test_oldest_half_dropped_at_cap(self) -> None:
        window = LatencyWindow(cap=10)
        for value in range(10):
            window.record(float(value))

        window.record(99.0)

        assert window.samples == [5.0, 6.0, 7.0, 8.0, 9.0, 99.0]

    def test_percentile_and_average(self) -> None:
        window = LatencyWindow()
        for value in range(1, 101):
            window.record(float(value))

        assert window.average() == pytest.approx(50.5)
        assert window.percentile(0.95) == 96.0
        assert window.percentile(1.0) == 100.0


class TestSyncMetrics:
    """Counters and derived rates."""

    def test_rates_use_elapsed_time(self) -> None:
        clock = FakeClock()
        metrics = SyncMetrics(clock=clock)
        metrics.record_page("data", rows=400)
        metrics.record_page("data", rows=400)
        metrics.record_page("empty")
        clock.now += 2.0

        assert metrics.pages_processed == 2
        assert metrics.empty_pages == 1
        assert metrics.pages_per_second() == pytest.approx(1.0)
        assert metrics.rows_per_second() == pytest.approx(400.0)

    def test_error_rate_counts_api_and_db_errors(self) -> None:
        metrics = SyncMetrics(clock=FakeClock())
        for ok in (True, True, True, False):
            metrics.record_request(latency_ms=50.0, ok=ok)
        metrics.record_chunk(ok=False)

        assert metrics.api_errors == 1
        assert metrics.db_errors == 1
        assert metrics.error_rate() == pytest.approx(0.5)

    def test_error_rate_without_requests(self) -> None:
        metrics = SyncMetrics(clock=FakeClock())
        metrics.record_chunk(ok=False)

        assert metrics.error_rate() == pytest.approx(1.0)

    def test_snapshot_keys(self) -> None:
        metrics = SyncMetrics(clock=FakeClock())
        metrics.record_retry("RateLimitedError")
        metrics.record_hashes(matches=2, mismatches=3)
        metrics.record_rejected(4)

        snapshot = metrics.snapshot()

        assert snapshot["retries"] == 1
        assert snapshot["hash_matches"] == 2
        assert snapshot["hash_mismatches"] == 3
        assert snapshot["rows_rejected"] == 4
        assert {"pages_per_sec", "rows_per_sec", "avg_latency_ms", "p95_latency_ms"} <= snapshot.keys()


class TestAcceptance:
    """End-of-run target evaluation."""

    def test_fast_clean_run_meets_targets(self) -> None:
        clock = FakeClock()
        metrics = SyncMetrics(clock=clock)
        for _ in range(100):
            metrics.record_request(latency_ms=80.0, ok=True)
            metrics.record_page("data", rows=200)
        clock.now += 5.0

        assert evaluate_acceptance(metrics) == {
            "time_target": True,
            "pages_per_sec_target": True,
            "rows_per_sec_target": True,
            "error_rate_target": True,
        }

    def test_slow_noisy_run_misses_targets(self) -> None:
        clock = FakeClock()
        metrics = SyncMetrics(clock=clock)
        metrics.record_request(latency_ms=80.0, ok=False)
        metrics.record_page("data", rows=10)
        clock.now += 30 * 60.0

        result = evaluate_acceptance(metrics)

        assert result["time_target"] is False
        assert result["pages_per_sec_target"] is False
        assert result["rows_per_sec_target"] is False
        assert result["error_rate_target"] is False

    def test_custom_targets(self) -> None:
        clock = FakeClock()
        metrics = SyncMetrics(clock=clock)
        metrics.record_page("data", rows=10)
        clock.now += 1.0

        result = evaluate_acceptance(metrics, AcceptanceTargets(min_pages_per_sec=1.0, min_rows_per_sec=10.0))

        assert result["pages_per_sec_target"] is True
        assert result["rows_per_sec_target"] is True
