"""Tests for the Prometheus metrics helpers."""

from __future__ import annotations

import pytest
from prometheus_client import REGISTRY

from car_sync.monitoring.metrics import (
    record_api_request,
    record_api_retry,
    record_db_write,
    record_hash_comparison,
    record_page,
    record_rows_rejected,
    record_rows_written,
    record_sync_run,
    set_circuit_state,
)


def _get_metric_value(metric_name: str, labels: dict[str, str] | None = None) -> float:
    """Helper to retrieve current metric value from registry."""
    labels = labels or {}
    value = REGISTRY.get_sample_value(metric_name, labels)
    return float(value) if value is not None else 0.0


class TestSyncCounters:
    """Page, row and request counters."""

    def test_record_page_increments_outcome(self) -> None:
        before = _get_metric_value("car_sync_pages_total", {"outcome": "empty"})
        record_page("empty")
        after = _get_metric_value("car_sync_pages_total", {"outcome": "empty"})
        assert after == pytest.approx(before + 1)

    def test_rows_written_ignores_non_positive_counts(self) -> None:
        before = _get_metric_value("car_sync_rows_written_total")
        record_rows_written(0)
        record_rows_written(25)
        after = _get_metric_value("car_sync_rows_written_total")
        assert after == pytest.approx(before + 25)

    def test_rows_rejected(self) -> None:
        before = _get_metric_value("car_sync_rows_rejected_total")
        record_rows_rejected(3)
        after = _get_metric_value("car_sync_rows_rejected_total")
        assert after == pytest.approx(before + 3)

    def test_api_request_updates_counter_and_histogram(self) -> None:
        before = _get_metric_value("car_sync_api_requests_total", {"result": "error"})
        before_count = _get_metric_value("car_sync_api_latency_seconds_count")
        record_api_request("error", 0.3)
        assert _get_metric_value("car_sync_api_requests_total", {"result": "error"}) == pytest.approx(
            before + 1
        )
        assert _get_metric_value("car_sync_api_latency_seconds_count") == pytest.approx(before_count + 1)

    def test_api_retry_by_error_type(self) -> None:
        labels = {"error_type": "RateLimitedError"}
        before = _get_metric_value("car_sync_api_retries_total", labels)
        record_api_retry("RateLimitedError")
        assert _get_metric_value("car_sync_api_retries_total", labels) == pytest.approx(before + 1)

    def test_db_write_result(self) -> None:
        before = _get_metric_value("car_sync_db_chunks_total", {"result": "success"})
        record_db_write("success")
        assert _get_metric_value("car_sync_db_chunks_total", {"result": "success"}) == pytest.approx(
            before + 1
        )

    def test_hash_comparisons_split_by_result(self) -> None:
        match_before = _get_metric_value("car_sync_hash_comparisons_total", {"result": "match"})
        mismatch_before = _get_metric_value("car_sync_hash_comparisons_total", {"result": "mismatch"})
        record_hash_comparison(4, 1)
        assert _get_metric_value("car_sync_hash_comparisons_total", {"result": "match"}) == pytest.approx(
            match_before + 4
        )
        assert _get_metric_value(
            "car_sync_hash_comparisons_total", {"result": "mismatch"}
        ) == pytest.approx(mismatch_before + 1)


class TestRunMetrics:
    """Run-level counters and the breaker gauge."""

    def test_circuit_state_gauge(self) -> None:
        set_circuit_state("metrics-test", 2)
        assert _get_metric_value("car_sync_circuit_state", {"breaker": "metrics-test"}) == 2.0
        set_circuit_state("metrics-test", 0)
        assert _get_metric_value("car_sync_circuit_state", {"breaker": "metrics-test"}) == 0.0

    def test_record_sync_run(self) -> None:
        before = _get_metric_value("car_sync_runs_total", {"status": "partial"})
        before_count = _get_metric_value("car_sync_run_duration_seconds_count")
        record_sync_run("partial", -5.0)
        assert _get_metric_value("car_sync_runs_total", {"status": "partial"}) == pytest.approx(before + 1)
        assert _get_metric_value("car_sync_run_duration_seconds_count") == pytest.approx(before_count + 1)
