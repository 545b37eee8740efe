"""Prometheus metrics definitions for car_sync."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

SYNC_PAGES = Counter(
    "car_sync_pages_total",
    "Total listing pages visited by outcome.",
    labelnames=("outcome",),
)

SYNC_ROWS_WRITTEN = Counter(
    "car_sync_rows_written_total",
    "Total staging rows confirmed written.",
)

SYNC_ROWS_REJECTED = Counter(
    "car_sync_rows_rejected_total",
    "Total raw listings dropped during transformation.",
)

API_REQUESTS = Counter(
    "car_sync_api_requests_total",
    "Total upstream API requests by result.",
    labelnames=("result",),
)

API_RETRIES = Counter(
    "car_sync_api_retries_total",
    "Total upstream API retries grouped by error type.",
    labelnames=("error_type",),
)

API_LATENCY = Histogram(
    "car_sync_api_latency_seconds",
    "Distribution of upstream API request latencies in seconds.",
    buckets=(0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10, 30),
)

DB_WRITES = Counter(
    "car_sync_db_chunks_total",
    "Total staging chunk upserts by result.",
    labelnames=("result",),
)

HASH_COMPARISONS = Counter(
    "car_sync_hash_comparisons_total",
    "Total change-detection hash comparisons by result.",
    labelnames=("result",),
)

CIRCUIT_STATE = Gauge(
    "car_sync_circuit_state",
    "Circuit breaker state (0=closed, 1=half_open, 2=open).",
    labelnames=("breaker",),
)

SYNC_RUNS = Counter(
    "car_sync_runs_total",
    "Total sync runs grouped by final status.",
    labelnames=("status",),
)

SYNC_DURATION = Histogram(
    "car_sync_run_duration_seconds",
    "Distribution of full sync run durations in seconds.",
    buckets=(60, 300, 600, 900, 1200, 1500, 1800, 3600, 7200),
)


def record_page(outcome: str) -> None:
    """Increment the page counter for the given outcome (data, empty, error)."""

    SYNC_PAGES.labels(outcome=outcome).inc()


def record_rows_written(count: int) -> None:
    """Increment the written rows counter."""

    if count > 0:
        SYNC_ROWS_WRITTEN.inc(count)


def record_rows_rejected(count: int) -> None:
    """Increment the rejected rows counter."""

    if count > 0:
        SYNC_ROWS_REJECTED.inc(count)


def record_api_request(result: str, duration_seconds: float) -> None:
    """Record a single upstream request and its latency."""

    API_REQUESTS.labels(result=result).inc()
    API_LATENCY.observe(max(duration_seconds, 0.0))


def record_api_retry(error_type: str) -> None:
    """Increment the retry counter for the classified error type."""

    API_RETRIES.labels(error_type=error_type).inc()


def record_db_write(result: str) -> None:
    """Increment the chunk upsert counter."""

    DB_WRITES.labels(result=result).inc()


def record_hash_comparison(matches: int, mismatches: int) -> None:
    """Record change-detection results for a page."""

    if matches:
        HASH_COMPARISONS.labels(result="match").inc(matches)
    if mismatches:
        HASH_COMPARISONS.labels(result="mismatch").inc(mismatches)


def set_circuit_state(breaker: str, value: int) -> None:
    """Publish the numeric circuit breaker state."""

    CIRCUIT_STATE.labels(breaker=breaker).set(value)


def record_sync_run(status: str, duration_seconds: float) -> None:
    """Record a completed sync run."""

    SYNC_RUNS.labels(status=status).inc()
    SYNC_DURATION.observe(max(duration_seconds, 0.0))
