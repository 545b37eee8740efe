"""Per-run sync metrics context and acceptance checks."""

from __future__ import annotations

import math
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from ..monitoring import metrics as prom

LATENCY_WINDOW_CAP = 100


@dataclass(slots=True)
class LatencyWindow:
    """Bounded sliding window of request latencies in milliseconds.

    When the cap is reached the oldest half of the samples is dropped.
    """

    cap: int = LATENCY_WINDOW_CAP
    samples: list[float] = field(default_factory=list)

    def record(self, latency_ms: float) -> None:
        if len(self.samples) >= self.cap:
            del self.samples[: self.cap // 2]
        self.samples.append(max(latency_ms, 0.0))

    def average(self) -> float:
        if not self.samples:
            return 0.0
        return sum(self.samples) / len(self.samples)

    def percentile(self, fraction: float) -> float:
        if not self.samples:
            return 0.0
        ordered = sorted(self.samples)
        index = min(int(math.floor(len(ordered) * fraction)), len(ordered) - 1)
        return ordered[index]


@dataclass(slots=True)
class SyncMetrics:
    """Process-local counters for a single sync run.

    Passed explicitly to the fetcher, writer and driver; every counter is
    mirrored to the Prometheus registry as it is updated.
    """

    clock: Callable[[], float] = time.monotonic
    started_at: float = 0.0
    pages_processed: int = 0
    empty_pages: int = 0
    error_pages: int = 0
    rows_processed: int = 0
    rows_rejected: int = 0
    api_requests: int = 0
    api_errors: int = 0
    retries: int = 0
    db_chunks_written: int = 0
    db_errors: int = 0
    hash_matches: int = 0
    hash_mismatches: int = 0
    latency: LatencyWindow = field(default_factory=LatencyWindow)

    def __post_init__(self) -> None:
        if not self.started_at:
            self.started_at = self.clock()

    def record_request(self, *, latency_ms: float, ok: bool) -> None:
        self.api_requests += 1
        if not ok:
            self.api_errors += 1
        self.latency.record(latency_ms)
        prom.record_api_request("success" if ok else "error", latency_ms / 1000.0)

    def record_retry(self, error_type: str) -> None:
        self.retries += 1
        prom.record_api_retry(error_type)

    def record_page(self, outcome: str, *, rows: int = 0) -> None:
        if outcome == "data":
            self.pages_processed += 1
            self.rows_processed += rows
            prom.record_rows_written(rows)
        elif outcome == "empty":
            self.empty_pages += 1
        else:
            self.error_pages += 1
        prom.record_page(outcome)

    def record_rejected(self, count: int) -> None:
        self.rows_rejected += count
        prom.record_rows_rejected(count)

    def record_chunk(self, *, ok: bool) -> None:
        if ok:
            self.db_chunks_written += 1
        else:
            self.db_errors += 1
        prom.record_db_write("success" if ok else "error")

    def record_hashes(self, *, matches: int, mismatches: int) -> None:
        self.hash_matches += matches
        self.hash_mismatches += mismatches
        prom.record_hash_comparison(matches, mismatches)

    def elapsed_seconds(self) -> float:
        return max(self.clock() - self.started_at, 1e-9)

    def pages_per_second(self) -> float:
        return self.pages_processed / self.elapsed_seconds()

    def rows_per_second(self) -> float:
        return self.rows_processed / self.elapsed_seconds()

    def error_rate(self) -> float:
        return (self.api_errors + self.db_errors) / max(1, self.api_requests)

    def snapshot(self) -> dict[str, Any]:
        """Return a serialisable summary for progress logs and run records."""

        return {
            "elapsed_seconds": round(self.elapsed_seconds(), 3),
            "pages": self.pages_processed,
            "empty_pages": self.empty_pages,
            "error_pages": self.error_pages,
            "rows": self.rows_processed,
            "rows_rejected": self.rows_rejected,
            "pages_per_sec": self.pages_per_second(),
            "rows_per_sec": self.rows_per_second(),
            "api_requests": self.api_requests,
            "api_errors": self.api_errors,
            "db_errors": self.db_errors,
            "retries": self.retries,
            "avg_latency_ms": self.latency.average(),
            "p95_latency_ms": self.latency.percentile(0.95),
            "hash_matches": self.hash_matches,
            "hash_mismatches": self.hash_mismatches,
            "error_rate": self.error_rate(),
        }


@dataclass(frozen=True, slots=True)
class AcceptanceTargets:
    """End-of-run performance targets for a full catalog sync."""

    max_minutes: float = 25.0
    min_pages_per_sec: float = 10.0
    min_rows_per_sec: float = 2000.0
    max_error_rate: float = 0.05


def evaluate_acceptance(
    metrics: SyncMetrics,
    targets: AcceptanceTargets | None = None,
) -> dict[str, bool]:
    """Compare a finished run against the acceptance targets."""

    targets = targets or AcceptanceTargets()
    return {
        "time_target": metrics.elapsed_seconds() / 60.0 <= targets.max_minutes,
        "pages_per_sec_target": metrics.pages_per_second() >= targets.min_pages_per_sec,
        "rows_per_sec_target": metrics.rows_per_second() >= targets.min_rows_per_sec,
        "error_rate_target": metrics.error_rate() < targets.max_error_rate,
    }
