"""Sync driver: pages through the upstream catalog and promotes staging."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

import httpx
from sqlalchemy.exc import SQLAlchemyError

from ..exceptions import (
    CheckpointError,
    CircuitBreakerOpenError,
    DatastoreError,
    SyncAbortedError,
    classify_error,
)
from ..models.repository import SyncRunCreate, persist_sync_run
from ..monitoring.metrics import record_sync_run
from ..storage.base import StagingStore
from ..storage.supabase import SupabaseStagingStore
from ..utils.config import GlobalSettings, ensure_runtime_configuration, get_settings
from ..utils.logging import log_progress, setup_logger
from .checkpoint import (
    Checkpoint,
    CheckpointStore,
    build_checkpoint_store,
    load_resumable,
    new_run_id,
    now_ms,
)
from .circuit_breaker import CircuitBreaker
from .concurrency import ConcurrencyLimiter
from .fetcher import PageFetcher
from .metrics import SyncMetrics, evaluate_acceptance
from .rate_limiter import TokenBucket
from .transformer import transform_page
from .writer import BatchWriter

logger = setup_logger(__name__, context={"component": "driver"})


class PageOutcome(str, Enum):
    DATA = "data"
    EMPTY = "empty"
    ERROR = "error"


@dataclass(slots=True)
class PageResult:
    """What happened to one page inside the breaker-guarded unit."""

    page: int
    outcome: PageOutcome
    rows_written: int = 0
    rows_rejected: int = 0
    has_more: bool | None = None
    error: BaseException | None = None


@dataclass(slots=True)
class SyncReport:
    """Final summary of a sync run."""

    run_id: str
    status: str
    start_page: int
    last_page: int
    pages_processed: int
    rows_processed: int
    stop_reason: str
    reached_end: bool
    errors: list[str] = field(default_factory=list)
    metrics: dict[str, Any] = field(default_factory=dict)
    acceptance: dict[str, bool] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.status in {"completed", "partial"}


@dataclass(slots=True)
class _RunState:
    run_id: str
    start_time: int
    start_page: int
    next_page: int
    last_page: int
    total_processed: int
    completed_page: int = 0
    completed_rows: int = 0
    frontier_broken: bool = False
    pages_visited: int = 0
    consecutive_empty: int = 0
    errors: list[str] = field(default_factory=list)
    stop_reason: str | None = None
    reached_end: bool = False


class CarSyncPipeline:
    """Drive a full catalog sync.

    Pages are dispatched in waves through the concurrency limiter; each page
    fetch-and-process unit runs under the circuit breaker. Results are folded
    in page order so checkpoints only ever move forward.
    """

    def __init__(
        self,
        settings: GlobalSettings,
        *,
        fetcher: PageFetcher,
        writer: BatchWriter,
        store: StagingStore,
        checkpoint_store: CheckpointStore,
        breaker: CircuitBreaker,
        limiter: ConcurrencyLimiter,
        metrics: SyncMetrics,
        run_recorder: Callable[[SyncRunCreate], Any] | None = None,
        clock_ms: Callable[[], int] = now_ms,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.settings = settings
        self._fetcher = fetcher
        self._writer = writer
        self._store = store
        self._checkpoints = checkpoint_store
        self._breaker = breaker
        self._limiter = limiter
        self.metrics = metrics
        self._run_recorder = run_recorder
        self._clock_ms = clock_ms
        self._sleep = sleep
        self._synced_at = datetime.now(timezone.utc)

    async def run(self, *, fresh: bool = False) -> SyncReport:
        """
        Execute the sync.

        Args:
            fresh: Discard any stored checkpoint and start from page 1

        Returns:
            SyncReport describing the finished run

        Raises:
            SyncAbortedError: Accumulated page errors crossed the ceiling
            DatastoreError: Staging could not be cleared or merged
        """
        self._synced_at = datetime.now(timezone.utc)
        state = await self._start(fresh=fresh)
        log = logger.bind(run_id=state.run_id)

        try:
            while state.stop_reason is None:
                await self._run_wave(state)
            await self._finish(state)
        except BaseException as exc:
            self._save_checkpoint(state)
            status = "aborted" if isinstance(exc, SyncAbortedError) else "failed"
            if isinstance(exc, Exception):
                state.errors.append(f"{classify_error(exc)}: {exc}")
            report = self._build_report(state, status)
            self._record_run(report)
            log.error("Sync %s at page %s: %s", status, state.last_page, exc, extra={"status": status})
            raise

        status = "completed" if state.reached_end else "partial"
        report = self._build_report(state, status)
        self._record_run(report)
        log.info(
            "Sync %s: %s pages, %s rows, %s errors (%s)",
            status,
            report.pages_processed,
            report.rows_processed,
            len(report.errors),
            report.stop_reason,
            extra={"status": status},
        )
        return report

    async def _start(self, *, fresh: bool) -> _RunState:
        if fresh:
            self._clear_checkpoint()

        checkpoint = load_resumable(
            self._checkpoints,
            max_age_hours=self.settings.checkpoint_max_age_hours,
            now=self._clock_ms(),
        )
        if checkpoint is not None:
            logger.info(
                "Resuming run %s after page %s (%s rows already processed)",
                checkpoint.run_id,
                checkpoint.last_page,
                checkpoint.total_processed,
                extra={"run_id": checkpoint.run_id, "status": "resume"},
            )
            return _RunState(
                run_id=checkpoint.run_id,
                start_time=checkpoint.start_time,
                start_page=checkpoint.last_page + 1,
                next_page=checkpoint.last_page + 1,
                last_page=checkpoint.last_page,
                total_processed=checkpoint.total_processed,
                completed_page=checkpoint.last_page,
                completed_rows=checkpoint.total_processed,
            )

        run_id = new_run_id()
        await self._store.clear_staging()
        logger.info("Starting fresh sync", extra={"run_id": run_id, "status": "start"})
        state = _RunState(
            run_id=run_id,
            start_time=self._clock_ms(),
            start_page=1,
            next_page=1,
            last_page=0,
            total_processed=0,
        )
        self._save_checkpoint(state)
        return state

    async def _run_wave(self, state: _RunState) -> None:
        remaining = self.settings.max_pages - state.pages_visited
        if remaining <= 0:
            logger.warning(
                "Reached the %s page safety limit",
                self.settings.max_pages,
                extra={"run_id": state.run_id, "status": "stopped"},
            )
            state.stop_reason = "max_pages"
            return

        cooldown = self._breaker.retry_after()
        if cooldown > 0:
            logger.warning(
                "Circuit breaker open; waiting %.1fs before page %s",
                cooldown,
                state.next_page,
                extra={"run_id": state.run_id, "status": "breaker_open"},
            )
            await self._sleep(cooldown)

        # Only top the queue up to the pending-page bound.
        capacity = self.settings.effective_max_pending_pages - self._limiter.queued
        wave_size = max(1, min(capacity, remaining))
        first_page = state.next_page
        pages = range(first_page, first_page + wave_size)
        results = await asyncio.gather(*(self._limiter.run(self._page_task(page)) for page in pages))
        state.next_page = first_page + wave_size

        for result in results:
            if isinstance(result.error, CircuitBreakerOpenError):
                # Rejected without a request: dispatch again from here next wave.
                state.next_page = result.page
                logger.info(
                    "Deferring pages %s-%s until the circuit breaker admits calls",
                    result.page,
                    first_page + wave_size - 1,
                    extra={"run_id": state.run_id, "status": "breaker_open"},
                )
                break
            self._fold(state, result)

    def _page_task(self, page: int) -> Callable[[], Any]:
        async def task() -> PageResult:
            try:
                return await self._breaker.call(lambda: self._process_page(page))
            except Exception as exc:
                return PageResult(page=page, outcome=PageOutcome.ERROR, error=exc)

        return task

    async def _process_page(self, page: int) -> PageResult:
        payload = await self._fetcher.fetch_page(page)
        if payload.is_empty:
            return PageResult(page=page, outcome=PageOutcome.EMPTY, has_more=payload.has_more)

        written = 0
        rejected = 0
        step = self.settings.sub_chunk_size
        for start in range(0, len(payload.listings), step):
            result = transform_page(
                payload.listings[start : start + step],
                synced_at=self._synced_at,
                page=page,
            )
            rejected += len(result.rejected)
            if not result.rows:
                continue
            if self.settings.detect_changes:
                await self._compare_hashes(result.rows)
            written += await self._writer.write_batch([row.to_record() for row in result.rows])

        return PageResult(
            page=page,
            outcome=PageOutcome.DATA,
            rows_written=written,
            rows_rejected=rejected,
            has_more=payload.has_more,
        )

    async def _compare_hashes(self, rows: list[Any]) -> None:
        try:
            existing = await self._store.fetch_existing_hashes([row.id for row in rows])
        except DatastoreError as exc:
            logger.warning("Hash comparison skipped: %s", exc)
            return
        matches = sum(1 for row in rows if existing.get(row.id) == row.data_hash)
        self.metrics.record_hashes(matches=matches, mismatches=len(rows) - matches)

    def _fold(self, state: _RunState, result: PageResult) -> None:
        """Apply one page outcome to the run state, in page order."""

        state.pages_visited += 1
        state.last_page = max(state.last_page, result.page)
        self.metrics.record_page(result.outcome.value, rows=result.rows_written)
        if result.rows_rejected:
            self.metrics.record_rejected(result.rows_rejected)

        if result.outcome is PageOutcome.DATA:
            state.consecutive_empty = 0
            state.total_processed += result.rows_written
        elif result.outcome is PageOutcome.EMPTY:
            state.consecutive_empty += 1
        else:
            state.frontier_broken = True
            error = result.error
            label = classify_error(error) if error is not None else "unexpected"
            state.errors.append(f"page {result.page}: {label}: {error}")
            logger.error(
                "Page %s failed: %s",
                result.page,
                error,
                extra={"run_id": state.run_id, "page": result.page, "status": label},
            )

        # Only an unbroken run of finished pages may be checkpointed.
        if not state.frontier_broken:
            state.completed_page = result.page
            state.completed_rows = state.total_processed

        if state.pages_visited % self.settings.checkpoint_interval == 0:
            self._save_checkpoint(state)
            log_progress(logger.bind(run_id=state.run_id), page=result.page, snapshot=self.metrics.snapshot())

        if len(state.errors) > self.settings.max_total_errors:
            self._save_checkpoint(state)
            raise SyncAbortedError(
                f"Aborting sync: {len(state.errors)} page errors exceed the limit of "
                f"{self.settings.max_total_errors}",
                last_page=state.completed_page,
                error_count=len(state.errors),
            )

        if state.stop_reason is not None:
            return
        if state.consecutive_empty >= self.settings.max_consecutive_empty_pages:
            state.stop_reason = "empty_pages"
            state.reached_end = True
        elif (
            self.settings.honor_upstream_has_more
            and result.outcome is not PageOutcome.ERROR
            and result.has_more is False
        ):
            state.stop_reason = "upstream_exhausted"
            state.reached_end = True

    async def _finish(self, state: _RunState) -> None:
        await self._store.merge_from_staging()
        if state.reached_end:
            await self._store.mark_missing_inactive()
        else:
            logger.warning(
                "Skipping inactive marking; the run stopped before the end of upstream data",
                extra={"run_id": state.run_id, "status": state.stop_reason or "-"},
            )
        await self._store.clear_staging()
        self._clear_checkpoint()

    def _save_checkpoint(self, state: _RunState) -> None:
        """Persist the resume point. Failures are logged; the run carries on."""

        checkpoint = Checkpoint(
            run_id=state.run_id,
            last_page=state.completed_page,
            total_processed=state.completed_rows,
            start_time=state.start_time,
            last_update_time=self._clock_ms(),
        )
        try:
            self._checkpoints.save(checkpoint)
        except CheckpointError as exc:
            logger.error("Could not persist checkpoint: %s", exc, extra={"run_id": state.run_id})

    def _clear_checkpoint(self) -> None:
        try:
            self._checkpoints.clear()
        except CheckpointError as exc:
            logger.error("Could not clear checkpoint: %s", exc)

    def _build_report(self, state: _RunState, status: str) -> SyncReport:
        return SyncReport(
            run_id=state.run_id,
            status=status,
            start_page=state.start_page,
            last_page=state.last_page,
            pages_processed=self.metrics.pages_processed,
            rows_processed=state.total_processed,
            stop_reason=state.stop_reason or status,
            reached_end=state.reached_end,
            errors=list(state.errors),
            metrics=self.metrics.snapshot(),
            acceptance=evaluate_acceptance(self.metrics),
        )

    def _record_run(self, report: SyncReport) -> None:
        record_sync_run(report.status, report.metrics.get("elapsed_seconds", 0.0))
        if self._run_recorder is None:
            return
        try:
            self._run_recorder(
                SyncRunCreate(
                    run_id=report.run_id,
                    status=report.status,
                    start_page=report.start_page,
                    last_page=report.last_page,
                    pages_processed=report.pages_processed,
                    rows_processed=report.rows_processed,
                    error_count=len(report.errors),
                    duration_seconds=report.metrics.get("elapsed_seconds"),
                    metrics=report.metrics,
                    acceptance=dict(report.acceptance),
                    error_details=report.errors[: self.settings.error_report_limit] or None,
                )
            )
        except SQLAlchemyError as exc:
            logger.error("Failed to record sync run %s: %s", report.run_id, exc)


def build_pipeline(
    settings: GlobalSettings,
    *,
    api_client: httpx.AsyncClient,
    store: StagingStore,
    checkpoint_store: CheckpointStore | None = None,
    run_recorder: Callable[[SyncRunCreate], Any] | None = None,
    breaker: CircuitBreaker | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> CarSyncPipeline:
    """Wire the limiter, breaker, fetcher and writer from settings."""

    metrics = SyncMetrics()
    rate_limiter = TokenBucket(
        settings.effective_bucket_capacity,
        settings.rps,
        max_wait_seconds=settings.rate_limit_max_wait_seconds,
    )
    return CarSyncPipeline(
        settings,
        fetcher=PageFetcher(api_client, settings, rate_limiter, metrics, sleep=sleep),
        writer=BatchWriter(
            store,
            metrics=metrics,
            chunk_size=settings.batch_size,
            parallel_chunks=settings.parallel_batches,
            pause_seconds=settings.write_pause_seconds,
        ),
        store=store,
        checkpoint_store=checkpoint_store or build_checkpoint_store(settings),
        breaker=breaker
        or CircuitBreaker(
            failure_threshold=settings.circuit_failure_threshold,
            cooldown_seconds=settings.circuit_cooldown_seconds,
        ),
        limiter=ConcurrencyLimiter(settings.concurrency),
        metrics=metrics,
        run_recorder=run_recorder,
        sleep=sleep,
    )


@asynccontextmanager
async def open_pipeline(settings: GlobalSettings) -> AsyncIterator[CarSyncPipeline]:
    """Yield a pipeline backed by real HTTP clients, closing them afterwards."""

    limits = httpx.Limits(max_connections=settings.concurrency + settings.parallel_batches)
    async with httpx.AsyncClient(limits=limits) as api_client, httpx.AsyncClient(
        timeout=httpx.Timeout(settings.request_timeout_seconds)
    ) as store_client:
        store = SupabaseStagingStore.from_settings(store_client, settings)
        yield build_pipeline(
            settings,
            api_client=api_client,
            store=store,
            run_recorder=persist_sync_run if settings.database_url else None,
        )


async def run_sync(settings: GlobalSettings | None = None, *, fresh: bool = False) -> SyncReport:
    """Validate configuration and run one sync end to end."""

    settings = ensure_runtime_configuration(settings or get_settings())
    async with open_pipeline(settings) as pipeline:
        return await pipeline.run(fresh=fresh)


__all__ = [
    "CarSyncPipeline",
    "PageOutcome",
    "PageResult",
    "SyncReport",
    "build_pipeline",
    "open_pipeline",
    "run_sync",
]
