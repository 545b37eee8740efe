"""Command line entry point for running and recovering car syncs."""

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone

import click
import httpx
from sqlalchemy.exc import SQLAlchemyError

from car_sync.exceptions import CarSyncError, ConfigurationError
from car_sync.models.repository import recent_sync_runs
from car_sync.storage.supabase import SupabaseStagingStore
from car_sync.sync.checkpoint import (
    Checkpoint,
    build_checkpoint_store,
    is_fresh,
    new_run_id,
    now_ms,
)
from car_sync.sync.metrics import AcceptanceTargets
from car_sync.sync.pipeline import SyncReport, run_sync
from car_sync.utils.config import GlobalSettings, ensure_runtime_configuration, get_settings

RECOMMENDED_MINIMUMS: dict[str, float] = {
    "concurrency": 20,
    "rps": 30,
    "page_size": 200,
    "batch_size": 500,
    "parallel_batches": 6,
}

ACCEPTANCE_LABELS: dict[str, str] = {
    "time_target": "Duration",
    "pages_per_sec_target": "Pages/sec",
    "rows_per_sec_target": "Rows/sec",
    "error_rate_target": "Error rate",
}


def _load_settings() -> GlobalSettings:
    try:
        return get_settings()
    except ConfigurationError as exc:
        click.echo(f"Error: {exc}", err=True)
        raise SystemExit(1) from exc


def _format_ms(epoch_ms: int) -> str:
    return datetime.fromtimestamp(epoch_ms / 1000, tz=timezone.utc).isoformat(timespec="seconds")


def print_summary(report: SyncReport, *, error_limit: int = 5) -> None:
    """Print the final summary block of a sync run."""
    metrics = report.metrics
    click.echo("\n" + "=" * 70)
    click.echo("CAR SYNC SUMMARY")
    click.echo("=" * 70)

    click.echo(f"  Run ID:           {report.run_id}")
    click.echo(f"  Status:           {report.status.upper()} ({report.stop_reason})")
    click.echo(f"  Pages:            {report.start_page} -> {report.last_page}")
    click.echo(f"  Pages Processed:  {report.pages_processed}")
    click.echo(f"  Rows Written:     {report.rows_processed:,}")
    click.echo(f"  Rows Rejected:    {metrics.get('rows_rejected', 0):,}")
    click.echo(f"  Duration:         {metrics.get('elapsed_seconds', 0.0):.1f} s")

    click.echo("\nTHROUGHPUT")
    click.echo("-" * 70)
    click.echo(f"  Pages/sec:        {metrics.get('pages_per_sec', 0.0):.2f}")
    click.echo(f"  Rows/sec:         {metrics.get('rows_per_sec', 0.0):.1f}")
    click.echo(f"  Avg latency:      {metrics.get('avg_latency_ms', 0.0):.0f} ms")
    click.echo(f"  P95 latency:      {metrics.get('p95_latency_ms', 0.0):.0f} ms")
    click.echo(f"  API errors:       {metrics.get('api_errors', 0)}")
    click.echo(f"  DB errors:        {metrics.get('db_errors', 0)}")
    click.echo(f"  Retries:          {metrics.get('retries', 0)}")
    click.echo(f"  Error rate:       {metrics.get('error_rate', 0.0):.2%}")

    click.echo("\nACCEPTANCE TARGETS")
    click.echo("-" * 70)
    for key, label in ACCEPTANCE_LABELS.items():
        met = report.acceptance.get(key, False)
        click.echo(f"  {label:<18}{'MET' if met else 'MISSED'}")

    if report.errors:
        click.echo(f"\nERRORS ({len(report.errors)} total, first {min(error_limit, len(report.errors))})")
        click.echo("-" * 70)
        for error in report.errors[:error_limit]:
            click.echo(f"    • {error}")

    click.echo("\n" + "=" * 70 + "\n")


@click.group()
def cli() -> None:
    """Sync car listings from the auction API into the catalog."""


@cli.command("run")
@click.option("--fresh", is_flag=True, help="Ignore any stored checkpoint and start from page 1")
@click.option("--json", "output_json", is_flag=True, help="Print the report as JSON")
def run_command(fresh: bool, output_json: bool) -> None:
    """
    Run one full sync.

    Resumes from a fresh checkpoint when one exists. Exits with status 1 on
    missing configuration or when the run fails.

    Examples:

        car-sync run

        car-sync run --fresh --json
    """
    settings = _load_settings()
    try:
        ensure_runtime_configuration(settings)
    except ConfigurationError as exc:
        click.echo(f"Error: {exc}", err=True)
        raise SystemExit(1) from exc

    try:
        report = asyncio.run(run_sync(settings, fresh=fresh))
    except CarSyncError as exc:
        click.echo(f"Sync failed: {exc}", err=True)
        raise SystemExit(1) from exc

    if output_json:
        click.echo(
            json.dumps(
                {
                    "run_id": report.run_id,
                    "status": report.status,
                    "stop_reason": report.stop_reason,
                    "start_page": report.start_page,
                    "last_page": report.last_page,
                    "pages_processed": report.pages_processed,
                    "rows_processed": report.rows_processed,
                    "errors": report.errors[: settings.error_report_limit],
                    "metrics": report.metrics,
                    "acceptance": report.acceptance,
                },
                indent=2,
            )
        )
    else:
        print_summary(report, error_limit=settings.error_report_limit)


@cli.command("status")
def status_command() -> None:
    """Show the stored checkpoint and, when a database is configured, recent runs."""
    settings = _load_settings()
    checkpoint = build_checkpoint_store(settings).load()

    click.echo("CHECKPOINT")
    click.echo("-" * 70)
    if checkpoint is None:
        click.echo("  No checkpoint stored")
    else:
        fresh = is_fresh(checkpoint, max_age_hours=settings.checkpoint_max_age_hours)
        click.echo(f"  Run ID:           {checkpoint.run_id}")
        click.echo(f"  Last page:        {checkpoint.last_page}")
        click.echo(f"  Rows processed:   {checkpoint.total_processed:,}")
        click.echo(f"  Started:          {_format_ms(checkpoint.start_time)}")
        click.echo(f"  Updated:          {_format_ms(checkpoint.last_update_time)}")
        click.echo(f"  Resumable:        {'yes' if fresh else 'no (stale)'}")

    if not settings.database_url:
        return

    click.echo("\nRECENT RUNS")
    click.echo("-" * 70)
    try:
        runs = recent_sync_runs()
    except SQLAlchemyError as exc:
        click.echo(f"  Unable to read sync history: {exc}", err=True)
        return
    if not runs:
        click.echo("  No sync history found")
    for run in runs:
        duration = f"{run.duration_seconds / 60:.1f} min" if run.duration_seconds else "n/a"
        click.echo(
            f"  {run.created_at:%Y-%m-%d %H:%M} {run.status:<10} {duration:>10} "
            f"{run.rows_processed:>9,} rows  pages {run.start_page}-{run.last_page}"
        )


@cli.command("checkpoint")
@click.option("--page", type=click.IntRange(min=0), required=True, help="Last completed page")
@click.option("--processed", type=click.IntRange(min=0), default=0, show_default=True)
def checkpoint_command(page: int, processed: int) -> None:
    """Write a checkpoint so the next run resumes after PAGE."""
    settings = _load_settings()
    timestamp = now_ms()
    checkpoint = Checkpoint(
        run_id=new_run_id(),
        last_page=page,
        total_processed=processed,
        start_time=timestamp,
        last_update_time=timestamp,
    )
    try:
        build_checkpoint_store(settings).save(checkpoint)
    except CarSyncError as exc:
        click.echo(f"Error: {exc}", err=True)
        raise SystemExit(1) from exc
    click.echo(f"Checkpoint saved: next run resumes at page {page + 1}")


@cli.command("clear-checkpoint")
def clear_checkpoint_command() -> None:
    """Remove the stored checkpoint so the next run starts from page 1."""
    settings = _load_settings()
    build_checkpoint_store(settings).clear()
    click.echo("Checkpoint cleared")


async def _count_tables(settings: GlobalSettings) -> dict[str, int]:
    async with httpx.AsyncClient(timeout=settings.request_timeout_seconds) as client:
        store = SupabaseStagingStore.from_settings(client, settings)
        return {
            settings.primary_table: await store.count_rows(settings.primary_table),
            settings.staging_table: await store.count_rows(settings.staging_table),
        }


@cli.command("validate-config")
@click.option("--check-tables", is_flag=True, help="Also count rows in the primary and staging tables")
def validate_config_command(check_tables: bool) -> None:
    """Check required variables and compare tuning against recommended values."""
    settings = _load_settings()

    click.echo("CONFIGURATION")
    click.echo("-" * 70)
    for key, minimum in RECOMMENDED_MINIMUMS.items():
        value = getattr(settings, key)
        verdict = "ok" if value >= minimum else f"low (recommend >= {minimum:g})"
        click.echo(f"  {key.upper():<18}{value:<10g}{verdict}")

    click.echo("\nENVIRONMENT")
    click.echo("-" * 70)
    for name, value in (
        ("SUPABASE_URL", settings.supabase_url),
        ("SUPABASE_SERVICE_ROLE_KEY", settings.supabase_service_role_key),
        ("API_BASE_URL", settings.api_base_url),
        ("API_KEY", settings.api_key),
    ):
        click.echo(f"  {name:<27}{'set' if value else 'MISSING'}")

    targets = AcceptanceTargets()
    pages_per_sec = settings.rps
    click.echo("\nTHEORETICAL THROUGHPUT")
    click.echo("-" * 70)
    click.echo(f"  Pages/sec:        {pages_per_sec:.1f} (target >= {targets.min_pages_per_sec:g})")
    click.echo(
        f"  Rows/sec:         {pages_per_sec * settings.page_size:.0f} "
        f"(target >= {targets.min_rows_per_sec:g})"
    )

    try:
        ensure_runtime_configuration(settings)
    except ConfigurationError as exc:
        click.echo(f"\nError: {exc}", err=True)
        raise SystemExit(1) from exc

    if check_tables:
        click.echo("\nTABLES")
        click.echo("-" * 70)
        try:
            counts = asyncio.run(_count_tables(settings))
        except CarSyncError as exc:
            click.echo(f"  Table check failed: {exc}", err=True)
            raise SystemExit(1) from exc
        for table, count in counts.items():
            click.echo(f"  {table:<18}{count:,} rows")

    click.echo("\nConfiguration is valid")


if __name__ == "__main__":
    cli()
