"""salon-sync command line entrypoint.

    salon-sync --mode schedule_sync [--days 7] [--dry-run]
    salon-sync --mode profile_sync --asset-bucket my-bucket
    salon-sync --mode prune_assets --archive-local-dir ./artifacts/photos

The database DSN comes from --db-dsn or the SALON_DB_DSN environment variable.
"""

from __future__ import annotations

import logging
import sys
import uuid
from pathlib import Path

import click

from salon_sync.asset_mirror import asset_store_from_settings
from salon_sync.asset_prune import build_prune_report, run_asset_prune
from salon_sync.config import Settings
from salon_sync.errors import ConfigError, SelectorMapValidationError
from salon_sync.fetch import Fetcher, Pacer
from salon_sync.profile_sync import build_profile_report, run_profile_sync
from salon_sync.schedule_sync import build_schedule_report, run_schedule_sync
from salon_sync.selector_map import resolve_selector_map
from salon_sync.shared import SkipWriter, SyncCounters, utc_now_iso, write_run_report
from salon_sync.store import PgCastStore, store_session

log = logging.getLogger(__name__)


def _fatal(run_id: str, message: str) -> None:
    click.echo(f"[{run_id}] FATAL: {message}", err=True)
    sys.exit(1)


@click.command()
@click.option(
    "--mode",
    required=True,
    type=click.Choice(["schedule_sync", "profile_sync", "prune_assets"]),
    help="Which job to run",
)
@click.option("--db-dsn", envvar="SALON_DB_DSN", default=None, help="PostgreSQL DSN (default: $SALON_DB_DSN)")
@click.option("--days", default=None, type=click.IntRange(min=1), help="[schedule_sync] Days to fetch, starting today")
@click.option("--dry-run", is_flag=True, default=False, help="Roll back all writes; skip photo uploads")
@click.option("--selector-file", default=None, type=click.Path(dir_okay=False), help="YAML selector override")
@click.option("--archive-local-dir", default=None, type=click.Path(file_okay=False), help="[profile_sync|prune_assets] Store photos in a local dir instead of GCS")
@click.option("--asset-bucket", default=None, help="[profile_sync|prune_assets] GCS bucket for mirrored photos")
@click.option("--run-id", default=None, help="Override UUID for log correlation")
@click.option("--skips-path", default=None, type=click.Path(), help="CSV log of skipped rows/blocks")
@click.option("--log-level", default="INFO", show_default=True, type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]))
def main(
    mode: str,
    db_dsn: str | None,
    days: int | None,
    dry_run: bool,
    selector_file: str | None,
    archive_local_dir: str | None,
    asset_bucket: str | None,
    run_id: str | None,
    skips_path: str | None,
    log_level: str,
) -> None:
    """Salon external schedule / profile sync."""
    logging.basicConfig(
        level=getattr(logging, log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    run_id = run_id or str(uuid.uuid4())
    started_at = utc_now_iso()

    try:
        settings = Settings.from_env()
    except ConfigError as exc:
        _fatal(run_id, str(exc))
    if db_dsn:
        settings.db_dsn = db_dsn
    if selector_file:
        settings.selector_file = Path(selector_file)
    if archive_local_dir:
        settings.asset_local_dir = Path(archive_local_dir)
    if asset_bucket:
        settings.asset_bucket = asset_bucket
    if not settings.db_dsn:
        _fatal(run_id, "no database DSN; set SALON_DB_DSN or pass --db-dsn")

    click.echo(f"[{run_id}] Starting {mode} run (dry_run={dry_run})")
    counters = SyncCounters()
    skips = SkipWriter(Path(skips_path) if skips_path else None)

    try:
        selectors = resolve_selector_map(settings.selector_file)
    except (SelectorMapValidationError, FileNotFoundError) as exc:
        _fatal(run_id, f"selector map: {exc}")

    if mode == "schedule_sync":
        fetcher = Fetcher(user_agent=settings.user_agent, timeout=settings.http_timeout)
        try:
            with store_session(PgCastStore.connect(settings.db_dsn), dry_run=dry_run) as store:
                result = run_schedule_sync(
                    store,
                    fetcher,
                    settings,
                    selectors,
                    counters,
                    Pacer(delay=settings.page_delay_seconds),
                    days=days,
                    skip_writer=skips,
                )
        except Exception as exc:
            log.exception("Shift sync failed")
            _fatal(run_id, f"shift sync failed: {exc}")
        finally:
            fetcher.close()
            skips.close()

        click.echo(build_schedule_report(counters, result, dry_run=dry_run))
        extra = {"start_date": result.start_date.isoformat(), "days": result.days}

    elif mode == "profile_sync":
        try:
            asset_store = asset_store_from_settings(settings, dry_run=dry_run)
        except ConfigError as exc:
            _fatal(run_id, str(exc))
        fetcher = Fetcher(user_agent=settings.user_agent, timeout=settings.http_timeout)
        try:
            with store_session(PgCastStore.connect(settings.db_dsn), dry_run=dry_run) as store:
                result = run_profile_sync(
                    store,
                    fetcher,
                    asset_store,
                    settings,
                    selectors,
                    counters,
                    Pacer(delay=settings.detail_delay_seconds),
                    skip_writer=skips,
                )
        except Exception as exc:
            log.exception("Profile sync failed")
            _fatal(run_id, f"profile sync failed: {exc}")
        finally:
            fetcher.close()
            skips.close()

        click.echo(build_profile_report(counters, result, dry_run=dry_run))
        extra = {"cast_list_url": settings.cast_list_url, "response": result.to_response()}

    else:
        try:
            asset_store = asset_store_from_settings(settings)
        except ConfigError as exc:
            _fatal(run_id, str(exc))
        try:
            with store_session(PgCastStore.connect(settings.db_dsn), dry_run=dry_run) as store:
                result = run_asset_prune(store, asset_store, counters, dry_run=dry_run)
        except Exception as exc:
            log.exception("Asset prune failed")
            _fatal(run_id, f"asset prune failed: {exc}")

        click.echo(build_prune_report(counters, result, dry_run=dry_run))
        extra = {"pruned": result.pruned, "failed": result.failed}

    report_path = write_run_report(run_id, started_at, mode, dry_run, extra, counters)
    click.echo(f"[{run_id}] Run report: {report_path}")

    if counters.record_errors > 0 and not dry_run:
        click.echo(
            f"[{run_id}] {counters.record_errors} record errors, exiting non-zero",
            err=True,
        )
        sys.exit(1)


if __name__ == "__main__":
    main()
