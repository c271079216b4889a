"""salon_sync.schedule_sync

Shift sync: replace the next N days of persisted shifts with the portal's
published schedule.

State machine (one pass, no retries):

    FETCHING     fetch + parse one schedule page per day; a failed day is
                 logged and contributes nothing
    RECONCILING  load every cast once; drop records whose name has no cast
    REPLACING    delete shifts dated >= start date, insert matched rows,
                 under one transaction and an advisory lock
    DONE

Errors outside the per-day loop (cast load, replace) propagate to the caller.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from datetime import date, timedelta

from salon_sync.config import Settings
from salon_sync.errors import TransportError
from salon_sync.reconcile import CastIndex
from salon_sync.schedule_parser import ExternalShiftRecord, parse_schedule_html
from salon_sync.selector_map import SelectorMap
from salon_sync.shared import SYSTEM_USER_ID, SkipWriter, SyncCounters
from salon_sync.store import ShiftRow

log = logging.getLogger(__name__)


class SyncState(enum.Enum):
    FETCHING = "fetching"
    RECONCILING = "reconciling"
    REPLACING = "replacing"
    DONE = "done"


@dataclass
class ScheduleSyncResult:
    start_date: date
    days: int
    shifts_processed: int
    state: SyncState = SyncState.DONE
    dates_failed: list[str] = field(default_factory=list)

    def to_response(self) -> dict:
        return {
            "success": True,
            "shiftsProcessed": self.shifts_processed,
            "message": (
                f"Synced {self.shifts_processed} shifts for {self.days} days "
                f"starting {self.start_date.isoformat()}"
            ),
        }


def fetch_schedule_window(
    fetcher,
    settings: Settings,
    selectors: SelectorMap,
    counters: SyncCounters,
    pacer,
    start_date: date,
    days: int,
    skip_writer: SkipWriter | None = None,
) -> tuple[list[ExternalShiftRecord], list[str]]:
    """FETCHING phase. Returns (records, failed ISO dates)."""
    records: list[ExternalShiftRecord] = []
    failed: list[str] = []

    for offset in range(days):
        day = start_date + timedelta(days=offset)
        iso = day.isoformat()
        url = settings.schedule_url(iso)
        try:
            html = fetcher.fetch_text(url)
            counters.pages_fetched += 1
            day_records, skipped = parse_schedule_html(html, day, selectors, source_url=url)
        except TransportError as exc:
            log.warning("Schedule fetch failed for %s: %s", iso, exc)
            counters.pages_failed += 1
            counters.days_failed += 1
            counters.warn(f"{iso}: {exc}")
            failed.append(iso)
        except Exception as exc:
            log.exception("Schedule parse failed for %s", iso)
            counters.days_failed += 1
            counters.warn(f"{iso}: {exc}")
            failed.append(iso)
        else:
            log.info("Schedule %s: %d shifts, %d rows skipped", iso, len(day_records), len(skipped))
            counters.records_parsed += len(day_records)
            counters.blocks_skipped += len(skipped)
            if skip_writer is not None:
                skip_writer.write_all(skipped)
            records.extend(day_records)
        pacer.sleep()

    return records, failed


def map_shift_rows(
    records: list[ExternalShiftRecord],
    index: CastIndex,
    counters: SyncCounters,
) -> list[ShiftRow]:
    """RECONCILING phase. Unmatched names are dropped, never created."""
    rows: list[ShiftRow] = []
    seen: set[tuple] = set()
    for rec in records:
        cast_id = index.lookup(rec.cast_name)
        if cast_id is None:
            counters.shifts_unmatched += 1
            log.debug("No cast named %r; dropping shift on %s", rec.cast_name, rec.shift_date)
            continue
        key = (cast_id, rec.shift_date, rec.start_time)
        if key in seen:
            continue
        seen.add(key)
        counters.shifts_matched += 1
        rows.append(
            ShiftRow(
                cast_id=cast_id,
                shift_date=rec.shift_date,
                start_time=rec.start_time,
                end_time=rec.end_time,
                status=rec.status,
                room=rec.room,
                created_by=SYSTEM_USER_ID,
            )
        )
    return rows


def run_schedule_sync(
    store,
    fetcher,
    settings: Settings,
    selectors: SelectorMap,
    counters: SyncCounters,
    pacer,
    today: date | None = None,
    days: int | None = None,
    skip_writer: SkipWriter | None = None,
) -> ScheduleSyncResult:
    """Run one shift sync. The caller commits or rolls back the store."""
    start_date = today or date.today()
    days = days or settings.schedule_days

    state = SyncState.FETCHING
    log.info("Shift sync %s: %d days from %s", state.value, days, start_date)
    records, failed = fetch_schedule_window(
        fetcher, settings, selectors, counters, pacer, start_date, days, skip_writer
    )
    if failed and len(failed) == days:
        counters.warn("every schedule page failed; replacing window with no shifts")

    state = SyncState.RECONCILING
    casts = store.list_casts()
    log.info("Shift sync %s: %d records against %d casts", state.value, len(records), len(casts))
    index = CastIndex.from_rows(casts, counters)
    rows = map_shift_rows(records, index, counters)

    state = SyncState.REPLACING
    log.info("Shift sync %s: %d shifts from %s", state.value, len(rows), start_date)
    deleted, inserted = store.replace_shifts(start_date, rows)
    counters.shifts_deleted += deleted
    counters.shifts_inserted += inserted

    state = SyncState.DONE
    return ScheduleSyncResult(
        start_date=start_date,
        days=days,
        shifts_processed=inserted,
        state=state,
        dates_failed=failed,
    )


def build_schedule_report(counters: SyncCounters, result: ScheduleSyncResult, dry_run: bool) -> str:
    lines = [
        "=== Shift Sync Run Report ===",
        f"dry_run          : {dry_run}",
        f"start_date       : {result.start_date.isoformat()}",
        f"days             : {result.days}",
        f"state            : {result.state.value}",
        "",
        "--- Fetch ---",
        f"pages_fetched    : {counters.pages_fetched}",
        f"pages_failed     : {counters.pages_failed}",
        f"days_failed      : {counters.days_failed}",
        "",
        "--- Parse ---",
        f"records_parsed   : {counters.records_parsed}",
        f"blocks_skipped   : {counters.blocks_skipped}",
        "",
        "--- Reconcile ---",
        f"shifts_matched   : {counters.shifts_matched}",
        f"shifts_unmatched : {counters.shifts_unmatched}",
        f"duplicate_names  : {counters.duplicate_name_matches}",
        "",
        "--- Replace ---",
        f"shifts_deleted   : {counters.shifts_deleted}",
        f"shifts_inserted  : {counters.shifts_inserted}",
    ]
    if result.dates_failed:
        lines.append(f"dates_failed     : {', '.join(result.dates_failed)}")
    if counters.warnings:
        lines += ["", "--- Warnings (first 10) ---"]
        lines += [f"  {w}" for w in counters.warnings[:10]]
    return "\n".join(lines)
