"""salon_sync.schedule_parser

Parse one day's schedule page into ExternalShiftRecord rows.

Each table row carries a therapist name heading and, in its last cell,
either explicit hours ("12:00 - 24:00"), a single start time ("18:00〜"),
or only an availability marker ("○"). The tiered fallback lives in
normalize.resolve_shift_window.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date

from bs4 import BeautifulSoup

from salon_sync.normalize import normalize_space, resolve_shift_window, strip_age_suffix
from salon_sync.selector_map import ScheduleSelectors, SelectorMap, default_selector_map
from salon_sync.shared import SkippedBlock

SHIFT_STATUS = "scheduled"


@dataclass
class ExternalShiftRecord:
    cast_name: str
    shift_date: date
    start_time: str
    end_time: str
    status: str = SHIFT_STATUS
    room: str | None = None


def parse_schedule_html(
    html: str,
    shift_date: date,
    selectors: SelectorMap | None = None,
    source_url: str | None = None,
) -> tuple[list[ExternalShiftRecord], list[SkippedBlock]]:
    """Extract shifts for shift_date from a schedule page.

    Returns:
        (records, skipped). Skipped rows never raise; they are reported so
        that a growing skip count can flag markup drift.
    """
    sel: ScheduleSelectors = (selectors or default_selector_map()).schedule
    soup = BeautifulSoup(html, "html.parser")
    records: list[ExternalShiftRecord] = []
    skipped: list[SkippedBlock] = []

    for row in soup.select(sel.row):
        name_el = row.select_one(sel.name)
        cells = row.select(sel.time_cell)
        if name_el is None and not cells:
            # Layout rows (spacers, nested headers) carry neither signal.
            continue

        snippet = normalize_space(row.get_text(" ", strip=True)) or ""
        name = strip_age_suffix(name_el.get_text(" ", strip=True)) if name_el else None
        if not name:
            skipped.append(SkippedBlock("schedule_row", "missing_name", snippet, source_url))
            continue

        cell_text = cells[-1].get_text(" ", strip=True) if cells else ""
        window = resolve_shift_window(
            cell_text,
            presence_markers=sel.presence_markers,
            default_start=sel.default_start,
            default_end=sel.default_end,
        )
        if window is None:
            skipped.append(SkippedBlock("schedule_row", "no_time_signal", snippet, source_url))
            continue

        room = None
        if sel.room:
            room_el = row.select_one(sel.room)
            if room_el is not None:
                room = normalize_space(room_el.get_text(" ", strip=True))

        start_time, end_time = window
        records.append(
            ExternalShiftRecord(
                cast_name=name,
                shift_date=shift_date,
                start_time=start_time,
                end_time=end_time,
                room=room,
            )
        )

    return records, skipped
