"""salon_sync.shared

Shared utilities used by both schedule_sync and profile_sync modes.
Includes SkipWriter, SyncCounters, the SkippedBlock parse outcome, and
report-writing support.
"""

from __future__ import annotations

import csv
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

SYSTEM_USER_ID = "00000000-0000-0000-0000-000000000000"
MAX_WARNINGS = 50


# ---------------------------------------------------------------------------
# Parse outcome for unparseable blocks
# ---------------------------------------------------------------------------

@dataclass
class SkippedBlock:
    """A row/block the parser could not turn into a record.

    kind is "schedule_row", "cast_block", or "cast_detail"; reason is a short
    machine-readable tag such as "missing_name" or "missing_id".
    """

    kind: str
    reason: str
    snippet: str = ""
    source_url: str | None = None

    def to_row(self) -> dict[str, str]:
        return {
            "kind": self.kind,
            "reason": self.reason,
            "source_url": self.source_url or "",
            "snippet": self.snippet[:200],
        }


# ---------------------------------------------------------------------------
# SkipWriter
# ---------------------------------------------------------------------------

class SkipWriter:
    """Lazy-open CSV writer for skipped blocks (markup-drift audit trail)."""

    FIELDNAMES = ["kind", "reason", "source_url", "snippet"]

    def __init__(self, path: Path | None) -> None:
        self._path = path
        self._fh = None
        self._writer = None

    def write(self, skipped: SkippedBlock) -> None:
        if self._path is None:
            return
        if self._fh is None:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._fh = open(self._path, "w", newline="", encoding="utf-8")
            self._writer = csv.DictWriter(
                self._fh, fieldnames=self.FIELDNAMES, extrasaction="ignore"
            )
            self._writer.writeheader()
        self._writer.writerow(skipped.to_row())
        self._fh.flush()

    def write_all(self, skipped: list[SkippedBlock]) -> None:
        for block in skipped:
            self.write(block)

    def close(self) -> None:
        if self._fh:
            self._fh.close()


# ---------------------------------------------------------------------------
# SyncCounters
# ---------------------------------------------------------------------------

@dataclass
class SyncCounters:
    # Fetch
    pages_fetched: int = 0
    pages_failed: int = 0
    days_failed: int = 0
    detail_pages_fetched: int = 0
    detail_pages_failed: int = 0
    # Parse
    records_parsed: int = 0
    blocks_skipped: int = 0
    # Reconcile
    shifts_matched: int = 0
    shifts_unmatched: int = 0
    shifts_deleted: int = 0
    shifts_inserted: int = 0
    casts_created: int = 0
    casts_updated: int = 0
    duplicate_name_matches: int = 0
    # Assets
    photos_mirrored: int = 0
    photos_failed: int = 0
    assets_pruned: int = 0
    assets_prune_failed: int = 0
    # Errors
    record_errors: int = 0
    warnings: list[str] = field(default_factory=list)

    def warn(self, message: str) -> None:
        self.warnings.append(message)

    def to_dict(self) -> dict[str, Any]:
        d = {k: v for k, v in self.__dict__.items() if k != "warnings"}
        d["warnings"] = self.warnings[:MAX_WARNINGS]
        return d


# ---------------------------------------------------------------------------
# Report writer
# ---------------------------------------------------------------------------

def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def write_run_report(
    run_id: str,
    started_at: str,
    mode: str,
    dry_run: bool,
    extra: dict[str, Any],
    counters: SyncCounters,
    report_dir: Path = Path("./artifacts/reports"),
) -> Path:
    report = {
        "run_id": run_id,
        "mode": mode,
        "started_at": started_at,
        "finished_at": utc_now_iso(),
        "dry_run": dry_run,
        **extra,
        "counters": counters.to_dict(),
    }
    report_path = report_dir / f"{run_id}.json"
    report_path.parent.mkdir(parents=True, exist_ok=True)
    report_path.write_text(json.dumps(report, indent=2, default=str, ensure_ascii=False))
    return report_path
