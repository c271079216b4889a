"""salon_sync.reconcile

Map external therapist names onto internal cast ids.

Matching is case-insensitive exact only (normalize.name_key); there is no
fuzzy matching. When several casts share a name the lowest id wins and a
duplicate-name warning is recorded so the collision can be cleaned up.

Shift sync and profile sync treat a miss differently:
  - shift sync drops the record (CastIndex.lookup -> None)
  - profile sync creates a new cast (ReconcileResult.cast_id is None)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable

from salon_sync.errors import ReconcileError
from salon_sync.normalize import name_key
from salon_sync.shared import SyncCounters

log = logging.getLogger(__name__)


@dataclass
class CastRow:
    id: str
    name: str


@dataclass
class ReconcileResult:
    name: str
    cast_id: str | None
    duplicate_ids: list[str] = field(default_factory=list)

    @property
    def matched(self) -> bool:
        return self.cast_id is not None


def _duplicate_warning(name: str, winner: str, others: list[str]) -> str:
    return f"DuplicateNameWarning: {name!r} matches casts {[winner, *others]}; using {winner}"


class CastIndex:
    """Case-insensitive name → cast id map, built once per shift sync."""

    def __init__(self) -> None:
        self._by_key: dict[str, str] = {}
        self._dupes: dict[str, list[str]] = {}

    @classmethod
    def from_rows(
        cls,
        rows: Iterable[CastRow],
        counters: SyncCounters | None = None,
    ) -> "CastIndex":
        index = cls()
        for row in sorted(rows, key=lambda r: str(r.id)):
            key = name_key(row.name)
            if key is None:
                continue
            if key in index._by_key:
                index._dupes.setdefault(key, []).append(row.id)
                continue
            index._by_key[key] = row.id

        for key, others in index._dupes.items():
            winner = index._by_key[key]
            msg = _duplicate_warning(key, winner, others)
            log.warning(msg)
            if counters is not None:
                counters.duplicate_name_matches += 1
                counters.warn(msg)
        return index

    def lookup(self, name: str | None) -> str | None:
        key = name_key(name)
        if key is None:
            return None
        return self._by_key.get(key)

    def __len__(self) -> int:
        return len(self._by_key)


def reconcile_profile(store, name: str, counters: SyncCounters | None = None) -> ReconcileResult:
    """Per-record lookup for profile sync.

    Uses the same name_key as CastIndex, so a name that shift sync attaches
    to a cast is never re-created here. Ids are ordered ascending; the first wins.
    """
    key = name_key(name)
    if key is None:
        return ReconcileResult(name=name, cast_id=None)
    try:
        rows = list(store.list_casts())
    except Exception as exc:
        raise ReconcileError(f"cast lookup failed for {name!r}: {exc}") from exc
    ids = sorted(str(r.id) for r in rows if name_key(r.name) == key)
    if not ids:
        return ReconcileResult(name=name, cast_id=None)
    winner, others = ids[0], ids[1:]
    if others:
        msg = _duplicate_warning(name, winner, others)
        log.warning(msg)
        if counters is not None:
            counters.duplicate_name_matches += 1
            counters.warn(msg)
    return ReconcileResult(name=name, cast_id=winner, duplicate_ids=others)
