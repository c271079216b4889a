"""salon_sync.asset_prune

Delete mirrored photo objects that no cast references any more.

A mirrored_asset row is an orphan when its public_url appears in neither
casts.photo nor casts.photos. Orphans are removed from object storage, then
their ownership row is deleted. Per-asset failures are counted and the job
moves on.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from salon_sync.shared import SyncCounters

log = logging.getLogger(__name__)


@dataclass
class PruneResult:
    examined: int = 0
    pruned: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)


def run_asset_prune(store, asset_store, counters: SyncCounters, dry_run: bool = False) -> PruneResult:
    """Remove orphaned mirrored assets. In dry_run, only report what would go."""
    referenced = store.referenced_photo_urls()
    assets = store.list_assets()
    result = PruneResult(examined=len(assets))
    log.info("Asset prune: %d assets tracked, %d urls referenced", len(assets), len(referenced))

    for asset in assets:
        if asset.public_url in referenced:
            continue
        if dry_run:
            result.pruned.append(asset.object_path)
            counters.assets_pruned += 1
            continue
        try:
            asset_store.delete(asset.object_path)
            store.delete_asset(asset.id)
        except Exception as exc:
            log.error("Failed to prune %s: %s", asset.object_path, exc)
            counters.assets_prune_failed += 1
            counters.warn(f"prune failed for {asset.object_path}: {exc}")
            result.failed.append(asset.object_path)
            continue
        result.pruned.append(asset.object_path)
        counters.assets_pruned += 1

    return result


def build_prune_report(counters: SyncCounters, result: PruneResult, dry_run: bool) -> str:
    lines = [
        "=== Asset Prune Run Report ===",
        f"dry_run        : {dry_run}",
        f"assets_examined: {result.examined}",
        f"assets_pruned  : {counters.assets_pruned}",
        f"prune_failed   : {counters.assets_prune_failed}",
    ]
    if counters.warnings:
        lines += ["", "--- Warnings (first 10) ---"]
        lines += [f"  {w}" for w in counters.warnings[:10]]
    return "\n".join(lines)
