"""salon_sync.profile_sync

Profile sync: upsert therapist profiles scraped from the portal's cast list.

Per record:
  detail enrichment (best effort) → mirror photos → inside its own SAVEPOINT:
  reconcile by name → build field set → update existing cast or create a new
  one → record asset ownership.

A failing record is rolled back to its savepoint, its uploads are deleted,
it is appended to the error list with its name, and the loop continues.
Only the cast list fetch is fatal. Success counters move only after the
record's savepoint is released.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from salon_sync.asset_mirror import MirrorResult, discard_mirrored, mirror_photos
from salon_sync.config import Settings
from salon_sync.errors import TransportError
from salon_sync.profile_parser import (
    ExternalTherapistProfile,
    apply_detail,
    parse_cast_detail_html,
    parse_cast_list_html,
)
from salon_sync.reconcile import reconcile_profile
from salon_sync.selector_map import SelectorMap
from salon_sync.shared import SkippedBlock, SkipWriter, SyncCounters

log = logging.getLogger(__name__)

ACTION_CREATED = "created"
ACTION_UPDATED = "updated"


@dataclass
class ProfileSyncResult:
    total: int = 0
    sync_results: list[dict[str, Any]] = field(default_factory=list)
    errors: list[dict[str, str]] = field(default_factory=list)

    @property
    def synced(self) -> int:
        return len(self.sync_results)

    def to_response(self) -> dict[str, Any]:
        return {
            "success": True,
            "synced": self.synced,
            "errors": len(self.errors),
            "total": self.total,
            "details": {
                "syncResults": self.sync_results,
                "errors": self.errors,
            },
        }


def profile_to_fields(profile: ExternalTherapistProfile, mirror: MirrorResult) -> dict[str, Any]:
    """Column values for casts. Absent optional values are left out entirely."""
    fields: dict[str, Any] = {
        "name": profile.name,
        "external_id": profile.external_id,
        "age": profile.age,
        "tags": list(profile.tags),
    }
    if mirror.photo:
        fields["photo"] = mirror.photo
    if mirror.photos:
        fields["photos"] = list(mirror.photos)
    for attr, value in profile.present_fields().items():
        # message is stored in the casts.profile column
        fields["profile" if attr == "message" else attr] = value
    return fields


def enrich_with_detail(
    fetcher,
    profile: ExternalTherapistProfile,
    selectors: SelectorMap,
    counters: SyncCounters,
    pacer,
    skip_writer: SkipWriter | None = None,
) -> None:
    """Merge the detail page into profile. Failures keep the base fields."""
    if not profile.detail_url:
        return
    try:
        html = fetcher.fetch_text(profile.detail_url)
        counters.detail_pages_fetched += 1
        apply_detail(profile, parse_cast_detail_html(html, profile.detail_url, selectors))
    except TransportError as exc:
        log.error("Detail fetch failed for %s: %s", profile.name, exc)
        counters.detail_pages_failed += 1
        counters.warn(f"detail {profile.name}: {exc}")
    except Exception as exc:
        log.error("Detail parse failed for %s: %s", profile.name, exc)
        counters.detail_pages_failed += 1
        counters.warn(f"detail {profile.name}: {exc}")
        if skip_writer is not None:
            skip_writer.write(
                SkippedBlock("cast_detail", "parse_error", str(exc), profile.detail_url)
            )
    finally:
        pacer.sleep()


def sync_profile(
    store,
    settings: Settings,
    profile: ExternalTherapistProfile,
    mirror: MirrorResult,
    counters: SyncCounters,
) -> dict[str, Any]:
    """Reconcile and upsert one profile with its mirrored photos. Raises on failure."""
    match = reconcile_profile(store, profile.name, counters)
    fields = profile_to_fields(profile, mirror)

    if match.matched:
        cast_id = match.cast_id
        store.update_cast(cast_id, fields)
        action = ACTION_UPDATED
    else:
        fields["type"] = settings.new_cast_type
        fields["status"] = settings.new_cast_status
        cast_id = store.insert_cast(fields)
        action = ACTION_CREATED

    for m in mirror.mirrored:
        store.record_asset(cast_id, m.object_path, m.public_url)

    return {
        "name": profile.name,
        "action": action,
        "photoUrl": fields.get("photo"),
        "profileData": fields,
    }


def run_profile_sync(
    store,
    fetcher,
    asset_store,
    settings: Settings,
    selectors: SelectorMap,
    counters: SyncCounters,
    detail_pacer,
    skip_writer: SkipWriter | None = None,
    clock=None,
) -> ProfileSyncResult:
    """Run one profile sync. The caller commits or rolls back the store.

    Raises:
        TransportError: If the cast list page itself cannot be fetched.
    """
    list_url = settings.cast_list_url
    html = fetcher.fetch_text(list_url)
    counters.pages_fetched += 1

    profiles, skipped = parse_cast_list_html(html, list_url, selectors)
    counters.records_parsed += len(profiles)
    counters.blocks_skipped += len(skipped)
    if skip_writer is not None:
        skip_writer.write_all(skipped)
    log.info("Cast list: %d profiles, %d blocks skipped", len(profiles), len(skipped))

    result = ProfileSyncResult(total=len(profiles))
    for profile in profiles:
        enrich_with_detail(fetcher, profile, selectors, counters, detail_pacer, skip_writer)
        mirror = None
        try:
            mirror = mirror_photos(
                fetcher,
                asset_store,
                profile.photo_urls,
                profile.external_id,
                fallback_url=profile.photo_url,
                counters=counters,
                clock=clock,
            )
            with store.savepoint():
                entry = sync_profile(store, settings, profile, mirror, counters)
        except Exception as exc:
            log.error("Profile sync failed for %s: %s", profile.name, exc)
            if mirror is not None:
                discard_mirrored(asset_store, mirror.mirrored, counters)
            counters.record_errors += 1
            result.errors.append({"name": profile.name, "error": str(exc)})
            continue
        if entry["action"] == ACTION_CREATED:
            counters.casts_created += 1
        else:
            counters.casts_updated += 1
        counters.photos_mirrored += len(mirror.mirrored)
        log.info("Profile %s: %s", profile.name, entry["action"])
        result.sync_results.append(entry)

    return result


def build_profile_report(counters: SyncCounters, result: ProfileSyncResult, dry_run: bool) -> str:
    lines = [
        "=== Profile Sync Run Report ===",
        f"dry_run              : {dry_run}",
        f"total                : {result.total}",
        f"synced               : {result.synced}",
        f"errors               : {len(result.errors)}",
        "",
        "--- Fetch / Parse ---",
        f"blocks_skipped       : {counters.blocks_skipped}",
        f"detail_pages_fetched : {counters.detail_pages_fetched}",
        f"detail_pages_failed  : {counters.detail_pages_failed}",
        "",
        "--- Casts ---",
        f"casts_created        : {counters.casts_created}",
        f"casts_updated        : {counters.casts_updated}",
        f"duplicate_names      : {counters.duplicate_name_matches}",
        "",
        "--- Photos ---",
        f"photos_mirrored      : {counters.photos_mirrored}",
        f"photos_failed        : {counters.photos_failed}",
    ]
    if result.errors:
        lines += ["", "--- Record errors (first 10) ---"]
        lines += [f"  {e['name']}: {e['error']}" for e in result.errors[:10]]
    if counters.warnings:
        lines += ["", "--- Warnings (first 10) ---"]
        lines += [f"  {w}" for w in counters.warnings[:10]]
    return "\n".join(lines)
