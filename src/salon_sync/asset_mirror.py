"""salon_sync.asset_mirror

Download remote therapist photos and re-host them in owned object storage.

Object names are "<prefix>/<externalId>_<timestampMillis>.<ext>". Every
failure (download or upload) is logged and degrades the photo set; it never
fails the record.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from salon_sync.errors import ConfigError, TransportError
from salon_sync.normalize import EXTENSIONS, MAX_PHOTOS, resolve_image_type
from salon_sync.shared import SyncCounters

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Asset stores
# ---------------------------------------------------------------------------

class AssetStore(Protocol):
    prefix: str

    def upload(self, path: str, content: bytes, content_type: str, upsert: bool = True) -> None: ...

    def public_url(self, path: str) -> str: ...

    def delete(self, path: str) -> None: ...


@dataclass
class GcsAssetStore:
    """Google Cloud Storage bucket; objects are served from their public URL."""

    bucket_name: str
    prefix: str = "cast-photos"
    _bucket: object = field(default=None, init=False, repr=False)

    def _get_bucket(self):
        if self._bucket is None:
            from google.cloud import storage  # type: ignore[import-untyped]

            self._bucket = storage.Client().bucket(self.bucket_name)
        return self._bucket

    def upload(self, path: str, content: bytes, content_type: str, upsert: bool = True) -> None:
        blob = self._get_bucket().blob(path)
        if not upsert and blob.exists():
            return
        blob.upload_from_string(content, content_type=content_type)

    def public_url(self, path: str) -> str:
        return self._get_bucket().blob(path).public_url

    def delete(self, path: str) -> None:
        self._get_bucket().blob(path).delete()


@dataclass
class LocalAssetStore:
    """Write objects under base_dir; public URLs are base_url + path."""

    base_dir: Path
    base_url: str | None = None
    prefix: str = "cast-photos"

    def upload(self, path: str, content: bytes, content_type: str, upsert: bool = True) -> None:
        dest = self.base_dir / path
        if dest.exists() and not upsert:
            return
        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.write_bytes(content)

    def public_url(self, path: str) -> str:
        if self.base_url:
            return f"{self.base_url.rstrip('/')}/{path}"
        return (self.base_dir / path).resolve().as_uri()

    def delete(self, path: str) -> None:
        (self.base_dir / path).unlink(missing_ok=True)


@dataclass
class NullAssetStore:
    """No-op store for dry runs and unit tests. Records what would be uploaded."""

    prefix: str = "cast-photos"
    uploads: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)

    def upload(self, path: str, content: bytes, content_type: str, upsert: bool = True) -> None:
        self.uploads.append(path)

    def public_url(self, path: str) -> str:
        return f"null://{path}"

    def delete(self, path: str) -> None:
        self.deleted.append(path)


def asset_store_from_settings(settings, dry_run: bool = False) -> AssetStore:
    """Local dir wins over a GCS bucket; dry runs never upload."""
    if dry_run:
        return NullAssetStore(prefix=settings.asset_prefix)
    if settings.asset_local_dir:
        return LocalAssetStore(
            base_dir=settings.asset_local_dir,
            base_url=settings.asset_base_url,
            prefix=settings.asset_prefix,
        )
    if settings.asset_bucket:
        return GcsAssetStore(bucket_name=settings.asset_bucket, prefix=settings.asset_prefix)
    raise ConfigError("no asset store configured; set SALON_ASSET_BUCKET or SALON_ASSET_LOCAL_DIR")


# ---------------------------------------------------------------------------
# Mirroring
# ---------------------------------------------------------------------------

@dataclass
class MirroredPhoto:
    source_url: str
    object_path: str
    public_url: str
    content_type: str


@dataclass
class MirrorResult:
    photo: str | None
    photos: list[str]
    mirrored: list[MirroredPhoto] = field(default_factory=list)


def object_path_for(prefix: str, external_id: str, now_ms: int, content_type: str) -> str:
    name = f"{external_id}_{now_ms}.{EXTENSIONS[content_type]}"
    return f"{prefix.strip('/')}/{name}" if prefix else name


def mirror_photo(
    fetcher,
    store: AssetStore,
    remote_url: str,
    external_id: str,
    now_ms: int | None = None,
) -> MirroredPhoto | None:
    """Download remote_url and upload it to store. None on any failure."""
    try:
        asset = fetcher.fetch_bytes(remote_url)
    except TransportError as exc:
        log.warning("Photo download failed for %s: %s", external_id, exc)
        return None

    content_type = resolve_image_type(asset.content, asset.content_type, remote_url)
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    path = object_path_for(store.prefix, external_id, now_ms, content_type)

    try:
        store.upload(path, asset.content, content_type, upsert=True)
        public_url = store.public_url(path)
    except Exception as exc:
        log.warning("Photo upload failed for %s (%s): %s", external_id, path, exc)
        return None

    return MirroredPhoto(
        source_url=remote_url,
        object_path=path,
        public_url=public_url,
        content_type=content_type,
    )


def mirror_photos(
    fetcher,
    store: AssetStore,
    photo_urls: list[str],
    external_id: str,
    fallback_url: str | None = None,
    counters: SyncCounters | None = None,
    clock=None,
) -> MirrorResult:
    """Mirror up to MAX_PHOTOS urls in order; keep only successes.

    When nothing could be mirrored, photo falls back to fallback_url (the
    original remote URL) and photos is empty.
    """
    clock = clock or (lambda: int(time.time() * 1000))
    mirrored: list[MirroredPhoto] = []
    last_ms = None
    for url in photo_urls[:MAX_PHOTOS]:
        now_ms = clock()
        # Same-millisecond uploads would collide on the object name.
        if last_ms is not None and now_ms <= last_ms:
            now_ms = last_ms + 1
        last_ms = now_ms
        result = mirror_photo(fetcher, store, url, external_id, now_ms=now_ms)
        if result is None:
            if counters is not None:
                counters.photos_failed += 1
            continue
        mirrored.append(result)

    photos = [m.public_url for m in mirrored]
    photo = photos[0] if photos else fallback_url
    return MirrorResult(photo=photo, photos=photos, mirrored=mirrored)


def discard_mirrored(
    store: AssetStore,
    mirrored: list[MirroredPhoto],
    counters: SyncCounters | None = None,
) -> int:
    """Delete objects uploaded for a record whose database writes rolled back.

    Such objects have no mirrored_asset row, so the prune job cannot see them.
    Returns the number deleted; failures are logged and recorded as warnings.
    """
    deleted = 0
    for m in mirrored:
        try:
            store.delete(m.object_path)
        except Exception as exc:
            log.warning("Could not discard %s: %s", m.object_path, exc)
            if counters is not None:
                counters.warn(f"untracked upload {m.object_path}: {exc}")
            continue
        deleted += 1
    return deleted
