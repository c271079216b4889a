"""Unit test fixtures: in-memory store, canned fetcher, zero-delay pacer.

No database or network access required.
"""

from __future__ import annotations

import copy
from contextlib import contextmanager
from datetime import date

import pytest

from salon_sync.config import Settings
from salon_sync.errors import TransportError
from salon_sync.fetch import FetchedAsset, Pacer
from salon_sync.reconcile import CastRow
from salon_sync.store import CAST_COLUMNS, AssetRow, ShiftRow

JPEG_BYTES = b"\xff\xd8\xff\xe0" + b"\x00" * 16
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 16


class FakeCastStore:
    """CastStore backed by dicts. savepoint() restores state on error."""

    def __init__(self) -> None:
        self.casts: dict[str, dict] = {}
        self.shifts: list[ShiftRow] = []
        self.assets: list[AssetRow] = []
        self.fail_names: set[str] = set()
        self.commits = 0
        self.rollbacks = 0
        self.closed = False
        self._seq = 0

    def add_cast(self, name: str, **fields) -> str:
        self._seq += 1
        cast_id = f"cast-{self._seq:04d}"
        self.casts[cast_id] = {"name": name, **fields}
        return cast_id

    def add_shift(self, cast_id: str, shift_date: date, start: str = "12:00", end: str = "20:00") -> None:
        self.shifts.append(ShiftRow(cast_id=cast_id, shift_date=shift_date, start_time=start, end_time=end))

    # CastStore -----------------------------------------------------------

    def list_casts(self) -> list[CastRow]:
        return [CastRow(id=k, name=v["name"]) for k, v in sorted(self.casts.items())]

    def _check(self, fields: dict) -> None:
        unknown = set(fields) - set(CAST_COLUMNS)
        if unknown:
            raise ValueError(f"unknown cast columns: {sorted(unknown)}")
        if fields.get("name") in self.fail_names:
            raise RuntimeError(f"simulated write failure for {fields['name']}")

    def insert_cast(self, fields: dict) -> str:
        self._check(fields)
        self._seq += 1
        cast_id = f"cast-{self._seq:04d}"
        self.casts[cast_id] = dict(fields)
        return cast_id

    def update_cast(self, cast_id: str, fields: dict) -> None:
        self._check(fields)
        self.casts[cast_id].update(fields)

    def replace_shifts(self, start_date: date, rows: list[ShiftRow]) -> tuple[int, int]:
        kept = [s for s in self.shifts if s.shift_date < start_date]
        deleted = len(self.shifts) - len(kept)
        self.shifts = kept + list(rows)
        return deleted, len(rows)

    def record_asset(self, cast_id, object_path: str, public_url: str) -> None:
        self.assets = [a for a in self.assets if a.object_path != object_path]
        self.assets.append(
            AssetRow(id=f"asset-{len(self.assets) + 1:04d}", cast_id=cast_id,
                     object_path=object_path, public_url=public_url)
        )

    def list_assets(self) -> list[AssetRow]:
        return list(self.assets)

    def referenced_photo_urls(self) -> set[str]:
        urls: set[str] = set()
        for cast in self.casts.values():
            if cast.get("photo"):
                urls.add(cast["photo"])
            urls.update(cast.get("photos") or [])
        return urls

    def delete_asset(self, asset_id: str) -> None:
        self.assets = [a for a in self.assets if a.id != asset_id]

    @contextmanager
    def savepoint(self, name: str = "rec"):
        snapshot = (copy.deepcopy(self.casts), list(self.shifts), list(self.assets))
        try:
            yield
        except Exception:
            self.casts, self.shifts, self.assets = snapshot
            raise

    def commit(self) -> None:
        self.commits += 1

    def rollback(self) -> None:
        self.rollbacks += 1

    def close(self) -> None:
        self.closed = True


class FakeFetcher:
    """Serves canned pages and image bytes; anything else is a TransportError."""

    def __init__(self, pages: dict | None = None, assets: dict | None = None) -> None:
        self.pages = dict(pages or {})
        self.assets = dict(assets or {})
        self.requested: list[str] = []
        self.closed = False

    def fetch_text(self, url: str, headers=None) -> str:
        self.requested.append(url)
        page = self.pages.get(url)
        if page is None:
            raise TransportError(url, "unexpected status 404", status=404)
        if isinstance(page, Exception):
            raise page
        return page

    def fetch_bytes(self, url: str, headers=None) -> FetchedAsset:
        self.requested.append(url)
        asset = self.assets.get(url)
        if asset is None:
            raise TransportError(url, "unexpected status 404", status=404)
        content, content_type = asset
        return FetchedAsset(url=url, content=content, content_type=content_type)

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def fake_store() -> FakeCastStore:
    return FakeCastStore()


@pytest.fixture
def make_fetcher():
    return FakeFetcher


@pytest.fixture
def settings() -> Settings:
    return Settings(
        db_dsn="postgresql://unused",
        shop_base_url="https://estama.jp/shop/43923",
        page_delay_seconds=0,
        detail_delay_seconds=0,
    )


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def pacer(sleeps) -> Pacer:
    return Pacer(delay=0.5, sleeper=sleeps.append)


@pytest.fixture
def jpeg_bytes() -> bytes:
    return JPEG_BYTES


@pytest.fixture
def png_bytes() -> bytes:
    return PNG_BYTES
