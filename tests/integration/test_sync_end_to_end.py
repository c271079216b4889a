"""End-to-end shift and profile sync against PostgreSQL with canned portal pages."""

from __future__ import annotations

from datetime import date

import psycopg

from salon_sync.asset_mirror import LocalAssetStore
from salon_sync.config import Settings
from salon_sync.errors import TransportError
from salon_sync.fetch import FetchedAsset, Pacer
from salon_sync.profile_sync import run_profile_sync
from salon_sync.schedule_sync import run_schedule_sync
from salon_sync.selector_map import default_selector_map
from salon_sync.shared import SyncCounters
from salon_sync.store import PgCastStore, store_session

TODAY = date(2025, 3, 1)
JPEG = b"\xff\xd8\xff\xe0" + b"\x00" * 16

SETTINGS = Settings(page_delay_seconds=0, detail_delay_seconds=0)

CAST_LIST = """
<div class="cast_box">
  <a href="/shop/43923/cast/101/"><img src="/img/101.jpg"></a>
  <h3>花子(25)</h3><span class="badge">新人</span>
  <p class="size">T.160 B.88(D) W.58 H.86</p>
</div>
<div class="cast_box">
  <a href="/shop/43923/cast/102/"><img src="/img/102.jpg"></a>
  <h3>ゆき(22)</h3>
</div>
"""

DETAIL_101 = """
<table><tr><th>エステ歴</th><td>2年</td></tr><tr><th>趣味</th><td>カフェ巡り</td></tr></table>
<div class="message"><p>よろしくね</p></div>
<a href="https://x.com/hanako_spa">X</a>
"""


class CannedFetcher:
    def __init__(self, pages, assets):
        self.pages = pages
        self.assets = assets

    def fetch_text(self, url, headers=None):
        if url not in self.pages:
            raise TransportError(url, "unexpected status 404", status=404)
        return self.pages[url]

    def fetch_bytes(self, url, headers=None):
        if url not in self.assets:
            raise TransportError(url, "unexpected status 404", status=404)
        return FetchedAsset(url=url, content=self.assets[url], content_type="image/jpeg")

    def close(self):
        pass


def _schedule_page(*rows):
    return "<table>" + "".join(
        f"<tr><td><h4>{n}</h4></td><td>{t}</td></tr>" for n, t in rows
    ) + "</table>"


def test_profile_then_schedule_sync(db_conn, tmp_path):
    conn, dsn = db_conn
    fetcher = CannedFetcher(
        pages={
            SETTINGS.cast_list_url: CAST_LIST,
            "https://estama.jp/shop/43923/cast/101/": DETAIL_101,
            SETTINGS.schedule_url("2025-03-01"): _schedule_page(("花子(25)", "12:00 - 24:00"), ("不明", "○")),
            SETTINGS.schedule_url("2025-03-02"): _schedule_page(("ゆき", "○")),
        },
        assets={"https://estama.jp/img/101.jpg": JPEG},
    )
    selectors = default_selector_map()
    asset_store = LocalAssetStore(base_dir=tmp_path, base_url="https://cdn.example")

    counters = SyncCounters()
    with store_session(PgCastStore(conn)) as store:
        result = run_profile_sync(
            store, fetcher, asset_store, SETTINGS, selectors, counters, Pacer(delay=0)
        )
    assert (result.synced, len(result.errors), result.total) == (2, 0, 2)
    assert counters.detail_pages_failed == 1

    with psycopg.connect(dsn) as check:
        hana = check.execute(
            "SELECT external_id, age, tags, height, cup_size, experience_years, hobbies, "
            "profile, x_account, photo, photos, type FROM casts WHERE name = '花子'"
        ).fetchone()
        yuki = check.execute("SELECT photo, photos, body_type FROM casts WHERE name = 'ゆき'").fetchone()
        assets = check.execute("SELECT count(*) FROM mirrored_asset").fetchone()[0]

    assert hana[:9] == ("101", 25, ["新人"], 160, "D", 2, "カフェ巡り", "よろしくね", "hanako_spa")
    assert hana[9].startswith("https://cdn.example/cast-photos/101_")
    assert hana[10] == [hana[9]]
    assert hana[11] == "therapist"
    # photo download failed: remote URL kept, no photos array written
    assert yuki == ("https://estama.jp/img/102.jpg", None, None)
    assert assets == 1

    counters = SyncCounters()
    with store_session(PgCastStore(psycopg.connect(dsn, autocommit=False))) as store:
        sched = run_schedule_sync(
            store, fetcher, SETTINGS, selectors, counters, Pacer(delay=0), today=TODAY, days=2
        )
    assert sched.shifts_processed == 2
    assert counters.shifts_unmatched == 1

    with psycopg.connect(dsn) as check:
        rows = check.execute(
            "SELECT c.name, s.shift_date, s.start_time, s.end_time "
            "FROM shifts s JOIN casts c ON c.id = s.cast_id ORDER BY s.shift_date"
        ).fetchall()
    assert rows == [
        ("花子", date(2025, 3, 1), "12:00", "24:00"),
        ("ゆき", date(2025, 3, 2), "12:00", "26:00"),
    ]


def test_profile_resync_is_idempotent(db_conn, tmp_path):
    conn, dsn = db_conn
    fetcher = CannedFetcher(pages={SETTINGS.cast_list_url: CAST_LIST}, assets={})
    selectors = default_selector_map()
    asset_store = LocalAssetStore(base_dir=tmp_path)

    store = PgCastStore(conn)
    first = run_profile_sync(store, fetcher, asset_store, SETTINGS, selectors, SyncCounters(), Pacer(delay=0))
    second = run_profile_sync(store, fetcher, asset_store, SETTINGS, selectors, SyncCounters(), Pacer(delay=0))
    store.commit()

    assert {r["action"] for r in first.sync_results} == {"created"}
    assert {r["action"] for r in second.sync_results} == {"updated"}
    assert conn.execute("SELECT count(*) FROM casts").fetchone()[0] == 2


def test_dry_run_writes_nothing(db_conn, tmp_path):
    conn, dsn = db_conn
    fetcher = CannedFetcher(pages={SETTINGS.cast_list_url: CAST_LIST}, assets={})
    with store_session(PgCastStore(conn), dry_run=True) as store:
        run_profile_sync(
            store, fetcher, LocalAssetStore(base_dir=tmp_path), SETTINGS,
            default_selector_map(), SyncCounters(), Pacer(delay=0),
        )
    with psycopg.connect(dsn) as check:
        assert check.execute("SELECT count(*) FROM casts").fetchone()[0] == 0
