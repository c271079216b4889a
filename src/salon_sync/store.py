"""salon_sync.store

Persistence adapter for the casts / shifts / mirrored_asset tables.

The orchestrators talk to a CastStore; PgCastStore is the psycopg-backed
implementation. The connection runs with autocommit=False: one outer
transaction per invocation, a SAVEPOINT per profile record for failure
isolation, and commit() / rollback() decided by the caller (dry-run rolls
everything back).

Usage:
    store = PgCastStore.connect(settings.require_dsn())
    try:
        ...
        store.commit()
    finally:
        store.close()
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date
from typing import Any, Iterator, Protocol

import psycopg

from salon_sync.reconcile import CastRow
from salon_sync.shared import SYSTEM_USER_ID

log = logging.getLogger(__name__)

# Columns the pipeline may write on casts. update/insert SQL is built from
# this whitelist only, never from caller-supplied identifiers.
CAST_COLUMNS = (
    "name",
    "type",
    "status",
    "photo",
    "photos",
    "external_id",
    "age",
    "tags",
    "height",
    "bust",
    "cup_size",
    "waist",
    "hip",
    "body_type",
    "experience_years",
    "specialties",
    "blood_type",
    "favorite_food",
    "ideal_type",
    "celebrity_lookalike",
    "day_off_activities",
    "hobbies",
    "profile",
    "x_account",
)

# Serializes concurrent replace-window runs (arbitrary constant key).
SHIFT_REPLACE_LOCK_KEY = 4392301


@dataclass
class ShiftRow:
    cast_id: str
    shift_date: date
    start_time: str
    end_time: str
    status: str = "scheduled"
    room: str | None = None
    created_by: str = SYSTEM_USER_ID


@dataclass
class AssetRow:
    id: str
    cast_id: str | None
    object_path: str
    public_url: str


class CastStore(Protocol):
    def list_casts(self) -> list[CastRow]: ...

    def insert_cast(self, fields: dict[str, Any]) -> str: ...

    def update_cast(self, cast_id: str, fields: dict[str, Any]) -> None: ...

    def replace_shifts(self, start_date: date, rows: list[ShiftRow]) -> tuple[int, int]: ...

    def record_asset(self, cast_id: str | None, object_path: str, public_url: str) -> None: ...

    def list_assets(self) -> list[AssetRow]: ...

    def referenced_photo_urls(self) -> set[str]: ...

    def delete_asset(self, asset_id: str) -> None: ...

    def savepoint(self, name: str = "rec") -> Any: ...

    def commit(self) -> None: ...

    def rollback(self) -> None: ...

    def close(self) -> None: ...


@contextmanager
def store_session(store, dry_run: bool = False) -> Iterator[Any]:
    """Commit on success (rollback in dry_run), rollback on error, always close."""
    try:
        yield store
        if dry_run:
            store.rollback()
        else:
            store.commit()
    except Exception:
        store.rollback()
        raise
    finally:
        store.close()


def _check_columns(fields: dict[str, Any]) -> list[str]:
    unknown = sorted(set(fields) - set(CAST_COLUMNS))
    if unknown:
        raise ValueError(f"unknown cast columns: {unknown}")
    return [c for c in CAST_COLUMNS if c in fields]


class PgCastStore:
    """CastStore over a psycopg connection (autocommit must be off)."""

    def __init__(self, conn: psycopg.Connection) -> None:
        self.conn = conn

    @classmethod
    def connect(cls, dsn: str) -> "PgCastStore":
        return cls(psycopg.connect(dsn, autocommit=False))

    # ------------------------------------------------------------------ #
    # casts                                                                #
    # ------------------------------------------------------------------ #

    def list_casts(self) -> list[CastRow]:
        rows = self.conn.execute(
            "SELECT id, name FROM casts WHERE name IS NOT NULL ORDER BY id"
        ).fetchall()
        return [CastRow(id=str(r[0]), name=r[1]) for r in rows]

    def insert_cast(self, fields: dict[str, Any]) -> str:
        cols = _check_columns(fields)
        placeholders = ", ".join(["%s"] * len(cols))
        row = self.conn.execute(
            f"INSERT INTO casts ({', '.join(cols)}) VALUES ({placeholders}) RETURNING id",
            [fields[c] for c in cols],
        ).fetchone()
        return str(row[0])

    def update_cast(self, cast_id: str, fields: dict[str, Any]) -> None:
        cols = _check_columns(fields)
        if not cols:
            return
        assignments = ", ".join(f"{c} = %s" for c in cols)
        self.conn.execute(
            f"UPDATE casts SET {assignments}, updated_at = now() WHERE id = %s",
            [*(fields[c] for c in cols), cast_id],
        )

    # ------------------------------------------------------------------ #
    # shifts                                                               #
    # ------------------------------------------------------------------ #

    def replace_shifts(self, start_date: date, rows: list[ShiftRow]) -> tuple[int, int]:
        """Delete shifts dated >= start_date and insert rows, atomically.

        The advisory lock is transaction-scoped: a concurrent run blocks here
        until this transaction commits or rolls back.
        """
        self.conn.execute("SELECT pg_advisory_xact_lock(%s)", (SHIFT_REPLACE_LOCK_KEY,))
        cur = self.conn.execute("DELETE FROM shifts WHERE shift_date >= %s", (start_date,))
        deleted = cur.rowcount
        if rows:
            with self.conn.cursor() as c:
                c.executemany(
                    """
                    INSERT INTO shifts
                        (cast_id, shift_date, start_time, end_time, status, room, created_by)
                    VALUES (%s, %s, %s, %s, %s, %s, %s)
                    """,
                    [
                        (r.cast_id, r.shift_date, r.start_time, r.end_time,
                         r.status, r.room, r.created_by)
                        for r in rows
                    ],
                )
        log.info("Replaced shift window from %s: deleted=%d inserted=%d",
                 start_date, deleted, len(rows))
        return deleted, len(rows)

    # ------------------------------------------------------------------ #
    # mirrored assets                                                      #
    # ------------------------------------------------------------------ #

    def record_asset(self, cast_id: str | None, object_path: str, public_url: str) -> None:
        self.conn.execute(
            """
            INSERT INTO mirrored_asset (cast_id, object_path, public_url)
            VALUES (%s, %s, %s)
            ON CONFLICT (object_path) DO UPDATE
                SET cast_id = EXCLUDED.cast_id, public_url = EXCLUDED.public_url
            """,
            (cast_id, object_path, public_url),
        )

    def list_assets(self) -> list[AssetRow]:
        rows = self.conn.execute(
            "SELECT id, cast_id, object_path, public_url FROM mirrored_asset ORDER BY created_at, id"
        ).fetchall()
        return [
            AssetRow(
                id=str(r[0]),
                cast_id=str(r[1]) if r[1] is not None else None,
                object_path=r[2],
                public_url=r[3],
            )
            for r in rows
        ]

    def referenced_photo_urls(self) -> set[str]:
        rows = self.conn.execute(
            """
            SELECT photo FROM casts WHERE photo IS NOT NULL
            UNION
            SELECT unnest(photos) FROM casts WHERE photos IS NOT NULL
            """
        ).fetchall()
        return {r[0] for r in rows if r[0]}

    def delete_asset(self, asset_id: str) -> None:
        self.conn.execute("DELETE FROM mirrored_asset WHERE id = %s", (asset_id,))

    # ------------------------------------------------------------------ #
    # transaction control                                                  #
    # ------------------------------------------------------------------ #

    @contextmanager
    def savepoint(self, name: str = "rec") -> Iterator[None]:
        """Roll back only this block's writes if it raises; re-raise."""
        self.conn.execute(f"SAVEPOINT {name}")
        try:
            yield
        except Exception:
            self.conn.execute(f"ROLLBACK TO SAVEPOINT {name}")
            raise
        self.conn.execute(f"RELEASE SAVEPOINT {name}")

    def commit(self) -> None:
        self.conn.commit()

    def rollback(self) -> None:
        self.conn.rollback()

    def close(self) -> None:
        self.conn.close()
