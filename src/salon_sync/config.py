"""salon_sync.config

Environment-driven settings. Secrets (the database DSN) are only ever read
from the environment, never from CLI arguments or request bodies.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

from salon_sync.errors import ConfigError

DEFAULT_SHOP_BASE_URL = "https://estama.jp/shop/43923"
DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
)


@dataclass
class Settings:
    db_dsn: str | None = None
    shop_base_url: str = DEFAULT_SHOP_BASE_URL
    schedule_url_template: str = "{base}/schedule/?date={date}"
    cast_list_path: str = "/cast/"
    user_agent: str = DEFAULT_USER_AGENT
    schedule_days: int = 7
    page_delay_seconds: float = 1.0
    detail_delay_seconds: float = 0.5
    http_timeout: int = 30
    asset_bucket: str | None = None
    asset_prefix: str = "cast-photos"
    asset_local_dir: Path | None = None
    asset_base_url: str | None = None
    selector_file: Path | None = None
    new_cast_type: str = "therapist"
    new_cast_status: str = "active"

    @property
    def cast_list_url(self) -> str:
        return self.shop_base_url.rstrip("/") + self.cast_list_path

    def schedule_url(self, day: str) -> str:
        return self.schedule_url_template.format(
            base=self.shop_base_url.rstrip("/"), date=day
        )

    def require_dsn(self) -> str:
        if not self.db_dsn:
            raise ConfigError("SALON_DB_DSN is not set")
        return self.db_dsn

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "Settings":
        env = os.environ if environ is None else environ

        def _get(name: str) -> str | None:
            v = env.get(name)
            v = v.strip() if v else None
            return v or None

        def _num(name: str, default, cast):
            raw = _get(name)
            if raw is None:
                return default
            try:
                return cast(raw)
            except ValueError as exc:
                raise ConfigError(f"{name} must be a number, got {raw!r}") from exc

        settings = cls(
            db_dsn=_get("SALON_DB_DSN"),
            shop_base_url=_get("SALON_SHOP_BASE_URL") or DEFAULT_SHOP_BASE_URL,
            user_agent=_get("SALON_USER_AGENT") or DEFAULT_USER_AGENT,
            schedule_days=_num("SALON_SCHEDULE_DAYS", 7, int),
            page_delay_seconds=_num("SALON_PAGE_DELAY_SECONDS", 1.0, float),
            detail_delay_seconds=_num("SALON_DETAIL_DELAY_SECONDS", 0.5, float),
            http_timeout=_num("SALON_HTTP_TIMEOUT", 30, int),
            asset_bucket=_get("SALON_ASSET_BUCKET"),
            asset_prefix=_get("SALON_ASSET_PREFIX") or "cast-photos",
            asset_base_url=_get("SALON_ASSET_BASE_URL"),
        )
        template = _get("SALON_SCHEDULE_URL_TEMPLATE")
        if template:
            settings.schedule_url_template = template
        local_dir = _get("SALON_ASSET_LOCAL_DIR")
        if local_dir:
            settings.asset_local_dir = Path(local_dir)
        selector_file = _get("SALON_SELECTOR_FILE")
        if selector_file:
            settings.selector_file = Path(selector_file)
        if settings.schedule_days < 1:
            raise ConfigError("SALON_SCHEDULE_DAYS must be >= 1")
        return settings
