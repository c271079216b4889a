"""salon_sync.fetch

HTML/asset fetcher for the external booking portal.

Design principles:
  - One in-flight request at a time; no retries at this layer.
  - Explicit desktop-browser User-Agent (the portal rejects default clients).
  - No caching: every sync performs fresh fetches.
  - Callers own pacing: Pacer.sleep() after each page / detail-page unit.
"""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass, field
from typing import Callable

import requests

from salon_sync.config import DEFAULT_USER_AGENT
from salon_sync.errors import TransportError

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Pacer
# ---------------------------------------------------------------------------

@dataclass
class Pacer:
    """Fixed cooperative delay between rate-limited units of work.

    This is self-throttling only; it does not react to observed failures.
    """

    delay: float = 1.0
    jitter: float = 0.0
    sleeper: Callable[[float], None] = field(default=time.sleep, repr=False)

    def sleep(self) -> None:
        delay = self.delay
        if self.jitter:
            delay += random.uniform(-self.jitter, self.jitter)
        if delay > 0:
            self.sleeper(delay)


# ---------------------------------------------------------------------------
# Fetcher
# ---------------------------------------------------------------------------

@dataclass
class FetchedAsset:
    url: str
    content: bytes
    content_type: str | None


class Fetcher:
    """Thin GET wrapper around a requests.Session with a browser User-Agent."""

    def __init__(
        self,
        user_agent: str = DEFAULT_USER_AGENT,
        timeout: int = 30,
        session: requests.Session | None = None,
    ) -> None:
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            "User-Agent": user_agent,
            "Accept-Language": "ja,en;q=0.8",
        })

    def _get(self, url: str, headers: dict[str, str] | None = None) -> requests.Response:
        try:
            resp = self.session.get(url, headers=headers, timeout=self.timeout)
        except requests.RequestException as exc:
            raise TransportError(url, f"network error: {exc}") from exc
        if not 200 <= resp.status_code < 300:
            raise TransportError(
                url, f"unexpected status {resp.status_code}", status=resp.status_code
            )
        return resp

    def fetch_text(self, url: str, headers: dict[str, str] | None = None) -> str:
        """GET url and return decoded markup. Raises TransportError."""
        resp = self._get(url, headers)
        # The portal omits charset on some pages; requests would fall back to latin-1.
        if not resp.encoding or resp.encoding.lower() == "iso-8859-1":
            resp.encoding = resp.apparent_encoding or "utf-8"
        log.debug("Fetched %s (%d chars)", url, len(resp.text))
        return resp.text

    def fetch_bytes(self, url: str, headers: dict[str, str] | None = None) -> FetchedAsset:
        """GET url as binary. Raises TransportError."""
        resp = self._get(url, headers)
        return FetchedAsset(
            url=url,
            content=resp.content,
            content_type=resp.headers.get("Content-Type"),
        )

    def close(self) -> None:
        self.session.close()
