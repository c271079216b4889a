"""Normalization functions for scraped schedule and therapist markup.

All functions are pure. Text helpers accept str | None and return the
appropriate type or None; absence is never turned into a default value,
except for the structural shift-window fallbacks.
"""

from __future__ import annotations

import re
import unicodedata
import urllib.parse
from dataclasses import dataclass

DEFAULT_START_TIME = "12:00"
DEFAULT_END_TIME = "26:00"
MAX_PHOTOS = 5


# ---------------------------------------------------------------------------
# Rule 1: trim
# ---------------------------------------------------------------------------

def trim(value: str | None) -> str | None:
    """Strip leading/trailing whitespace; treat empty string as None."""
    if value is None:
        return None
    v = value.strip()
    return v if v else None


# ---------------------------------------------------------------------------
# Rule 2: normalize_space
# ---------------------------------------------------------------------------

def normalize_space(value: str | None) -> str | None:
    """Collapse internal runs of whitespace (incl. full-width) to single spaces, then trim."""
    v = trim(value)
    if v is None:
        return None
    return re.sub(r"[\s　]+", " ", v).strip() or None


# ---------------------------------------------------------------------------
# Rule 3: name_key  (for cast reconciliation)
# ---------------------------------------------------------------------------

def name_key(value: str | None) -> str | None:
    """Case-insensitive exact-match key for a cast name.

    NFKC folds full-width latin letters and digits to ASCII so that
    "ＨＡＮＡ" and "hana" compare equal; no other fuzziness is applied.
    """
    v = normalize_space(value)
    if v is None:
        return None
    return unicodedata.normalize("NFKC", v).casefold()


# ---------------------------------------------------------------------------
# Rule 4: name / age splitting
# ---------------------------------------------------------------------------

_AGE_SUFFIX_RE = re.compile(r"\s*[（(]\s*\d+\s*[)）]\s*$")
_NAME_AGE_RE = re.compile(r"^\s*(?P<name>.+?)\s*[（(]\s*(?P<age>\d{1,3})\s*[)）]")


def strip_age_suffix(value: str | None) -> str | None:
    """Drop a trailing "(25)" / "（25）" annotation from a heading."""
    v = normalize_space(value)
    if v is None:
        return None
    return trim(_AGE_SUFFIX_RE.sub("", v))


def split_name_age(
    value: str | None,
    pattern: re.Pattern[str] | None = None,
) -> tuple[str, int] | None:
    """Parse "花子(25)" → ("花子", 25). Returns None if the suffix is missing."""
    v = normalize_space(value)
    if v is None:
        return None
    m = (pattern or _NAME_AGE_RE).search(v)
    if not m:
        return None
    name = trim(m.group("name"))
    if not name:
        return None
    return name, int(m.group("age"))


# ---------------------------------------------------------------------------
# Rule 5: shift time window
# ---------------------------------------------------------------------------

_TIME_RE = re.compile(r"(?<!\d)(\d{1,2}):(\d{2})(?!\d)")


def extract_times(text: str | None) -> list[str]:
    """Return every HH:MM substring in order, zero-padded ("9:00" → "09:00")."""
    v = trim(text)
    if v is None:
        return []
    v = unicodedata.normalize("NFKC", v)
    return [f"{int(h):02d}:{m}" for h, m in _TIME_RE.findall(v)]


def resolve_shift_window(
    text: str | None,
    presence_markers: tuple[str, ...] | list[str] = ("○", "◯", "〇"),
    default_start: str = DEFAULT_START_TIME,
    default_end: str = DEFAULT_END_TIME,
) -> tuple[str, str] | None:
    """Apply the tiered fallback to a schedule cell.

    - two or more times → (first, second)
    - exactly one       → (time, default_end)
    - none + marker     → (default_start, default_end)
    - otherwise         → None (no time signal)
    """
    times = extract_times(text)
    if len(times) >= 2:
        return times[0], times[1]
    if len(times) == 1:
        return times[0], default_end
    v = text or ""
    if any(marker in v for marker in presence_markers):
        return default_start, default_end
    return None


# ---------------------------------------------------------------------------
# Rule 6: body metrics  ("T.160 B.88(D) W.58 H.86")
# ---------------------------------------------------------------------------

@dataclass
class BodyMetrics:
    height: int | None = None
    bust: int | None = None
    cup_size: str | None = None
    waist: int | None = None
    hip: int | None = None

    def is_empty(self) -> bool:
        return all(
            v is None
            for v in (self.height, self.bust, self.cup_size, self.waist, self.hip)
        )


_HEIGHT_RE = re.compile(r"T\s*[.．]?\s*(\d{2,3})", re.I)
_BUST_RE = re.compile(r"B\s*[.．]?\s*(\d{2,3})\s*(?:[（(]\s*([A-Z])\s*[)）])?", re.I)
_WAIST_RE = re.compile(r"W\s*[.．]?\s*(\d{2,3})", re.I)
_HIP_RE = re.compile(r"H\s*[.．]?\s*(\d{2,3})", re.I)


def parse_body_metrics(text: str | None) -> BodyMetrics:
    """Parse each metric independently; a missing part stays None, never 0."""
    metrics = BodyMetrics()
    v = normalize_space(text)
    if v is None:
        return metrics
    v = unicodedata.normalize("NFKC", v)
    m = _HEIGHT_RE.search(v)
    if m:
        metrics.height = int(m.group(1))
    m = _BUST_RE.search(v)
    if m:
        metrics.bust = int(m.group(1))
        if m.group(2):
            metrics.cup_size = m.group(2).upper()
    m = _WAIST_RE.search(v)
    if m:
        metrics.waist = int(m.group(1))
    m = _HIP_RE.search(v)
    if m:
        metrics.hip = int(m.group(1))
    return metrics


# ---------------------------------------------------------------------------
# Rule 7: embedded numbers
# ---------------------------------------------------------------------------

def extract_int(value: str | None) -> int | None:
    """Return the first run of digits in value ("約3年" → 3), or None."""
    v = trim(value)
    if v is None:
        return None
    m = re.search(r"\d+", unicodedata.normalize("NFKC", v))
    return int(m.group(0)) if m else None


# ---------------------------------------------------------------------------
# URL helpers
# ---------------------------------------------------------------------------

_X_HOSTS = {"x.com", "www.x.com", "twitter.com", "www.twitter.com", "mobile.twitter.com"}
_X_RESERVED = {"intent", "share", "home", "i", "search", "hashtag"}


def parse_x_handle(url: str | None) -> str | None:
    """Extract "hana_123" from "https://x.com/hana_123?ref=..." style links."""
    v = trim(url)
    if not v:
        return None
    parsed = urllib.parse.urlparse(v)
    if parsed.netloc.lower() not in _X_HOSTS:
        return None
    segments = [s for s in parsed.path.split("/") if s]
    if not segments:
        return None
    handle = segments[0].lstrip("@")
    if handle.lower() in _X_RESERVED or not re.fullmatch(r"\w{1,15}", handle):
        return None
    return handle


def extract_external_id(url: str | None, pattern: re.Pattern[str]) -> str | None:
    """Return the first group of pattern in url (e.g. /cast/12345 → "12345")."""
    v = trim(url)
    if not v:
        return None
    m = pattern.search(v)
    return m.group(1) if m else None


def dedupe_preserving_order(values: list[str | None]) -> list[str]:
    seen: set[str] = set()
    out: list[str] = []
    for value in values:
        v = trim(value)
        if v and v not in seen:
            seen.add(v)
            out.append(v)
    return out


def cap_photo_urls(urls: list[str | None], limit: int = MAX_PHOTOS) -> list[str]:
    """De-duplicate, keep source order, truncate to the photo cap."""
    return dedupe_preserving_order(urls)[:limit]


# ---------------------------------------------------------------------------
# Image type detection
# ---------------------------------------------------------------------------

_SIGNATURES: tuple[tuple[bytes, str], ...] = (
    (b"\xff\xd8\xff", "image/jpeg"),
    (b"\x89PNG\r\n\x1a\n", "image/png"),
    (b"GIF87a", "image/gif"),
    (b"GIF89a", "image/gif"),
)

EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
}


def sniff_image_type(content: bytes) -> str | None:
    """Content type from the leading byte signature, or None if unrecognized."""
    for magic, mime in _SIGNATURES:
        if content.startswith(magic):
            return mime
    if len(content) >= 12 and content[:4] == b"RIFF" and content[8:12] == b"WEBP":
        return "image/webp"
    return None


def guess_type_from_url(url: str) -> str:
    """Suffix heuristic: .jpg/.jpeg → jpeg, .png → png, anything else → webp."""
    path = urllib.parse.urlparse(url).path.lower()
    if path.endswith((".jpg", ".jpeg")):
        return "image/jpeg"
    if path.endswith(".png"):
        return "image/png"
    return "image/webp"


def resolve_image_type(content: bytes, header_type: str | None, url: str) -> str:
    """Byte signature first, then a recognized Content-Type header, then the URL suffix."""
    sniffed = sniff_image_type(content)
    if sniffed:
        return sniffed
    header = (trim(header_type) or "").split(";")[0].strip().lower()
    if header == "image/jpg":
        header = "image/jpeg"
    if header in EXTENSIONS:
        return header
    return guess_type_from_url(url)
