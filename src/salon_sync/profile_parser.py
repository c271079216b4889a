"""salon_sync.profile_parser

Therapist profile extraction from the portal's cast list and cast detail pages.

Two layers:
  1. parse_cast_list_html   : one block per therapist: photo, "name(age)"
                              heading, detail link + numeric id, badges,
                              and the "T.160 B.88(D) W.58 H.86" metrics line.
  2. parse_cast_detail_html : label/value table mapped through the selector
                              map's label vocabulary, message paragraphs,
                              X/Twitter handle, and extra gallery photos.

Blocks lacking a photo, the name/age pattern, or an id are skipped and
reported as SkippedBlock; unknown detail labels are ignored.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any
from urllib.parse import urljoin

from bs4 import BeautifulSoup, Tag

from salon_sync.normalize import (
    MAX_PHOTOS,
    cap_photo_urls,
    dedupe_preserving_order,
    extract_external_id,
    extract_int,
    normalize_space,
    parse_body_metrics,
    parse_x_handle,
    split_name_age,
    trim,
)
from salon_sync.selector_map import (
    NUMERIC_DETAIL_FIELDS,
    CastDetailSelectors,
    CastListSelectors,
    SelectorMap,
    default_selector_map,
)
from salon_sync.shared import SkippedBlock

# Optional attributes that are omitted (not blanked) when absent.
OPTIONAL_PROFILE_FIELDS = (
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
    "message",
    "x_account",
)


# ---------------------------------------------------------------------------
# Staging dataclasses
# ---------------------------------------------------------------------------

@dataclass
class ExternalTherapistProfile:
    name: str
    external_id: str
    age: int
    photo_url: str
    photo_urls: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    detail_url: str | None = None
    photo_alt: str | None = None
    height: int | None = None
    bust: int | None = None
    cup_size: str | None = None
    waist: int | None = None
    hip: int | None = None
    body_type: str | None = None
    experience_years: int | None = None
    specialties: str | None = None
    blood_type: str | None = None
    favorite_food: str | None = None
    ideal_type: str | None = None
    celebrity_lookalike: str | None = None
    day_off_activities: str | None = None
    hobbies: str | None = None
    message: str | None = None
    x_account: str | None = None

    def present_fields(self) -> dict[str, Any]:
        """Optional attributes that actually carry a value."""
        return {
            k: getattr(self, k)
            for k in OPTIONAL_PROFILE_FIELDS
            if getattr(self, k) is not None
        }

    def to_dict(self) -> dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


@dataclass
class CastDetail:
    fields: dict[str, Any] = field(default_factory=dict)
    message: str | None = None
    x_account: str | None = None
    photo_urls: list[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _image_src(img: Tag | None) -> str | None:
    if img is None:
        return None
    # Lazy-loaded images keep the real URL in a data attribute.
    for attr in ("data-src", "data-original", "src"):
        v = trim(img.get(attr))
        if v and not v.startswith("data:"):
            return v
    return None


def _absolute(base_url: str, href: str | None) -> str | None:
    v = trim(href)
    return urljoin(base_url, v) if v else None


def _text(el: Tag | None) -> str | None:
    if el is None:
        return None
    return normalize_space(el.get_text(" ", strip=True))


def _snippet(block: Tag) -> str:
    return normalize_space(block.get_text(" ", strip=True)) or ""


# ---------------------------------------------------------------------------
# Cast list page
# ---------------------------------------------------------------------------

def parse_cast_block(
    block: Tag,
    base_url: str,
    sel: CastListSelectors,
) -> ExternalTherapistProfile | SkippedBlock:
    """Parse one profile block, or explain why it was skipped."""
    img = block.select_one(sel.image)
    photo = _absolute(base_url, _image_src(img))
    if not photo:
        return SkippedBlock("cast_block", "missing_photo", _snippet(block), base_url)

    heading = _text(block.select_one(sel.heading))
    name_age = split_name_age(heading, sel.name_age_pattern)
    if name_age is None:
        return SkippedBlock("cast_block", "missing_name_age", _snippet(block), base_url)
    name, age = name_age

    link = block.select_one(sel.link)
    if link is None and block.name == "a":
        link = block
    href = link.get("href") if link is not None else None
    external_id = extract_external_id(href, sel.id_pattern)
    if not external_id:
        return SkippedBlock("cast_block", "missing_id", _snippet(block), base_url)

    tags: list[str] = []
    if sel.tags:
        tags = dedupe_preserving_order([_text(t) for t in block.select(sel.tags)])

    gallery: list[str | None] = []
    if sel.gallery:
        gallery = [_absolute(base_url, _image_src(g)) for g in block.select(sel.gallery)]

    profile = ExternalTherapistProfile(
        name=name,
        external_id=external_id,
        age=age,
        photo_url=photo,
        photo_urls=cap_photo_urls([photo, *gallery]),
        tags=tags,
        detail_url=_absolute(base_url, href),
        photo_alt=trim(img.get("alt")) if img is not None else None,
    )

    if sel.metrics:
        metrics = parse_body_metrics(_text(block.select_one(sel.metrics)))
        profile.height = metrics.height
        profile.bust = metrics.bust
        profile.cup_size = metrics.cup_size
        profile.waist = metrics.waist
        profile.hip = metrics.hip

    return profile


def parse_cast_list_html(
    html: str,
    base_url: str,
    selectors: SelectorMap | None = None,
) -> tuple[list[ExternalTherapistProfile], list[SkippedBlock]]:
    """Extract therapist profiles from the cast list page.

    Profiles sharing an external id are kept once (first occurrence).
    """
    sel = (selectors or default_selector_map()).cast_list
    soup = BeautifulSoup(html, "html.parser")
    profiles: list[ExternalTherapistProfile] = []
    skipped: list[SkippedBlock] = []
    seen_ids: set[str] = set()

    for block in soup.select(sel.block):
        result = parse_cast_block(block, base_url, sel)
        if isinstance(result, SkippedBlock):
            skipped.append(result)
            continue
        if result.external_id in seen_ids:
            continue
        seen_ids.add(result.external_id)
        profiles.append(result)

    return profiles, skipped


# ---------------------------------------------------------------------------
# Cast detail page
# ---------------------------------------------------------------------------

def _label_value_pairs(soup: BeautifulSoup, field_rows: str) -> list[tuple[str, str]]:
    pairs: list[tuple[str, str]] = []
    for el in soup.select(field_rows):
        if el.name == "dl":
            for dt in el.find_all("dt"):
                dd = dt.find_next_sibling("dd")
                label, value = _text(dt), _text(dd)
                if label and value:
                    pairs.append((label, value))
            continue
        cells = el.find_all(["th", "td"])
        if len(cells) < 2:
            continue
        label = _text(cells[0])
        value = _text(cells[-1])
        if label and value:
            pairs.append((label, value))
    return pairs


def _clean_label(label: str) -> str:
    return label.rstrip(":：").strip()


def parse_cast_detail_html(
    html: str,
    base_url: str,
    selectors: SelectorMap | None = None,
) -> CastDetail:
    """Extract the open-ended label/value table and free text from a detail page."""
    sel: CastDetailSelectors = (selectors or default_selector_map()).cast_detail
    soup = BeautifulSoup(html, "html.parser")
    detail = CastDetail()

    for raw_label, raw_value in _label_value_pairs(soup, sel.field_rows):
        attr = sel.labels.get(_clean_label(raw_label))
        if attr is None or attr in detail.fields:
            continue
        if attr in NUMERIC_DETAIL_FIELDS:
            value = extract_int(raw_value)
        elif attr == "cup_size":
            value = trim(raw_value.replace("カップ", "").upper())
        else:
            value = normalize_space(raw_value)
        if value is not None:
            detail.fields[attr] = value

    if sel.message:
        paragraphs = [_text(p) for p in soup.select(sel.message)]
        message = "\n".join(p for p in paragraphs if p)
        detail.message = message or None

    if sel.social_link:
        for a in soup.select(sel.social_link):
            handle = parse_x_handle(a.get("href"))
            if handle:
                detail.x_account = handle
                break

    if sel.gallery:
        detail.photo_urls = cap_photo_urls(
            [_absolute(base_url, _image_src(img)) for img in soup.select(sel.gallery)]
        )

    return detail


def apply_detail(profile: ExternalTherapistProfile, detail: CastDetail) -> ExternalTherapistProfile:
    """Merge detail-page data into profile. Absent detail values never blank a field."""
    for attr, value in detail.fields.items():
        if value is not None:
            setattr(profile, attr, value)
    if detail.message:
        profile.message = detail.message
    if detail.x_account:
        profile.x_account = detail.x_account
    profile.photo_urls = cap_photo_urls([*profile.photo_urls, *detail.photo_urls], MAX_PHOTOS)
    return profile
