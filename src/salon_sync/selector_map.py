"""salon_sync.selector_map

Declarative selector / label-vocabulary table for the external portal.

The parsers never hard-code CSS selectors or Japanese field labels; they read
them from a SelectorMap. Markup drift on the portal is handled by editing a
YAML file (config/selectors/*.yml) rather than the parser code.

Usage:
    from pathlib import Path
    from salon_sync.selector_map import load_selector_map

    selectors = load_selector_map(Path("config/selectors/estama.yml"))
"""

from __future__ import annotations

import copy
import hashlib
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from salon_sync.errors import SelectorMapValidationError

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

REQUIRED_SECTIONS = frozenset({"schedule", "cast_list", "cast_detail"})
REQUIRED_SCHEDULE_KEYS = frozenset({"row", "name", "time_cell"})
REQUIRED_CAST_LIST_KEYS = frozenset({"block", "image", "heading", "link", "id_pattern"})
REQUIRED_CAST_DETAIL_KEYS = frozenset({"labels"})

# Profile attributes a detail label may map onto.
DETAIL_FIELDS = frozenset({
    "body_type",
    "experience_years",
    "specialties",
    "blood_type",
    "favorite_food",
    "ideal_type",
    "celebrity_lookalike",
    "day_off_activities",
    "hobbies",
    "height",
    "bust",
    "cup_size",
    "waist",
    "hip",
})
NUMERIC_DETAIL_FIELDS = frozenset({"experience_years", "height", "bust", "waist", "hip"})

DEFAULT_SELECTORS: dict[str, Any] = {
    "version": "estama-v1",
    "schedule": {
        "row": "tr",
        "name": "h4, h3, .name",
        "time_cell": "td",
        "room": ".room",
        "presence_markers": ["○", "◯", "〇"],
        "default_start": "12:00",
        "default_end": "26:00",
    },
    "cast_list": {
        "block": "div.cast_box, li.cast_box",
        "image": "img",
        "heading": "h3, h4, .name",
        "link": "a[href*='/cast/']",
        "id_pattern": r"/cast/(\d+)",
        "name_age_pattern": r"^\s*(?P<name>.+?)\s*[（(]\s*(?P<age>\d{1,3})\s*[)）]",
        "tags": ".badge, .tag, .icon_new",
        "metrics": ".size, .body_size",
        "gallery": ".sub_photo img",
    },
    "cast_detail": {
        "field_rows": "table tr, dl",
        "message": ".message p, .comment p",
        "social_link": "a[href*='twitter.com'], a[href*='x.com']",
        "gallery": ".photo_list img, .gallery img",
        "labels": {
            "体型": "body_type",
            "エステ歴": "experience_years",
            "経験年数": "experience_years",
            "得意な施術": "specialties",
            "得意技": "specialties",
            "血液型": "blood_type",
            "好きな食べ物": "favorite_food",
            "好きなタイプ": "ideal_type",
            "似ている芸能人": "celebrity_lookalike",
            "休日の過ごし方": "day_off_activities",
            "趣味": "hobbies",
        },
    },
}


# ---------------------------------------------------------------------------
# SelectorMap dataclasses
# ---------------------------------------------------------------------------

@dataclass
class ScheduleSelectors:
    row: str
    name: str
    time_cell: str
    room: str | None = None
    presence_markers: tuple[str, ...] = ("○", "◯", "〇")
    default_start: str = "12:00"
    default_end: str = "26:00"


@dataclass
class CastListSelectors:
    block: str
    image: str
    heading: str
    link: str
    id_pattern: re.Pattern[str]
    name_age_pattern: re.Pattern[str] | None = None
    tags: str | None = None
    metrics: str | None = None
    gallery: str | None = None


@dataclass
class CastDetailSelectors:
    labels: dict[str, str]
    field_rows: str = "table tr, dl"
    message: str | None = None
    social_link: str | None = None
    gallery: str | None = None


@dataclass
class SelectorMap:
    """Parsed, validated selector table."""

    version: str
    schedule: ScheduleSelectors
    cast_list: CastListSelectors
    cast_detail: CastDetailSelectors
    source_hash: str = ""
    raw: dict[str, Any] = field(repr=False, default_factory=dict)


# ---------------------------------------------------------------------------
# Loader + validator
# ---------------------------------------------------------------------------

def default_selector_map() -> SelectorMap:
    """Return the built-in selector map for estama.jp shop pages."""
    return build_selector_map(copy.deepcopy(DEFAULT_SELECTORS))


def load_selector_map(yaml_path: Path) -> SelectorMap:
    """Load a YAML selector file on top of the built-in defaults.

    Sections present in the file replace the matching keys of the defaults;
    the label vocabulary is replaced wholesale when given.

    Raises:
        SelectorMapValidationError: If the file is not valid YAML or the
            merged table is invalid.
        FileNotFoundError: If the YAML file does not exist.
    """
    raw = yaml_path.read_text(encoding="utf-8")
    try:
        data = yaml.safe_load(raw) or {}
    except yaml.YAMLError as exc:
        raise SelectorMapValidationError(f"{yaml_path}: invalid YAML: {exc}") from exc
    if not isinstance(data, dict):
        raise SelectorMapValidationError("selector file must contain a mapping")
    merged = copy.deepcopy(DEFAULT_SELECTORS)
    for key, value in data.items():
        if key in REQUIRED_SECTIONS:
            if not isinstance(value, dict):
                raise SelectorMapValidationError(f"section {key!r} must be a mapping")
            merged[key].update(value)
        else:
            merged[key] = value
    selector_map = build_selector_map(merged)
    selector_map.source_hash = hashlib.sha256(raw.encode("utf-8")).hexdigest()
    return selector_map


def resolve_selector_map(yaml_path: Path | None) -> SelectorMap:
    return load_selector_map(yaml_path) if yaml_path else default_selector_map()


def validate_selector_data(data: dict[str, Any]) -> None:
    """Raise SelectorMapValidationError if data does not match the required schema."""
    missing = REQUIRED_SECTIONS - set(data)
    if missing:
        raise SelectorMapValidationError(f"missing sections: {sorted(missing)}")

    for section, required in (
        ("schedule", REQUIRED_SCHEDULE_KEYS),
        ("cast_list", REQUIRED_CAST_LIST_KEYS),
        ("cast_detail", REQUIRED_CAST_DETAIL_KEYS),
    ):
        body = data[section]
        if not isinstance(body, dict):
            raise SelectorMapValidationError(f"section {section!r} must be a mapping")
        absent = [k for k in sorted(required) if not body.get(k)]
        if absent:
            raise SelectorMapValidationError(f"{section}: missing keys {absent}")

    labels = data["cast_detail"]["labels"]
    if not isinstance(labels, dict):
        raise SelectorMapValidationError("cast_detail.labels must be a mapping")
    unknown = sorted({str(v) for v in labels.values()} - DETAIL_FIELDS)
    if unknown:
        raise SelectorMapValidationError(f"cast_detail.labels: unknown fields {unknown}")

    for key in ("id_pattern", "name_age_pattern"):
        pattern = data["cast_list"].get(key)
        if not pattern:
            continue
        try:
            compiled = re.compile(pattern)
        except re.error as exc:
            raise SelectorMapValidationError(f"cast_list.{key}: {exc}") from exc
        if key == "id_pattern" and compiled.groups < 1:
            raise SelectorMapValidationError("cast_list.id_pattern needs one capture group")
        if key == "name_age_pattern" and not {"name", "age"} <= set(compiled.groupindex):
            raise SelectorMapValidationError(
                "cast_list.name_age_pattern needs (?P<name>) and (?P<age>) groups"
            )

    markers = data["schedule"].get("presence_markers") or []
    if not isinstance(markers, list) or not all(isinstance(m, str) and m for m in markers):
        raise SelectorMapValidationError("schedule.presence_markers must be a list of strings")


def build_selector_map(data: dict[str, Any]) -> SelectorMap:
    validate_selector_data(data)
    sched = data["schedule"]
    clist = data["cast_list"]
    detail = data["cast_detail"]
    name_age = clist.get("name_age_pattern")
    return SelectorMap(
        version=str(data.get("version", "unversioned")),
        schedule=ScheduleSelectors(
            row=sched["row"],
            name=sched["name"],
            time_cell=sched["time_cell"],
            room=sched.get("room"),
            presence_markers=tuple(sched.get("presence_markers") or ()),
            default_start=str(sched.get("default_start", "12:00")),
            default_end=str(sched.get("default_end", "26:00")),
        ),
        cast_list=CastListSelectors(
            block=clist["block"],
            image=clist["image"],
            heading=clist["heading"],
            link=clist["link"],
            id_pattern=re.compile(clist["id_pattern"]),
            name_age_pattern=re.compile(name_age) if name_age else None,
            tags=clist.get("tags"),
            metrics=clist.get("metrics"),
            gallery=clist.get("gallery"),
        ),
        cast_detail=CastDetailSelectors(
            labels={str(k): str(v) for k, v in detail["labels"].items()},
            field_rows=detail.get("field_rows") or "table tr, dl",
            message=detail.get("message"),
            social_link=detail.get("social_link"),
            gallery=detail.get("gallery"),
        ),
        raw=data,
    )
