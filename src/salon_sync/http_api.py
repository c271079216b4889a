"""HTTP trigger for the sync jobs.

Routes:
    GET|POST|OPTIONS /sync-estama-schedule   shift sync
    GET|POST|OPTIONS /sync-website-photos    profile sync
    GET              /health

Both sync routes accept an empty body or JSON with optional "days" and
"dryRun" keys. Every response carries permissive CORS headers.
"""

from __future__ import annotations

import logging
from typing import Any, Callable

from flask import Blueprint, Flask, current_app, jsonify, request

from salon_sync.asset_mirror import asset_store_from_settings
from salon_sync.config import Settings
from salon_sync.fetch import Fetcher, Pacer
from salon_sync.profile_sync import run_profile_sync
from salon_sync.schedule_sync import run_schedule_sync
from salon_sync.selector_map import resolve_selector_map
from salon_sync.shared import SyncCounters
from salon_sync.store import PgCastStore, store_session

log = logging.getLogger(__name__)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
}
MAX_DAYS = 31

bp = Blueprint("sync", __name__)


class BadRequest(ValueError):
    pass


def _default_store_factory(settings: Settings):
    return PgCastStore.connect(settings.require_dsn())


def _default_fetcher_factory(settings: Settings):
    return Fetcher(user_agent=settings.user_agent, timeout=settings.http_timeout)


@bp.after_app_request
def add_cors_headers(response):
    for key, value in CORS_HEADERS.items():
        response.headers[key] = value
    return response


def _options_response():
    return "", 200


def _error(message: str, status: int):
    return jsonify({"success": False, "error": message}), status


def _read_options() -> tuple[int | None, bool]:
    body = request.get_json(silent=True) or {}
    if not isinstance(body, dict):
        raise BadRequest("request body must be a JSON object")
    days = body.get("days")
    if days is not None:
        if isinstance(days, bool) or not isinstance(days, int) or not 1 <= days <= MAX_DAYS:
            raise BadRequest(f"days must be an integer between 1 and {MAX_DAYS}")
    dry_run = body.get("dryRun", False)
    if not isinstance(dry_run, bool):
        raise BadRequest("dryRun must be a boolean")
    return days, dry_run


def _deps() -> dict[str, Any]:
    return {
        "settings": current_app.config["SALON_SETTINGS"],
        "store_factory": current_app.config["SALON_STORE_FACTORY"],
        "fetcher_factory": current_app.config["SALON_FETCHER_FACTORY"],
        "asset_store_factory": current_app.config["SALON_ASSET_STORE_FACTORY"],
    }


@bp.get("/health")
def health_check():
    return jsonify({"status": "ok"}), 200


@bp.route("/sync-estama-schedule", methods=["GET", "POST", "OPTIONS"])
def sync_schedule():
    if request.method == "OPTIONS":
        return _options_response()
    try:
        days, dry_run = _read_options()
    except BadRequest as exc:
        return _error(str(exc), 400)

    deps = _deps()
    settings: Settings = deps["settings"]
    fetcher = None
    try:
        selectors = resolve_selector_map(settings.selector_file)
        fetcher = deps["fetcher_factory"](settings)
        store = deps["store_factory"](settings)
        counters = SyncCounters()
        with store_session(store, dry_run=dry_run):
            result = run_schedule_sync(
                store,
                fetcher,
                settings,
                selectors,
                counters,
                Pacer(delay=settings.page_delay_seconds),
                days=days,
            )
    except Exception as exc:
        log.exception("Shift sync failed")
        return _error(str(exc), 500)
    finally:
        if fetcher is not None:
            fetcher.close()

    return jsonify(result.to_response()), 200


@bp.route("/sync-website-photos", methods=["GET", "POST", "OPTIONS"])
def sync_profiles():
    if request.method == "OPTIONS":
        return _options_response()
    try:
        _, dry_run = _read_options()
    except BadRequest as exc:
        return _error(str(exc), 400)

    deps = _deps()
    settings: Settings = deps["settings"]
    fetcher = None
    try:
        selectors = resolve_selector_map(settings.selector_file)
        asset_store = deps["asset_store_factory"](settings, dry_run)
        fetcher = deps["fetcher_factory"](settings)
        store = deps["store_factory"](settings)
        counters = SyncCounters()
        with store_session(store, dry_run=dry_run):
            result = run_profile_sync(
                store,
                fetcher,
                asset_store,
                settings,
                selectors,
                counters,
                Pacer(delay=settings.detail_delay_seconds),
            )
    except Exception as exc:
        log.exception("Profile sync failed")
        return _error(str(exc), 500)
    finally:
        if fetcher is not None:
            fetcher.close()

    return jsonify(result.to_response()), 200


def create_app(
    settings: Settings | None = None,
    store_factory: Callable | None = None,
    fetcher_factory: Callable | None = None,
    asset_store_factory: Callable | None = None,
) -> Flask:
    """Application factory. Settings default to the process environment."""
    app = Flask(__name__)
    app.json.ensure_ascii = False
    app.config["SALON_SETTINGS"] = settings or Settings.from_env()
    app.config["SALON_STORE_FACTORY"] = store_factory or _default_store_factory
    app.config["SALON_FETCHER_FACTORY"] = fetcher_factory or _default_fetcher_factory
    app.config["SALON_ASSET_STORE_FACTORY"] = asset_store_factory or asset_store_from_settings
    app.register_blueprint(bp)
    return app
