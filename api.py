"""JSON routes the browser calls; each proxies to the Spotify Web API."""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Tuple

from flask import Blueprint, jsonify, request

from errors import Unauthorized, UpstreamError
from replacement import ensure_in_playlist, pick_replacement
from web_context import get_settings, get_spotify, get_store

log = logging.getLogger(__name__)

bp = Blueprint("api", __name__, url_prefix="/api/spotify")

MAX_SEARCH_LIMIT = 50


def _error(message: str, status: int) -> Tuple[Any, int]:
    return jsonify({"error": message}), status


@bp.before_request
def require_session():
    if not get_store().has_session():
        return _error("Unauthorized", 401)
    return None


@bp.errorhandler(Unauthorized)
def handle_unauthorized(e: Unauthorized):
    log.info("API call rejected: %s", e)
    return jsonify({"error": "Unauthorized", "relogin": True}), 401


@bp.errorhandler(UpstreamError)
def handle_upstream(e: UpstreamError):
    status = e.status if e.status and 400 <= e.status < 600 else 502
    return _error(e.message, status)


def _json_body() -> Dict[str, Any]:
    body = request.get_json(silent=True)
    return body if isinstance(body, dict) else {}


@bp.route("/play", methods=["POST"])
def play():
    body = _json_body()
    uri: Optional[str] = body.get("uri")
    if not uri or not isinstance(uri, str):
        return _error("URI is required", 400)
    get_spotify().play(uri, device_id=body.get("device_id"))
    return jsonify({"success": True})


@bp.route("/play", methods=["DELETE"])
def pause():
    get_spotify().pause(device_id=request.args.get("device_id"))
    return jsonify({"success": True})


@bp.route("/search")
def search():
    query = (request.args.get("q") or "").strip()
    if not query:
        return _error('Query parameter "q" is required', 400)
    try:
        limit = int(request.args.get("limit", "10"))
    except ValueError:
        return _error('Query parameter "limit" must be an integer', 400)
    limit = max(1, min(limit, MAX_SEARCH_LIMIT))

    return jsonify(get_spotify().search_tracks_json(query, limit))


@bp.route("/playlist")
def playlist():
    playlist_id = request.args.get("id") or get_settings().playlist_id
    tracks = get_spotify().get_playlist_tracks(playlist_id)
    return jsonify({"tracks": [t.to_json() for t in tracks]})


@bp.route("/track/<track_id>")
def track(track_id: str):
    return jsonify(get_spotify().get_track_json(track_id))


@bp.route("/devices")
def devices():
    return jsonify({"devices": get_spotify().get_devices()})


@bp.route("/replacement")
def replacement():
    earworm = request.args.get("earworm")
    exclude = [t for t in request.args.getlist("exclude") if t]
    candidates = get_spotify().get_playlist_tracks(get_settings().playlist_id)
    choice = pick_replacement(earworm, candidates, exclude=exclude)
    if choice is None:
        return _error("No replacement track available", 404)
    return jsonify({"track": choice.to_json()})


@bp.route("/replacement", methods=["POST"])
def add_earworm():
    uri = _json_body().get("uri")
    if not uri or not isinstance(uri, str):
        return _error("URI is required", 400)
    added = ensure_in_playlist(get_spotify(), get_settings().playlist_id, uri)
    return jsonify({"added": added})
