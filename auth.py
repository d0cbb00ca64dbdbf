from __future__ import annotations

import logging
from typing import Optional

from flask import (Blueprint, Flask, redirect, render_template, request,
                   url_for)

import api
from config import Settings, configure_logging
from errors import AuthFlowError, Unauthorized, UpstreamError
from replacement import pick_replacement
from spotify_client import SpotifyClient
from web_context import (CLIENT_EXTENSION, commit_cookies, get_flow,
                         get_settings, get_spotify, get_store)

log = logging.getLogger(__name__)

web = Blueprint("web", __name__)

# pages that need an access-token cookie; the API blueprint applies the same rule
PROTECTED_ROUTES = ("/search", "/player", "/replacement")

ERROR_MESSAGES = {
    "spotify_denied": "You declined to authorize the application with Spotify.",
    "state_mismatch": "Security verification failed. Please try again.",
    "no_code":        "No authorization code received from Spotify. Please try again.",
    "auth_failed":    "Authentication with Spotify failed. Please try again.",
    "default":        "An unknown error occurred during authentication. Please try again.",
}


# ─── route guard ───────────────────────────────────────────────────────────
def guard_pages():
    path = request.path
    if path == "/dashboard":
        return redirect("/search")
    protected = any(path == route or path.startswith(route + "/") for route in PROTECTED_ROUTES)
    if protected and not get_store().has_session():
        log.debug("No auth cookie for %s; redirecting home", path)
        return redirect("/")
    return None


@web.errorhandler(Unauthorized)
def relogin(e: Unauthorized):
    # refresh already failed or was impossible; start over
    log.info("Session unusable (%s); sending user to login", e)
    get_store().clear()
    return redirect(url_for("web.login"))


# ─── auth routes ───────────────────────────────────────────────────────────
@web.route("/login")
def login():
    return redirect(get_flow().begin_login())


@web.route("/callback")
def callback():
    try:
        get_flow().handle_callback(request.args)
    except AuthFlowError as e:
        log.warning("Login failed (%s): %s", e.kind, e)
        return redirect(url_for("web.auth_error", error=e.kind))
    return redirect(get_settings().landing_route)


@web.route("/logout")
def logout():
    get_flow().logout()
    return redirect(url_for("web.index"))


@web.route("/auth/error")
def auth_error():
    kind = request.args.get("error") or "default"
    message = ERROR_MESSAGES.get(kind, ERROR_MESSAGES["default"])
    return render_template("error.html", message=message)


# ─── pages ─────────────────────────────────────────────────────────────────
@web.route("/")
def index():
    store = get_store()
    return render_template("index.html", logged_in=store.has_session(), user=store.get().user_profile)


@web.route("/search")
def search():
    query = (request.args.get("q") or "").strip()
    tracks, error = [], None
    if query:
        try:
            tracks = get_spotify().search_tracks(query, limit=10)
        except UpstreamError as e:
            error = f"Spotify search failed: {e.message}"
    return render_template(
        "search.html", query=query, tracks=tracks, error=error, user=get_store().get().user_profile
    )


@web.route("/replacement")
def replacement():
    earworm_id = request.args.get("earworm")
    spotify = get_spotify()
    earworm, suggestion, error = None, None, None
    try:
        if earworm_id:
            earworm = spotify.get_track(earworm_id)
        suggestion = pick_replacement(earworm_id, spotify.get_playlist_tracks(get_settings().playlist_id))
    except UpstreamError as e:
        error = f"Could not load a replacement: {e.message}"
    if suggestion is None and error is None:
        error = "The replacement playlist is empty."
    return render_template("replacement.html", earworm=earworm, suggestion=suggestion, error=error)


# ─── app factory ───────────────────────────────────────────────────────────
def create_app(settings: Optional[Settings] = None, client: Optional[SpotifyClient] = None) -> Flask:
    """Build the web app. Missing Spotify credentials fail here, at startup."""
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)

    app = Flask(__name__)
    app.secret_key = settings.secret_key
    app.config["DEWORM_SETTINGS"] = settings
    app.extensions[CLIENT_EXTENSION] = client or SpotifyClient(
        settings.client_id, settings.client_secret, settings.redirect_uri
    )

    app.before_request(guard_pages)
    app.after_request(commit_cookies)
    app.register_blueprint(web)
    app.register_blueprint(api.bp)

    log.info("DeWorm ready (redirect URI %s, production=%s)", settings.redirect_uri, settings.production)
    return app


# ─── main ──────────────────────────────────────────────────────────────────
if __name__ == "__main__":
    create_app().run(debug=True, port=5000)
