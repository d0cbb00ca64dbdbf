"""Per-request wiring shared by the page views and the API blueprint."""
from __future__ import annotations

from flask import Response, current_app, g, request

from config import Settings
from oauth_flow import OAuthFlow
from spotify_client import SpotifyClient, SpotifySession
from token_store import CookieSessionStore

CLIENT_EXTENSION = "deworm.spotify_client"


def get_settings() -> Settings:
    return current_app.config["DEWORM_SETTINGS"]


def get_client() -> SpotifyClient:
    return current_app.extensions[CLIENT_EXTENSION]


def get_store() -> CookieSessionStore:
    if "session_store" not in g:
        settings = get_settings()
        g.session_store = CookieSessionStore(
            request.cookies,
            secure=settings.production,
            http_only=not settings.client_mirror,
        )
    return g.session_store


def get_spotify() -> SpotifySession:
    return SpotifySession(get_client(), get_store())


def get_flow() -> OAuthFlow:
    return OAuthFlow(get_settings(), get_client(), get_store())


def commit_cookies(response: Response) -> Response:
    store = g.pop("session_store", None)
    if store is not None and store.dirty:
        store.commit(response)
    return response
