import time
import urllib.parse as up

import pytest

import oauth_flow
from auth import create_app
from token_store import (ACCESS_TOKEN_COOKIE, REFRESH_TOKEN_COOKIE, STATE_COOKIE,
                         TOKEN_EXPIRY_COOKIE, USER_COOKIE)

from conftest import PROFILE, FakeResponse, token_json, track_json


@pytest.fixture
def app(settings, client):
    app = create_app(settings, client=client)
    app.config.update({"TESTING": True})
    return app


@pytest.fixture
def web(app):
    return app.test_client()


@pytest.fixture
def logged_in(web):
    expiry = int(time.time() * 1000) + 3_600_000
    web.set_cookie(ACCESS_TOKEN_COOKIE, "access-1")
    web.set_cookie(REFRESH_TOKEN_COOKIE, "refresh-1")
    web.set_cookie(TOKEN_EXPIRY_COOKIE, str(expiry))
    return web


def cookie_value(web, name):
    cookie = web.get_cookie(name)
    return cookie.value if cookie else None


def set_cookie_headers(response):
    return {h.split("=", 1)[0]: h for h in response.headers.getlist("Set-Cookie")}


# ─── login / callback ─────────────────────────────────────────────────────
def test_login_redirects_to_spotify_with_state_cookie(web, monkeypatch):
    monkeypatch.setattr(oauth_flow, "generate_state", lambda: "xyz")

    r = web.get("/login")

    assert r.status_code == 302
    location = up.urlsplit(r.headers["Location"])
    assert location.netloc == "accounts.spotify.com"
    assert dict(up.parse_qsl(location.query))["state"] == "xyz"
    header = set_cookie_headers(r)[STATE_COOKIE]
    assert "HttpOnly" in header
    assert "SameSite=Lax" in header
    assert cookie_value(web, STATE_COOKIE) == "xyz"


def test_callback_success_sets_session_and_lands_on_search(web, http):
    http.add("POST", "token", FakeResponse(200, token_json()))
    http.add("GET", "/me", FakeResponse(200, PROFILE))
    web.set_cookie(STATE_COOKIE, "xyz")

    r = web.get("/callback?code=abc&state=xyz")

    assert r.status_code == 302
    assert r.headers["Location"] == "/search"
    assert cookie_value(web, ACCESS_TOKEN_COOKIE) == "access-1"
    assert cookie_value(web, REFRESH_TOKEN_COOKIE) == "refresh-1"
    assert int(cookie_value(web, TOKEN_EXPIRY_COOKIE)) > int(time.time() * 1000)
    assert "user-1" in cookie_value(web, USER_COOKIE)
    assert cookie_value(web, STATE_COOKIE) is None


def test_callback_survives_an_empty_profile_response(web, http):
    http.add("POST", "token", FakeResponse(200, token_json()))
    http.add("GET", "/me", FakeResponse(204))
    web.set_cookie(STATE_COOKIE, "xyz")

    r = web.get("/callback?code=abc&state=xyz")

    assert r.status_code == 302
    assert r.headers["Location"] == "/search"
    assert cookie_value(web, ACCESS_TOKEN_COOKIE) == "access-1"
    assert cookie_value(web, USER_COOKIE) is None


def test_provider_denial_redirects_to_error_page(web, http):
    web.set_cookie(STATE_COOKIE, "xyz")

    r = web.get("/callback?error=access_denied&state=xyz")

    assert r.status_code == 302
    assert r.headers["Location"] == "/auth/error?error=spotify_denied"
    assert cookie_value(web, ACCESS_TOKEN_COOKIE) is None
    assert http.calls == []


def test_state_mismatch(web, http):
    web.set_cookie(STATE_COOKIE, "xyz")
    r = web.get("/callback?code=abc&state=other")
    assert r.headers["Location"] == "/auth/error?error=state_mismatch"
    assert http.calls == []


def test_exchange_failure(web, http):
    http.add("POST", "token", FakeResponse(400, {"error": "invalid_grant"}))
    web.set_cookie(STATE_COOKIE, "xyz")
    r = web.get("/callback?code=abc&state=xyz")
    assert r.headers["Location"] == "/auth/error?error=auth_failed"
    assert cookie_value(web, ACCESS_TOKEN_COOKIE) is None


@pytest.mark.parametrize("kind, text", [
    ("spotify_denied", "You declined to authorize"),
    ("no_code", "No authorization code received"),
    ("mystery", "An unknown error occurred"),
])
def test_error_page_messages(web, kind, text):
    r = web.get(f"/auth/error?error={kind}")
    assert r.status_code == 200
    body = r.get_data(as_text=True)
    assert text in body
    assert "Return to Home" in body


def test_logout_clears_cookies(logged_in):
    r = logged_in.get("/logout")
    assert r.status_code == 302
    assert r.headers["Location"] == "/"
    assert cookie_value(logged_in, ACCESS_TOKEN_COOKIE) is None
    assert cookie_value(logged_in, REFRESH_TOKEN_COOKIE) is None


# ─── route guard ──────────────────────────────────────────────────────────
@pytest.mark.parametrize("path", ["/search", "/replacement", "/player"])
def test_protected_pages_redirect_home_without_cookie(web, path):
    r = web.get(path)
    assert r.status_code == 302
    assert r.headers["Location"] == "/"


def test_refresh_cookie_alone_is_not_a_session(web, http):
    web.set_cookie(REFRESH_TOKEN_COOKIE, "refresh-1")

    page = web.get("/search")
    assert page.status_code == 302
    assert page.headers["Location"] == "/"

    r = web.get("/api/spotify/devices")
    assert r.status_code == 401
    assert r.get_json() == {"error": "Unauthorized"}
    assert http.calls == []


def test_dashboard_redirects_to_search(web):
    r = web.get("/dashboard")
    assert r.status_code == 302
    assert r.headers["Location"] == "/search"


def test_index_is_public(web):
    r = web.get("/")
    assert r.status_code == 200
    assert "/login" in r.get_data(as_text=True)


def test_search_page_renders_results(logged_in, http):
    http.add("GET", "/search", FakeResponse(200, {"tracks": {"items": [track_json(1)]}}))
    r = logged_in.get("/search?q=queen")
    assert r.status_code == 200
    assert "Song 1" in r.get_data(as_text=True)


def test_page_relogin_when_refresh_fails(logged_in, http):
    http.add("GET", "/search", FakeResponse(401, {}))
    http.add("POST", "token", FakeResponse(400, {"error": "invalid_grant"}))

    r = logged_in.get("/search?q=queen")

    assert r.status_code == 302
    assert r.headers["Location"] == "/login"
    assert cookie_value(logged_in, ACCESS_TOKEN_COOKIE) is None


# ─── API ──────────────────────────────────────────────────────────────────
def test_api_requires_session(web, http):
    r = web.get("/api/spotify/search?q=queen")
    assert r.status_code == 401
    assert r.get_json() == {"error": "Unauthorized"}
    assert http.calls == []


def test_api_search_passes_spotify_body_through(logged_in, http):
    items = [dict(track_json(n), popularity=70 + n) for n in range(3)]
    upstream = {"tracks": {
        "href": "https://api.spotify.com/v1/search?q=bohemian&type=track&offset=0&limit=3",
        "items": items,
        "limit": 3,
        "next": "https://api.spotify.com/v1/search?q=bohemian&type=track&offset=3&limit=3",
        "offset": 0,
        "previous": None,
        "total": 812,
    }}
    http.add("GET", "/search", FakeResponse(200, upstream))

    r = logged_in.get("/api/spotify/search?q=bohemian&limit=3")

    assert r.status_code == 200
    assert r.get_json() == upstream
    assert http.calls[0]["headers"]["Authorization"] == "Bearer access-1"


def test_api_track_passes_spotify_body_through(logged_in, http):
    upstream = dict(track_json(1), popularity=88, explicit=True, external_urls={"spotify": "https://open.spotify.com/track/t1"})
    http.add("GET", "/tracks/t1", FakeResponse(200, upstream))

    r = logged_in.get("/api/spotify/track/t1")

    assert r.get_json() == upstream


@pytest.mark.parametrize("query, status", [
    ("", 400),
    ("q=", 400),
    ("q=queen&limit=abc", 400),
])
def test_api_search_validation(logged_in, http, query, status):
    r = logged_in.get(f"/api/spotify/search?{query}")
    assert r.status_code == status
    assert "error" in r.get_json()
    assert http.calls == []


def test_api_search_limit_is_clamped(logged_in, http):
    http.add("GET", "/search", FakeResponse(200, {"tracks": {"items": []}}))
    logged_in.get("/api/spotify/search?q=queen&limit=500")
    assert http.calls[0]["params"]["limit"] == 50


def test_api_play_requires_uri(logged_in, http):
    r = logged_in.post("/api/spotify/play", json={})
    assert r.status_code == 400
    assert r.get_json() == {"error": "URI is required"}
    assert http.calls == []


def test_api_play_and_pause(logged_in, http):
    http.add("PUT", "/me/player/play", FakeResponse(204))
    http.add("PUT", "/me/player/pause", FakeResponse(204))

    r = logged_in.post("/api/spotify/play", json={"uri": "spotify:track:abc123", "device_id": "dev-1"})
    assert r.get_json() == {"success": True}
    assert http.calls[0]["json"] == {"uris": ["spotify:track:abc123"]}
    assert http.calls[0]["params"] == {"device_id": "dev-1"}

    r = logged_in.delete("/api/spotify/play")
    assert r.get_json() == {"success": True}
    assert http.calls[1]["path"] == "/me/player/pause"


def test_api_upstream_status_is_forwarded(logged_in, http):
    http.add("GET", "/tracks/nope", FakeResponse(404, {"error": {"status": 404, "message": "Non existing id"}}))
    r = logged_in.get("/api/spotify/track/nope")
    assert r.status_code == 404
    assert r.get_json() == {"error": "Non existing id"}


def test_api_refreshes_once_on_401(logged_in, http):
    http.add("GET", "/tracks/t1", FakeResponse(401, {}), FakeResponse(200, track_json(1)))
    http.add("POST", "token", FakeResponse(200, token_json(access="access-2", refresh=None)))

    r = logged_in.get("/api/spotify/track/t1")

    assert r.status_code == 200
    assert r.get_json()["id"] == "t1"
    assert len(http.calls_to("POST", "token")) == 1
    assert cookie_value(logged_in, ACCESS_TOKEN_COOKIE) == "access-2"
    assert cookie_value(logged_in, REFRESH_TOKEN_COOKIE) == "refresh-1"


def test_api_asks_for_relogin_when_refresh_fails(logged_in, http):
    http.add("GET", "/tracks/t1", FakeResponse(401, {}))
    http.add("POST", "token", FakeResponse(400, {"error": "invalid_grant"}))

    r = logged_in.get("/api/spotify/track/t1")

    assert r.status_code == 401
    assert r.get_json() == {"error": "Unauthorized", "relogin": True}


def test_api_playlist_defaults_to_replacement_playlist(logged_in, http, settings):
    http.add("GET", f"/playlists/{settings.playlist_id}/tracks",
             FakeResponse(200, {"items": [{"track": track_json(1)}], "next": None}))
    r = logged_in.get("/api/spotify/playlist")
    assert [t["id"] for t in r.get_json()["tracks"]] == ["t1"]


def test_api_replacement(logged_in, http, settings):
    path = f"/playlists/{settings.playlist_id}/tracks"
    http.add("GET", path, FakeResponse(200, {"items": [{"track": track_json(1)}, {"track": track_json(2)}], "next": None}))

    r = logged_in.get("/api/spotify/replacement?earworm=t1")
    assert r.get_json()["track"]["id"] == "t2"

    r = logged_in.get("/api/spotify/replacement?earworm=t1&exclude=t2")
    assert r.get_json()["track"]["id"] == "t2"


def test_api_replacement_empty_playlist(logged_in, http, settings):
    http.add("GET", f"/playlists/{settings.playlist_id}/tracks", FakeResponse(200, {"items": [], "next": None}))
    r = logged_in.get("/api/spotify/replacement?earworm=t1")
    assert r.status_code == 404


def test_api_add_earworm_to_playlist(logged_in, http, settings):
    path = f"/playlists/{settings.playlist_id}/tracks"
    http.add("GET", path, FakeResponse(200, {"items": [{"track": track_json(1)}], "next": None}))
    http.add("POST", path, FakeResponse(201, {"snapshot_id": "s1"}))

    r = logged_in.post("/api/spotify/replacement", json={"uri": "spotify:track:t9"})

    assert r.get_json() == {"added": True}
    assert http.calls_to("POST", path)[0]["json"] == {"uris": ["spotify:track:t9"], "position": 0}


def test_replacement_page_has_play_controls(logged_in, http, settings):
    http.add("GET", "/tracks/t1", FakeResponse(200, track_json(1)))
    http.add("GET", f"/playlists/{settings.playlist_id}/tracks",
             FakeResponse(200, {"items": [{"track": track_json(1)}, {"track": track_json(2)}], "next": None}))

    r = logged_in.get("/replacement?earworm=t1")

    body = r.get_data(as_text=True)
    assert r.status_code == 200
    assert 'data-uri="spotify:track:t2"' in body
    assert 'id="play" data-endpoint="/api/spotify/play"' in body
    assert 'id="pause" data-endpoint="/api/spotify/play"' in body
    assert 'send(pause, "DELETE")' in body


def test_replacement_page_without_suggestion_has_no_controls(logged_in, http, settings):
    http.add("GET", f"/playlists/{settings.playlist_id}/tracks", FakeResponse(200, {"items": [], "next": None}))
    body = logged_in.get("/replacement").get_data(as_text=True)
    assert "The replacement playlist is empty." in body
    assert 'id="play"' not in body
