from __future__ import annotations

import base64
import logging
from typing import Any, Callable, Dict, List, Optional, TypeVar

import requests

from config import SPOTIFY_API_ROOT, SPOTIFY_TOKEN_URL
from errors import TokenExchangeFailed, Unauthorized, UpstreamError
from models import Track, TokenResponse, UserProfile
from token_store import SessionRepository

__all__ = ["SpotifyClient", "SpotifySession"]

log = logging.getLogger(__name__)

TIMEOUT = 10
T = TypeVar("T")


def _error_message(r: requests.Response) -> str:
    try:
        body = r.json()
    except ValueError:
        return r.text or f"HTTP {r.status_code}"
    if isinstance(body, dict):
        err = body.get("error")
        if isinstance(err, dict):
            return err.get("message") or f"HTTP {r.status_code}"
        return body.get("error_description") or (err if isinstance(err, str) else None) or f"HTTP {r.status_code}"
    return f"HTTP {r.status_code}"


class SpotifyClient:
    """ Thin wrapper around the Spotify accounts service and Web API.

    Holds no tokens: every Web API call takes the bearer token explicitly.
    """
    def __init__(
        self,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        http: Optional[requests.Session] = None,
        api_root: str = SPOTIFY_API_ROOT,
        token_url: str = SPOTIFY_TOKEN_URL,
    ) -> None:
        self.id           = client_id
        self.secret       = client_secret
        self.redirect_uri = redirect_uri
        self.http         = http or requests.Session()
        self.api_root     = api_root.rstrip("/")
        self.token_url    = token_url

    # ─── accounts service ──────────────────────────────────────────────────
    def _post_token(self, data: dict) -> TokenResponse:
        auth = base64.b64encode(f"{self.id}:{self.secret}".encode()).decode()
        try:
            r = self.http.request(
                "POST",
                self.token_url,
                data=data,
                headers={"Authorization": f"Basic {auth}"},
                timeout=TIMEOUT,
            )
        except requests.RequestException as e:
            raise TokenExchangeFailed(f"Token endpoint unreachable: {e}") from e
        if not r.ok:
            description = _error_message(r)
            log.warning("Token grant %s failed: %s", data.get("grant_type"), description)
            raise TokenExchangeFailed(description, status=r.status_code)
        try:
            return TokenResponse.from_json(r.json())
        except (KeyError, ValueError, TypeError) as e:
            raise TokenExchangeFailed(f"Malformed token response: {e}", status=r.status_code) from e

    def exchange_code_for_token(self, code: str) -> TokenResponse:
        return self._post_token(
            {"grant_type": "authorization_code", "code": code, "redirect_uri": self.redirect_uri}
        )

    def refresh_access_token(self, refresh_token: str) -> TokenResponse:
        return self._post_token({"grant_type": "refresh_token", "refresh_token": refresh_token})

    # ─── Web API ───────────────────────────────────────────────────────────
    def authenticated_request(
        self,
        endpoint: str,
        access_token: str,
        method: str = "GET",
        *,
        params: Optional[dict] = None,
        json: Optional[dict] = None,
    ) -> Any:
        url = endpoint if endpoint.startswith("http") else self.api_root + endpoint
        try:
            r = self.http.request(
                method,
                url,
                headers={"Authorization": f"Bearer {access_token}"},
                params=params,
                json=json,
                timeout=TIMEOUT,
            )
        except requests.RequestException as e:
            raise UpstreamError(f"Spotify API unreachable: {e}") from e

        if r.status_code == 401:
            raise Unauthorized("Access token has expired or is invalid")
        if not r.ok:
            message = _error_message(r)
            log.warning("Spotify API %s %s failed (%s): %s", method, endpoint, r.status_code, message)
            raise UpstreamError(message, status=r.status_code)
        if r.status_code == 204 or not r.content:
            return None
        try:
            return r.json()
        except ValueError:
            # player endpoints sometimes answer 200 with a non-JSON body
            return None

    def get_current_user(self, access_token: str) -> UserProfile:
        body = self.authenticated_request("/me", access_token)
        if not isinstance(body, dict):
            raise UpstreamError("Spotify returned no profile")
        return UserProfile.from_json(body)

    # the *_json variants hand back the upstream body untouched for the proxy routes
    def search_tracks_json(self, access_token: str, query: str, limit: int = 10) -> Dict[str, Any]:
        return self.authenticated_request(
            "/search", access_token, params={"q": query, "type": "track", "limit": limit}
        ) or {}

    def search_tracks(self, access_token: str, query: str, limit: int = 10) -> List[Track]:
        body = self.search_tracks_json(access_token, query, limit)
        items = (body.get("tracks") or {}).get("items") or []
        return [Track.from_json(item) for item in items if item][:limit]

    def get_track_json(self, access_token: str, track_id: str) -> Dict[str, Any]:
        body = self.authenticated_request(f"/tracks/{track_id}", access_token)
        if not isinstance(body, dict):
            raise UpstreamError(f"Spotify returned no track for {track_id}")
        return body

    def get_track(self, access_token: str, track_id: str) -> Track:
        return Track.from_json(self.get_track_json(access_token, track_id))

    def get_playlist_tracks(self, access_token: str, playlist_id: str, page_size: int = 100) -> List[Track]:
        """Every track of a playlist, following the `next` cursor until it is null."""
        tracks: List[Track] = []
        endpoint: Optional[str] = f"/playlists/{playlist_id}/tracks"
        params: Optional[dict] = {"limit": page_size}
        while endpoint:
            page = self.authenticated_request(endpoint, access_token, params=params) or {}
            for item in page.get("items") or []:
                track = (item or {}).get("track")
                if track and track.get("id"):  # local files and removed tracks have no id
                    tracks.append(Track.from_json(track))
            endpoint = page.get("next")
            params = None  # the cursor URL already carries limit/offset
        return tracks

    def get_devices(self, access_token: str) -> List[Dict[str, Any]]:
        body = self.authenticated_request("/me/player/devices", access_token)
        return (body or {}).get("devices") or []

    def play(self, access_token: str, uri: str, device_id: Optional[str] = None) -> None:
        params = {"device_id": device_id} if device_id else None
        self.authenticated_request("/me/player/play", access_token, "PUT", params=params, json={"uris": [uri]})

    def pause(self, access_token: str, device_id: Optional[str] = None) -> None:
        params = {"device_id": device_id} if device_id else None
        self.authenticated_request("/me/player/pause", access_token, "PUT", params=params)

    def resume(self, access_token: str, device_id: Optional[str] = None) -> None:
        params = {"device_id": device_id} if device_id else None
        self.authenticated_request("/me/player/play", access_token, "PUT", params=params)

    def set_volume(self, access_token: str, volume_percent: int, device_id: Optional[str] = None) -> None:
        params = {"volume_percent": volume_percent}
        if device_id:
            params["device_id"] = device_id
        self.authenticated_request("/me/player/volume", access_token, "PUT", params=params)

    def add_to_playlist(self, access_token: str, playlist_id: str, uri: str, position: int = 0) -> Any:
        return self.authenticated_request(
            f"/playlists/{playlist_id}/tracks", access_token, "POST",
            json={"uris": [uri], "position": position},
        )


class SpotifySession:
    """ A SpotifyClient bound to one user's stored session.

    Resolves the access token from the repository, refreshing first when it
    is expired, and retries a call once after refreshing on a 401.
    """
    def __init__(self, client: SpotifyClient, store: SessionRepository) -> None:
        self.client = client
        self.store  = store

    def refresh(self) -> str:
        session = self.store.get()
        if not session.refresh_token:
            raise Unauthorized("No refresh token available; log in again")
        try:
            tokens = self.client.refresh_access_token(session.refresh_token)
        except TokenExchangeFailed as e:
            log.info("Token refresh failed: %s", e.description)
            raise Unauthorized(f"Could not refresh access token: {e.description}") from e
        log.info("Access token refreshed")
        return self.store.put(tokens).access_token or ""

    def access_token(self) -> str:
        """Latest usable access token; refreshes proactively when expired."""
        session = self.store.get()
        if not session.access_token and not session.refresh_token:
            raise Unauthorized("Not logged in")
        if not session.access_token or self.store.is_expired():
            if session.refresh_token:
                return self.refresh()
            raise Unauthorized("Access token expired")
        return session.access_token

    def call(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        token = self.access_token()
        try:
            return fn(token, *args, **kwargs)
        except Unauthorized:
            # reactive refresh then retry once
            log.info("Got 401 from Spotify; refreshing and retrying once")
            token = self.refresh()
            return fn(token, *args, **kwargs)

    def get_current_user(self) -> UserProfile:
        return self.call(self.client.get_current_user)

    def search_tracks_json(self, query: str, limit: int = 10) -> Dict[str, Any]:
        return self.call(self.client.search_tracks_json, query, limit)

    def search_tracks(self, query: str, limit: int = 10) -> List[Track]:
        return self.call(self.client.search_tracks, query, limit)

    def get_track_json(self, track_id: str) -> Dict[str, Any]:
        return self.call(self.client.get_track_json, track_id)

    def get_track(self, track_id: str) -> Track:
        return self.call(self.client.get_track, track_id)

    def get_playlist_tracks(self, playlist_id: str) -> List[Track]:
        return self.call(self.client.get_playlist_tracks, playlist_id)

    def get_devices(self) -> List[Dict[str, Any]]:
        return self.call(self.client.get_devices)

    def play(self, uri: str, device_id: Optional[str] = None) -> None:
        self.call(self.client.play, uri, device_id)

    def pause(self, device_id: Optional[str] = None) -> None:
        self.call(self.client.pause, device_id)

    def resume(self, device_id: Optional[str] = None) -> None:
        self.call(self.client.resume, device_id)

    def set_volume(self, volume_percent: int, device_id: Optional[str] = None) -> None:
        self.call(self.client.set_volume, volume_percent, device_id)

    def add_to_playlist(self, playlist_id: str, uri: str, position: int = 0) -> Any:
        return self.call(self.client.add_to_playlist, playlist_id, uri, position)
