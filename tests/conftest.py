"""Test configuration and fixtures"""

import json
from collections import defaultdict, deque
from urllib.parse import urlsplit

import pytest

from config import Settings, SPOTIFY_API_ROOT, SPOTIFY_TOKEN_URL
from spotify_client import SpotifyClient

NOW = 1_700_000_000.0  # fixed epoch seconds for store clocks


class FakeResponse:
    def __init__(self, status_code=200, json_data=None, text=None):
        self.status_code = status_code
        self._json = json_data
        if text is None:
            text = json.dumps(json_data) if json_data is not None else ""
        self.text = text
        self.content = text.encode()

    @property
    def ok(self):
        return 200 <= self.status_code < 400

    def json(self):
        if self._json is None:
            raise ValueError("No JSON body")
        return self._json


class FakeHttp:
    """Stands in for requests.Session; routes by (method, path).

    Each route holds a queue of responses; the last one repeats.
    """

    def __init__(self):
        self.routes = defaultdict(deque)
        self.calls = []

    def add(self, method, path, *responses):
        self.routes[(method, path)].extend(responses)
        return self

    def request(self, method, url, **kwargs):
        if url == SPOTIFY_TOKEN_URL:
            path = "token"
        else:
            path = url[len(SPOTIFY_API_ROOT):] if url.startswith(SPOTIFY_API_ROOT) else urlsplit(url).path
            path = path.split("?", 1)[0]
        self.calls.append({"method": method, "url": url, "path": path, **kwargs})
        queue = self.routes.get((method, path))
        if not queue:
            return FakeResponse(404, {"error": {"status": 404, "message": f"no route {method} {path}"}})
        return queue.popleft() if len(queue) > 1 else queue[0]

    def calls_to(self, method, path):
        return [c for c in self.calls if c["method"] == method and c["path"] == path]


def token_json(access="access-1", refresh="refresh-1", expires_in=3600):
    body = {"access_token": access, "token_type": "Bearer", "expires_in": expires_in, "scope": "streaming"}
    if refresh:
        body["refresh_token"] = refresh
    return body


def track_json(n, prefix="t"):
    return {
        "id": f"{prefix}{n}",
        "name": f"Song {n}",
        "uri": f"spotify:track:{prefix}{n}",
        "duration_ms": 180000 + n,
        "artists": [{"id": f"a{n}", "name": f"Artist {n}"}],
        "album": {"name": f"Album {n}", "images": [{"url": f"https://i.scdn.co/{n}", "height": 640, "width": 640}]},
    }


PROFILE = {"id": "user-1", "display_name": "Test User", "email": "test@example.com", "images": []}


@pytest.fixture
def settings(tmp_path):
    return Settings(
        client_id="client-id",
        client_secret="client-secret",
        redirect_uri="http://localhost:5000/callback",
        secret_key="test",
        token_file=tmp_path / "tokens.json",
    )


@pytest.fixture
def http():
    return FakeHttp()


@pytest.fixture
def client(settings, http):
    return SpotifyClient(settings.client_id, settings.client_secret, settings.redirect_uri, http=http)


@pytest.fixture
def clock():
    return lambda: NOW
