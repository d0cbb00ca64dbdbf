import pytest

from player_events import (DeviceNotReady, DeviceReady, PlayerError,
                           PlayerStateChanged, parse_event)


def test_ready_and_not_ready():
    assert parse_event("ready", {"device_id": "dev-1"}) == DeviceReady("dev-1")
    assert parse_event("not_ready", {"device_id": "dev-1"}) == DeviceNotReady("dev-1")


@pytest.mark.parametrize("name", ["initialization_error", "authentication_error", "account_error", "playback_error"])
def test_error_events(name):
    assert parse_event(name, {"message": "boom"}) == PlayerError(name, "boom")


def test_state_change_without_track():
    event = parse_event("player_state_changed", {"paused": True, "position": 10.6, "track_window": {}})
    assert event == PlayerStateChanged(paused=True, position=10, track=None)


def test_state_change_with_track():
    event = parse_event("player_state_changed", {
        "paused": False,
        "position": 0,
        "track_window": {"current_track": {
            "id": "abc123",
            "uri": "spotify:track:abc123",
            "name": "Song",
            "duration_ms": 200000,
            "artists": [{"name": "Band", "uri": "spotify:artist:b1"}],
            "album": {"name": "LP", "images": [{"url": "https://i.scdn.co/1", "height": 300, "width": 300}]},
        }},
    })
    assert event.track.id == "abc123"
    assert event.track.duration_ms == 200000
    assert event.track.artist_names == "Band"
    assert event.track.album.images[0].height == 300


def test_null_state_change_is_not_an_event():
    assert parse_event("player_state_changed", None) is None


@pytest.mark.parametrize("name, payload", [
    ("ready", None),
    ("ready", {"device_id": 5}),
    ("not_ready", "dev-1"),
    ("playback_error", {}),
    ("player_state_changed", {"paused": False, "position": True}),
    ("player_state_changed", {"paused": 0, "position": 1}),
    ("player_state_changed", {"paused": False, "position": 1, "track_window": {"current_track": {"uri": "x"}}}),
    ("autoplay_failed", {}),
])
def test_malformed_payloads_are_dropped(name, payload):
    assert parse_event(name, payload) is None
