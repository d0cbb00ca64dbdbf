"""Typed events from the Spotify Web Playback SDK.

The SDK hands listeners loosely shaped payloads. `parse_event` turns a
(name, payload) pair into one of the event classes below, or logs and
returns None when the payload does not have the expected shape.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional, Union

from models import Album, Artist, Image, Track

log = logging.getLogger(__name__)

ERROR_EVENTS = ("initialization_error", "authentication_error", "account_error", "playback_error")
EVENT_NAMES = ERROR_EVENTS + ("ready", "not_ready", "player_state_changed")


@dataclass(frozen=True)
class DeviceReady:
    device_id: str


@dataclass(frozen=True)
class DeviceNotReady:
    device_id: str


@dataclass(frozen=True)
class PlayerStateChanged:
    paused: bool
    position: int
    track: Optional[Track] = None


@dataclass(frozen=True)
class PlayerError:
    kind: str
    message: str


PlayerEvent = Union[DeviceReady, DeviceNotReady, PlayerStateChanged, PlayerError]


class MalformedEvent(ValueError):
    pass


def _require(payload: Any, key: str, kind: type) -> Any:
    if not isinstance(payload, dict) or key not in payload:
        raise MalformedEvent(f"missing {key!r}")
    value = payload[key]
    # bool is an int subclass; keep the two apart
    if not isinstance(value, kind) or (kind is int and isinstance(value, bool)):
        raise MalformedEvent(f"{key!r} is not {kind.__name__}")
    return value


def _id_from_uri(uri: str) -> str:
    return uri.rsplit(":", 1)[-1] if uri else ""


def _track_from_sdk(raw: Any) -> Track:
    uri = _require(raw, "uri", str)
    album = raw.get("album") if isinstance(raw.get("album"), dict) else {}
    artists = raw.get("artists") if isinstance(raw.get("artists"), list) else []
    images = album.get("images") if isinstance(album.get("images"), list) else []
    return Track(
        id=raw.get("id") or _id_from_uri(uri),
        name=_require(raw, "name", str),
        uri=uri,
        duration_ms=int(raw.get("duration_ms") or 0),
        artists=[Artist(id=_id_from_uri(a.get("uri", "")), name=a.get("name", ""))
                 for a in artists if isinstance(a, dict)],
        album=Album(
            name=album.get("name", ""),
            images=[Image.from_json(i) for i in images if isinstance(i, dict) and i.get("url")],
        ),
    )


def _parse(name: str, payload: Any) -> PlayerEvent:
    if name in ERROR_EVENTS:
        return PlayerError(kind=name, message=_require(payload, "message", str))
    if name == "ready":
        return DeviceReady(_require(payload, "device_id", str))
    if name == "not_ready":
        return DeviceNotReady(_require(payload, "device_id", str))
    if name == "player_state_changed":
        paused = _require(payload, "paused", bool)
        position = payload.get("position")
        if isinstance(position, bool) or not isinstance(position, (int, float)):
            raise MalformedEvent("'position' is not a number")
        window = payload.get("track_window")
        current = window.get("current_track") if isinstance(window, dict) else None
        return PlayerStateChanged(paused, int(position), _track_from_sdk(current) if current else None)
    raise MalformedEvent(f"unknown event {name!r}")


def parse_event(name: str, payload: Any) -> Optional[PlayerEvent]:
    # the SDK emits player_state_changed with null when playback moves elsewhere
    if name == "player_state_changed" and payload is None:
        return None
    try:
        return _parse(name, payload)
    except MalformedEvent as e:
        log.warning("Dropping malformed %s event: %s", name, e)
        return None
