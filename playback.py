from __future__ import annotations

import enum
import logging
import re
import time
from typing import Any, Callable, Dict, List, Optional, Protocol

from errors import (DeviceUnavailable, PlaybackFailed, SdkInitializationFailed,
                    SpotifyAPIError, Unauthorized)
from models import PlaybackDevice, Track
from player_events import (EVENT_NAMES, DeviceNotReady, DeviceReady, PlayerError,
                           PlayerStateChanged, parse_event)
from sdk_loader import PlayerHandle, SdkLoader

log = logging.getLogger(__name__)

PLAYER_NAME           = "DeWorm Web Player"
MAX_RECONNECTS        = 3
RECONNECT_BACKOFF     = 2.0
SETTLE_DELAY          = 1.0
DEFAULT_VOLUME        = 0.5
TRACK_URI             = re.compile(r"^spotify:track:[A-Za-z0-9]+$")
TOKEN_ERROR_HINTS     = ("token", "expired", "invalid")
REFRESH_PAGE_MESSAGE  = "Lost connection to Spotify. Please refresh the page to reconnect."


class PlaybackApi(Protocol):
    def access_token(self) -> str: ...
    def get_devices(self) -> List[Dict[str, Any]]: ...
    def play(self, uri: str, device_id: Optional[str] = None) -> None: ...


class PlaybackState(enum.Enum):
    UNINITIALIZED = "uninitialized"
    SDK_LOADING = "sdk_loading"
    SDK_READY = "sdk_ready"
    DEVICE_CONNECTING = "device_connecting"
    DEVICE_READY = "device_ready"
    DEVICE_LOST = "device_lost"
    RECONNECTING = "reconnecting"
    FAILED = "failed"


class PlaybackController:
    """Owns the page's Web Playback SDK player and its device.

    SDK listeners run through `parse_event`, so handlers only ever see typed
    events. The reconnect backoff and the settle delay before the first play
    go through the injected `sleep`. A host with an event loop must pass a
    sleep that yields to that loop (it runs inside SDK event handlers and
    `play`); `time.sleep` is only right where blocking is acceptable, as in
    the CLI. Because other events can land during that wait, `play` checks
    the device again after it.
    """

    def __init__(
        self,
        api: PlaybackApi,
        loader: SdkLoader,
        *,
        name: str = PLAYER_NAME,
        sleep: Callable[[float], None] = time.sleep,
        on_relogin: Optional[Callable[[], None]] = None,
        on_skip: Optional[Callable[[str], None]] = None,
        on_playing: Optional[Callable[[bool], None]] = None,
        on_error: Optional[Callable[[str], None]] = None,
        max_reconnects: int = MAX_RECONNECTS,
        reconnect_backoff: float = RECONNECT_BACKOFF,
        settle_delay: float = SETTLE_DELAY,
    ) -> None:
        self.api = api
        self.loader = loader
        self.name = name
        self._sleep = sleep
        self._on_relogin = on_relogin
        self._on_skip = on_skip
        self._on_playing = on_playing
        self._on_error = on_error
        self.max_reconnects = max_reconnects
        self.reconnect_backoff = reconnect_backoff
        self.settle_delay = settle_delay

        self.state = PlaybackState.UNINITIALIZED
        self.player: Optional[PlayerHandle] = None
        self.device: Optional[PlaybackDevice] = None
        self.error: Optional[str] = None
        self.is_playing = False
        self.position_ms = 0
        self.current_track: Optional[Track] = None
        self.current_uri: Optional[str] = None
        self.volume = DEFAULT_VOLUME
        self.muted = False
        self.reconnect_attempts = 0
        self._needs_settle = False

    # ─── lifecycle ─────────────────────────────────────────────────────────
    def load(self, initial_volume: Optional[float] = None) -> None:
        """Inject the SDK (once per page) and connect when it reports ready."""
        if initial_volume is not None:
            self._apply_initial_volume(initial_volume)
        self.loader.claim(self)
        self.state = PlaybackState.SDK_LOADING
        self.loader.register(self._on_sdk_ready)
        self.loader.inject()

    def _on_sdk_ready(self) -> None:
        self.state = PlaybackState.SDK_READY
        try:
            self.connect()
        except SdkInitializationFailed:
            # state and error are already recorded by _fail
            pass

    def _get_oauth_token(self, callback: Callable[[str], None]) -> None:
        # resolved on every call so a refreshed token is picked up
        try:
            callback(self.api.access_token())
        except SpotifyAPIError as e:
            log.warning("No access token for the player: %s", e)
            self._request_relogin()

    def connect(self, initial_volume: Optional[float] = None) -> None:
        if initial_volume is not None:
            self._apply_initial_volume(initial_volume)
        self.loader.claim(self)
        if self.player is not None:
            self._drop_player()

        player = self.loader.host.create_player(self.name, self._get_oauth_token, self.effective_volume)
        for event in EVENT_NAMES:
            player.add_listener(event, self._listener(event))
        self.player = player
        self.state = PlaybackState.DEVICE_CONNECTING

        if not player.connect():
            self._fail("Could not connect the Spotify player")
            raise SdkInitializationFailed(self.error or "")
        log.info("Web Playback SDK connected")

    def teardown(self) -> None:
        self.loader.unregister(self._on_sdk_ready)
        if self.player is not None:
            self._drop_player()
        self.loader.release(self)
        self.device = None
        self.is_playing = False
        self.state = PlaybackState.UNINITIALIZED

    def _drop_player(self) -> None:
        player, self.player = self.player, None
        if player is None:
            return
        for event in EVENT_NAMES:
            player.remove_listener(event)
        player.disconnect()

    def _listener(self, event: str) -> Callable[[Any], None]:
        def listener(payload: Any) -> None:
            self.dispatch(event, payload)
        return listener

    # ─── SDK events ────────────────────────────────────────────────────────
    def dispatch(self, event: str, payload: Any) -> None:
        parsed = parse_event(event, payload)
        if parsed is None:
            return
        if isinstance(parsed, PlayerError):
            self._handle_error(parsed)
        elif isinstance(parsed, DeviceReady):
            self._handle_ready(parsed)
        elif isinstance(parsed, DeviceNotReady):
            self._handle_not_ready(parsed)
        elif isinstance(parsed, PlayerStateChanged):
            self._handle_state(parsed)

    def _handle_error(self, event: PlayerError) -> None:
        log.error("Player %s: %s", event.kind, event.message)
        self._fail(f"{event.kind.replace('_', ' ').capitalize()}: {event.message}")
        if event.kind == "authentication_error":
            text = event.message.lower()
            # the SDK gives no error code; match on the message
            if any(hint in text for hint in TOKEN_ERROR_HINTS):
                self._request_relogin()

    def _handle_ready(self, event: DeviceReady) -> None:
        log.info("Player ready with device %s", event.device_id)
        self.device = PlaybackDevice(event.device_id, is_ready=True)
        self.state = PlaybackState.DEVICE_READY
        self.error = None
        self.reconnect_attempts = 0
        self._needs_settle = True
        if self.player is not None:
            # mobile browsers only allow audio after this
            self.player.activate_element()

    def _handle_not_ready(self, event: DeviceNotReady) -> None:
        log.info("Device %s went offline", event.device_id)
        if self.device is not None:
            self.device.is_ready = False
        self.state = PlaybackState.DEVICE_LOST
        self._reconnect()

    def _handle_state(self, event: PlayerStateChanged) -> None:
        self.is_playing = not event.paused
        self.position_ms = event.position
        if event.track is not None:
            self.current_track = event.track
        if self._on_playing:
            self._on_playing(self.is_playing)

    # ─── reconnection ──────────────────────────────────────────────────────
    def _reconnect(self) -> None:
        self.reconnect_attempts += 1
        if self.reconnect_attempts > self.max_reconnects:
            log.error("Giving up after %d reconnect attempts", self.max_reconnects)
            self._fail(REFRESH_PAGE_MESSAGE)
            return

        self.state = PlaybackState.RECONNECTING
        self._sleep(self.reconnect_backoff)
        device_id = self.device.device_id if self.device else None

        if device_id and self._device_listed(device_id) and self.player is not None:
            log.info("Reconnecting player (attempt %d)", self.reconnect_attempts)
            self.state = PlaybackState.DEVICE_CONNECTING
            if not self.player.connect():
                self._fail("Could not reconnect the Spotify player")
            return

        log.info("Device is gone; re-initializing player (attempt %d)", self.reconnect_attempts)
        self.device = None
        self.is_playing = False
        self._needs_settle = False
        try:
            self.connect()
        except SdkInitializationFailed:
            pass

    def _device_listed(self, device_id: str) -> bool:
        try:
            devices = self.api.get_devices()
        except SpotifyAPIError as e:
            log.warning("Could not list devices: %s", e)
            return False
        return any(d.get("id") == device_id for d in devices)

    def restore_device(self, device_id: str) -> bool:
        """Trust a device id cached across a reload only if Spotify still lists it."""
        if not self._device_listed(device_id):
            log.info("Cached device %s is no longer available", device_id)
            self.device = None
            return False
        self.device = PlaybackDevice(device_id, is_ready=self.state == PlaybackState.DEVICE_READY)
        return True

    # ─── controls ──────────────────────────────────────────────────────────
    def play(self, track_uri: str) -> None:
        if not TRACK_URI.match(track_uri or ""):
            raise PlaybackFailed(f"Not a Spotify track URI: {track_uri!r}")
        if self.state != PlaybackState.DEVICE_READY or self.device is None:
            raise DeviceUnavailable("Player is not ready")

        if self._needs_settle:
            self._needs_settle = False
            self._sleep(self.settle_delay)

        # a not_ready may have landed while we waited
        device_id = self.device.device_id if self.device else None
        if self.state != PlaybackState.DEVICE_READY or not device_id or not self._device_listed(device_id):
            if self.device is not None:
                self.device.is_ready = False
            raise DeviceUnavailable("Playback device is no longer available")

        try:
            self.api.play(track_uri, device_id=device_id)
        except Unauthorized:
            self._request_relogin()
            raise
        except SpotifyAPIError as e:
            log.warning("Playing %s failed: %s", track_uri, e)
            self.error = "Error playing track"
            if self._on_error:
                self._on_error(self.error)
            if self._on_skip:
                self._on_skip(track_uri)
            raise PlaybackFailed(str(e)) from e

        self.current_uri = track_uri
        self.is_playing = True
        if self._on_playing:
            self._on_playing(True)

    def toggle_play_pause(self) -> None:
        if self.player is None:
            raise DeviceUnavailable("Player is not connected")
        self.player.toggle_play()
        self.is_playing = not self.is_playing
        if self._on_playing:
            self._on_playing(self.is_playing)

    @property
    def effective_volume(self) -> float:
        return 0.0 if self.muted else self.volume

    def set_volume(self, volume: float) -> None:
        """Set the level in 0..1. Zero mutes and keeps the stored level; above zero unmutes."""
        if not 0.0 <= volume <= 1.0:
            raise ValueError("volume must be between 0 and 1")
        if volume == 0:
            self.muted = True
        else:
            self.volume = volume
            self.muted = False
        self._push_volume()

    def toggle_mute(self) -> None:
        self.muted = not self.muted
        self._push_volume()

    def _apply_initial_volume(self, volume: float) -> None:
        if not 0.0 <= volume <= 1.0:
            raise ValueError("volume must be between 0 and 1")
        if volume == 0:
            self.muted = True
        else:
            self.volume = volume

    def _push_volume(self) -> None:
        if self.player is not None:
            self.player.set_volume(self.effective_volume)

    # ─── failure paths ─────────────────────────────────────────────────────
    def _fail(self, message: str) -> None:
        self.state = PlaybackState.FAILED
        self.error = message
        self.is_playing = False
        if self._on_error:
            self._on_error(message)

    def _request_relogin(self) -> None:
        if self._on_relogin:
            self._on_relogin()
