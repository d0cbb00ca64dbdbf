"""A PlayerHost for Spotify Connect devices, used where no browser SDK exists.

The CLI drives an already running Spotify app (desktop, phone, speaker)
through the Web API. The "player" is that device: connecting means finding
it in /me/player/devices and reporting it ready, and the player controls
map onto the /me/player endpoints.
"""
from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, Optional

from errors import DeviceUnavailable, SpotifyAPIError
from playback import PlaybackController, PlaybackState
from sdk_loader import SdkLoader, TokenCallback
from spotify_client import SpotifySession

log = logging.getLogger(__name__)


class ConnectPlayer:
    """PlayerHandle backed by a Spotify Connect device."""

    def __init__(self, api: SpotifySession, device_id: Optional[str] = None) -> None:
        self.api = api
        self.device_id = device_id
        self.playing = False
        self._listeners: Dict[str, Callable[[Any], None]] = {}

    def _emit(self, event: str, payload: Any) -> None:
        listener = self._listeners.get(event)
        if listener is not None:
            listener(payload)

    def _pick_device(self) -> Optional[Dict[str, Any]]:
        devices = [d for d in self.api.get_devices() if d.get("id") and not d.get("is_restricted")]
        if self.device_id:
            return next((d for d in devices if d["id"] == self.device_id), None)
        # no device asked for: the active one, else the first listed
        return next((d for d in devices if d.get("is_active")), devices[0] if devices else None)

    def connect(self) -> bool:
        try:
            device = self._pick_device()
        except SpotifyAPIError as e:
            self._emit("initialization_error", {"message": str(e)})
            return False
        if device is None:
            log.info("No Spotify Connect device %s", self.device_id or "available")
            return False
        self.device_id = device["id"]
        self.playing = bool(device.get("is_active") and device.get("is_playing"))
        self._emit("ready", {"device_id": self.device_id})
        return True

    def disconnect(self) -> None:
        # the device belongs to another app; leave it running
        self._listeners.clear()

    def add_listener(self, event: str, callback: Callable[[Any], None]) -> None:
        self._listeners[event] = callback

    def remove_listener(self, event: str) -> None:
        self._listeners.pop(event, None)

    def toggle_play(self) -> None:
        if self.playing:
            self.api.pause(device_id=self.device_id)
        else:
            self.api.resume(device_id=self.device_id)
        self.playing = not self.playing

    def set_volume(self, volume: float) -> None:
        self.api.set_volume(round(volume * 100), device_id=self.device_id)

    def activate_element(self) -> None:
        pass


class ConnectHost:
    """PlayerHost whose players are Connect devices; there is no script to load."""

    def __init__(self, api: SpotifySession, device_id: Optional[str] = None) -> None:
        self.api = api
        self.device_id = device_id

    def inject_script(self, url: str) -> None:
        log.debug("Connect host needs no SDK script (%s)", url)

    def create_player(self, name: str, get_oauth_token: TokenCallback, volume: float) -> ConnectPlayer:
        # the device keeps its own volume until set_volume is called
        return ConnectPlayer(self.api, self.device_id)


def open_controller(
    api: SpotifySession,
    device_id: Optional[str] = None,
    sleep: Callable[[float], None] = time.sleep,
    **kwargs: Any,
) -> PlaybackController:
    """A controller whose device is ready, or DeviceUnavailable.

    A requested device id is checked against the device list before it is used.
    """
    loader = SdkLoader(ConnectHost(api, device_id))
    # Connect devices need no warm-up between ready and the first play
    controller = PlaybackController(api, loader, sleep=sleep, settle_delay=0.0, **kwargs)
    if device_id and not controller.restore_device(device_id):
        raise DeviceUnavailable(f"Spotify device {device_id} is not available")

    controller.load()
    loader.notify_ready()
    if controller.state is not PlaybackState.DEVICE_READY:
        raise DeviceUnavailable(f"No Spotify device ready ({controller.error}); open Spotify on a device first")
    return controller
