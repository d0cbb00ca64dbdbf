from __future__ import annotations

import logging
from typing import Any, Callable, Optional, Protocol, runtime_checkable

log = logging.getLogger(__name__)

SDK_SCRIPT_URL = "https://sdk.scdn.co/spotify-player.js"

TokenCallback = Callable[[Callable[[str], None]], None]


# Interfaces for the page hosting the Web Playback SDK
@runtime_checkable
class PlayerHandle(Protocol):
    def connect(self) -> bool: ...
    def disconnect(self) -> None: ...
    def add_listener(self, event: str, callback: Callable[[Any], None]) -> None: ...
    def remove_listener(self, event: str) -> None: ...
    def toggle_play(self) -> None: ...
    def set_volume(self, volume: float) -> None: ...
    def activate_element(self) -> None: ...


@runtime_checkable
class PlayerHost(Protocol):
    def inject_script(self, url: str) -> None: ...
    def create_player(self, name: str, get_oauth_token: TokenCallback, volume: float) -> PlayerHandle: ...


class SdkLoader:
    """The single SDK-ready registration point for a page.

    The SDK script calls its ready hook exactly once. Controllers register a
    callback here instead of on the page; the script is injected only once
    and a callback registered after the SDK is ready runs immediately.
    The loader also records which controller currently owns the player.
    """

    def __init__(self, host: PlayerHost, script_url: str = SDK_SCRIPT_URL):
        self.host = host
        self.script_url = script_url
        self.loading = False
        self.ready = False
        self._callback: Optional[Callable[[], None]] = None
        self._owner: Any = None

    def register(self, callback: Callable[[], None]) -> None:
        if self._callback is not None and self._callback != callback:
            log.warning("Replacing an existing SDK ready callback")
        self._callback = callback
        if self.ready:
            callback()

    def unregister(self, callback: Callable[[], None]) -> None:
        if self._callback == callback:
            self._callback = None

    def inject(self) -> None:
        if self.loading or self.ready:
            log.debug("SDK script already %s; not injecting again", "loaded" if self.ready else "loading")
            return
        self.loading = True
        self.host.inject_script(self.script_url)

    def notify_ready(self) -> None:
        """Entry point for the SDK's global ready hook."""
        if self.ready:
            log.debug("Ignoring repeated SDK ready notification")
            return
        self.ready = True
        self.loading = False
        if self._callback is not None:
            self._callback()

    # ─── player ownership ──────────────────────────────────────────────────
    def claim(self, owner: Any) -> None:
        previous = self._owner
        self._owner = owner
        if previous is not None and previous is not owner:
            log.info("Disconnecting previous playback controller")
            previous.teardown()

    def release(self, owner: Any) -> None:
        if self._owner is owner:
            self._owner = None

    @property
    def owner(self) -> Any:
        return self._owner
