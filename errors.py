from __future__ import annotations

from typing import Optional


class DeWormError(Exception):
    """Base class for every error raised by this package."""


class ConfigError(DeWormError):
    pass


# ─── OAuth flow ────────────────────────────────────────────────────────────
class AuthFlowError(DeWormError):
    """A failed login attempt. `kind` is the value sent to /auth/error."""
    kind = "auth_failed"


class ProviderDenied(AuthFlowError):
    kind = "spotify_denied"


class StateMismatch(AuthFlowError):
    kind = "state_mismatch"


class MissingCode(AuthFlowError):
    kind = "no_code"


class ExchangeFailed(AuthFlowError):
    kind = "auth_failed"


class TokenExchangeFailed(DeWormError):
    """The token endpoint answered a code or refresh grant with a non-2xx."""

    def __init__(self, description: str, status: Optional[int] = None):
        super().__init__(description)
        self.description = description
        self.status = status


# ─── Web API ───────────────────────────────────────────────────────────────
class SpotifyAPIError(DeWormError):
    status: Optional[int] = None


class Unauthorized(SpotifyAPIError):
    """Access token missing, expired or rejected, and no refresh could fix it."""
    status = 401


class UpstreamError(SpotifyAPIError):
    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status = status


# ─── Playback ──────────────────────────────────────────────────────────────
class PlaybackError(DeWormError):
    pass


class PlaybackFailed(PlaybackError):
    pass


class DeviceUnavailable(PlaybackError):
    pass


class SdkInitializationFailed(PlaybackError):
    pass
