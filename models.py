from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class Image:
    url: str
    height: Optional[int] = None
    width: Optional[int] = None

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "Image":
        return cls(url=data.get("url", ""), height=data.get("height"), width=data.get("width"))

    def to_json(self) -> Dict[str, Any]:
        return {"url": self.url, "height": self.height, "width": self.width}


@dataclass(frozen=True)
class Artist:
    id: str
    name: str


@dataclass(frozen=True)
class Album:
    name: str
    images: List[Image] = field(default_factory=list)


@dataclass(frozen=True)
class Track:
    """A catalog track. Never mutated or persisted locally."""
    id: str
    name: str
    uri: str
    duration_ms: int
    artists: List[Artist] = field(default_factory=list)
    album: Album = field(default_factory=lambda: Album(name=""))

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "Track":
        album = data.get("album") or {}
        return cls(
            id=data.get("id") or "",
            name=data.get("name") or "",
            uri=data.get("uri") or "",
            duration_ms=int(data.get("duration_ms") or 0),
            artists=[Artist(id=a.get("id") or "", name=a.get("name") or "")
                     for a in data.get("artists") or []],
            album=Album(
                name=album.get("name") or "",
                images=[Image.from_json(i) for i in album.get("images") or []],
            ),
        )

    def to_json(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "uri": self.uri,
            "duration_ms": self.duration_ms,
            "artists": [{"id": a.id, "name": a.name} for a in self.artists],
            "album": {
                "name": self.album.name,
                "images": [i.to_json() for i in self.album.images],
            },
        }

    @property
    def artist_names(self) -> str:
        return ", ".join(a.name for a in self.artists)


@dataclass(frozen=True)
class UserProfile:
    id: str
    display_name: Optional[str] = None
    email: Optional[str] = None
    images: List[Image] = field(default_factory=list)

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "UserProfile":
        return cls(
            id=data["id"],
            display_name=data.get("display_name"),
            email=data.get("email"),
            images=[Image.from_json(i) for i in data.get("images") or []],
        )

    def to_json(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "display_name": self.display_name,
            "email": self.email,
            "images": [i.to_json() for i in self.images],
        }


@dataclass(frozen=True)
class TokenResponse:
    """Body of a successful authorization_code or refresh_token grant."""
    access_token: str
    token_type: str
    expires_in: int
    refresh_token: Optional[str] = None
    scope: str = ""

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "TokenResponse":
        return cls(
            access_token=data["access_token"],
            token_type=data.get("token_type", "Bearer"),
            expires_in=int(data.get("expires_in", 3600)),
            refresh_token=data.get("refresh_token"),
            scope=data.get("scope", ""),
        )


@dataclass
class Session:
    """Tokens and cached profile for one logged-in user.

    `expires_at` is epoch milliseconds, matching the spotify_token_expiry cookie.
    """
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    expires_at: Optional[int] = None
    user_profile: Optional[UserProfile] = None

    def is_expired(self, now_ms: int, buffer_ms: int = 60_000) -> bool:
        if self.expires_at is None:
            return True
        return now_ms + buffer_ms >= self.expires_at

    def is_authenticated(self, now_ms: int, buffer_ms: int = 60_000) -> bool:
        return bool(self.access_token) and not self.is_expired(now_ms, buffer_ms)

    def to_json(self) -> Dict[str, Any]:
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "expires_at": self.expires_at,
            "user_profile": self.user_profile.to_json() if self.user_profile else None,
        }

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "Session":
        profile = data.get("user_profile")
        return cls(
            access_token=data.get("access_token"),
            refresh_token=data.get("refresh_token"),
            expires_at=data.get("expires_at"),
            user_profile=UserProfile.from_json(profile) if profile else None,
        )


@dataclass
class PlaybackDevice:
    device_id: str
    is_ready: bool = False
