from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Union

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from errors import ConfigError

log = logging.getLogger(__name__)

# ─── Spotify endpoints ─────────────────────────────────────────────────────
SPOTIFY_AUTH_URL  = "https://accounts.spotify.com/authorize"
SPOTIFY_TOKEN_URL = "https://accounts.spotify.com/api/token"
SPOTIFY_API_ROOT  = "https://api.spotify.com/v1"

SCOPES = (
    "user-read-private",
    "user-read-email",
    "user-read-playback-state",
    "user-modify-playback-state",
    "user-read-currently-playing",
    "streaming",
    "playlist-read-private",
    "playlist-read-collaborative",
    "playlist-modify-public",
    "playlist-modify-private",
)

DEFAULT_PLAYLIST_ID = "0E9WYGYWZBqfmp6eJ0Nl1t"


class Settings(BaseSettings):
    """Environment configuration, read from the process and a .env file.

    Fields are filled from the variable named in `validation_alias`; the
    field names also work as keyword arguments.
    """

    # === Spotify application (required) ===
    client_id: str = Field(min_length=1, validation_alias="SPOTIFY_CLIENT_ID")
    client_secret: str = Field(min_length=1, validation_alias="SPOTIFY_CLIENT_SECRET")
    redirect_uri: str = Field(min_length=1, validation_alias="SPOTIFY_REDIRECT_URI")

    # === Web app ===
    secret_key: str = Field("dev", validation_alias="FLASK_SECRET_KEY")
    environment: str = Field("development", validation_alias="DEWORM_ENV")
    client_mirror: bool = Field(False, validation_alias="SESSION_CLIENT_MIRROR")
    playlist_id: str = Field(DEFAULT_PLAYLIST_ID, validation_alias="SPOTIFY_EARWORM_PLAYLIST_ID")
    landing_route: str = Field("/search", validation_alias="DEWORM_LANDING_ROUTE")

    # === CLI and logging ===
    token_file: Path = Field(Path("tokens.json"), validation_alias="DEWORM_TOKEN_FILE")
    log_level: str = Field("INFO", validation_alias="LOG_LEVEL")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_ignore_empty=True,
        extra="ignore",
        case_sensitive=False,
        populate_by_name=True,
        frozen=True,
    )

    @field_validator("log_level")
    @classmethod
    def normalise_level(cls, v: str) -> str:
        return v.upper()

    @property
    def production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def scope(self) -> str:
        return " ".join(SCOPES)

    @classmethod
    def from_env(cls, env_file: Optional[Union[str, Path]] = ".env") -> "Settings":
        """Load settings; ConfigError names every required variable that is missing."""
        try:
            return cls(_env_file=env_file)
        except ValidationError as e:
            aliases = {name: field.validation_alias for name, field in cls.model_fields.items()}
            missing = [str(aliases.get(err["loc"][0], err["loc"][0])) for err in e.errors()
                       if err["type"] in ("missing", "string_too_short")]
            if missing:
                raise ConfigError(f"Missing required environment variables: {', '.join(missing)}") from e
            raise ConfigError(f"Invalid configuration: {e}") from e


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
    )
    # urllib3 logs every request line at DEBUG, including query strings
    logging.getLogger("urllib3").setLevel(logging.WARNING)
