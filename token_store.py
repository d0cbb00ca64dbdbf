from __future__ import annotations

import fcntl  # only works on Unix-likes; the file store is a CLI convenience
import json
import logging
import pathlib
import time
from typing import Any, Callable, Dict, Mapping, Optional, Protocol, runtime_checkable

from models import Session, TokenResponse, UserProfile

log = logging.getLogger(__name__)

# cookie names are part of the contract with the browser
STATE_COOKIE         = "spotify_auth_state"
ACCESS_TOKEN_COOKIE  = "spotify_access_token"
REFRESH_TOKEN_COOKIE = "spotify_refresh_token"
TOKEN_EXPIRY_COOKIE  = "spotify_token_expiry"
USER_COOKIE          = "spotify_user"

SESSION_COOKIES = (ACCESS_TOKEN_COOKIE, REFRESH_TOKEN_COOKIE, TOKEN_EXPIRY_COOKIE, USER_COOKIE)

COOKIE_MAX_AGE    = 30 * 24 * 60 * 60
EXPIRY_BUFFER_MS  = 60_000


# Interface for session storage
@runtime_checkable
class SessionRepository(Protocol):
    def get(self) -> Session: ...
    def put(self, tokens: TokenResponse) -> Session: ...
    def put_session(self, session: Session) -> Session: ...
    def save_profile(self, profile: UserProfile) -> None: ...
    def clear(self) -> None: ...
    def save_auth_state(self, state: str) -> None: ...
    def pop_auth_state(self) -> Optional[str]: ...
    def is_expired(self, buffer_ms: int = EXPIRY_BUFFER_MS) -> bool: ...
    def is_authenticated(self) -> bool: ...


class BaseSessionStore:
    """Session bookkeeping shared by every storage backend.

    Subclasses implement `get`, `_write` (replace the whole session),
    `clear` and the auth-state pair.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock

    def now_ms(self) -> int:
        return int(self._clock() * 1000)

    def get(self) -> Session:
        raise NotImplementedError

    def _write(self, session: Session) -> None:
        raise NotImplementedError

    def put(self, tokens: TokenResponse) -> Session:
        current = self.get()
        session = Session(
            access_token=tokens.access_token,
            # refresh grants usually omit the refresh token; keep the old one
            refresh_token=tokens.refresh_token or current.refresh_token,
            expires_at=self.now_ms() + tokens.expires_in * 1000,
            user_profile=current.user_profile,
        )
        self._write(session)
        return session

    def put_session(self, session: Session) -> Session:
        self._write(session)
        return session

    def save_profile(self, profile: UserProfile) -> None:
        session = self.get()
        session.user_profile = profile
        self._write(session)

    def is_expired(self, buffer_ms: int = EXPIRY_BUFFER_MS) -> bool:
        return self.get().is_expired(self.now_ms(), buffer_ms)

    def is_authenticated(self) -> bool:
        return self.get().is_authenticated(self.now_ms())


# Cookie store: the web app's source of truth
class CookieSessionStore(BaseSessionStore):
    """Reads the request's cookies and stages writes for the response.

    Every write is staged in memory and reads see staged values first, so a
    request observes its own writes; `commit` copies all staged cookies to
    the response at once. With `http_only=False` the session cookies form
    the document-readable mirror; the state nonce stays HTTP-only.
    """

    def __init__(
        self,
        cookies: Mapping[str, str],
        *,
        secure: bool = False,
        http_only: bool = True,
        max_age: int = COOKIE_MAX_AGE,
        clock: Callable[[], float] = time.time,
    ) -> None:
        super().__init__(clock)
        self._cookies = dict(cookies)
        self._pending: Dict[str, Optional[str]] = {}
        self.secure = secure
        self.http_only = http_only
        self.max_age = max_age

    def _read(self, name: str) -> Optional[str]:
        if name in self._pending:
            return self._pending[name]
        return self._cookies.get(name) or None

    def get(self) -> Session:
        expiry = self._read(TOKEN_EXPIRY_COOKIE)
        try:
            expires_at = int(expiry) if expiry else None
        except ValueError:
            log.warning("Ignoring malformed %s cookie", TOKEN_EXPIRY_COOKIE)
            expires_at = None

        profile: Optional[UserProfile] = None
        raw_profile = self._read(USER_COOKIE)
        if raw_profile:
            try:
                profile = UserProfile.from_json(json.loads(raw_profile))
            except (ValueError, KeyError, TypeError, AttributeError):
                log.warning("Ignoring malformed %s cookie", USER_COOKIE)

        return Session(
            access_token=self._read(ACCESS_TOKEN_COOKIE),
            refresh_token=self._read(REFRESH_TOKEN_COOKIE),
            expires_at=expires_at,
            user_profile=profile,
        )

    def _write(self, session: Session) -> None:
        staged = {
            ACCESS_TOKEN_COOKIE: session.access_token,
            REFRESH_TOKEN_COOKIE: session.refresh_token,
            TOKEN_EXPIRY_COOKIE: str(session.expires_at) if session.expires_at is not None else None,
            USER_COOKIE: json.dumps(session.user_profile.to_json()) if session.user_profile else None,
        }
        for name, value in staged.items():
            if value is None and self._read(name) is None:
                continue
            self._pending[name] = value

    def clear(self) -> None:
        for name in SESSION_COOKIES + (STATE_COOKIE,):
            self._pending[name] = None

    def save_auth_state(self, state: str) -> None:
        self._pending[STATE_COOKIE] = state

    def pop_auth_state(self) -> Optional[str]:
        state = self._read(STATE_COOKIE)
        self._pending[STATE_COOKIE] = None
        return state

    def has_session(self) -> bool:
        """The gate for protected pages and API routes: an access-token cookie.

        Expiry is not checked here; an expired token is refreshed on first use.
        """
        return bool(self._read(ACCESS_TOKEN_COOKIE))

    @property
    def dirty(self) -> bool:
        return bool(self._pending)

    def commit(self, response: Any) -> None:
        """Apply staged cookie changes to a Flask/Werkzeug response."""
        for name, value in self._pending.items():
            if value is None:
                response.delete_cookie(name, path="/", secure=self.secure, samesite="Lax")
                continue
            response.set_cookie(
                name,
                value,
                max_age=self.max_age,
                path="/",
                secure=self.secure,
                httponly=self.http_only or name == STATE_COOKIE,
                samesite="Lax",
            )
        self._pending.clear()


# File token store implementation, used by the CLI
class FileTokenStore(BaseSessionStore):
    def __init__(self, path: pathlib.Path, clock: Callable[[], float] = time.time):
        super().__init__(clock)
        self.path = path

    def _load(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        with self.path.open("r") as file:
            try:
                data = json.load(file)
            except json.JSONDecodeError:
                log.warning("Token file %s is not valid JSON; treating as empty", self.path)
                return {}
        return data if isinstance(data, dict) else {}

    def _dump(self, data: Dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("a+") as file:
            fcntl.flock(file, fcntl.LOCK_EX)
            file.seek(0)
            file.truncate()  # Ensure no old data remains
            json.dump(data, file)
            file.flush()
            fcntl.flock(file, fcntl.LOCK_UN)

    def get(self) -> Session:
        raw = self._load().get("session")
        if not isinstance(raw, dict):
            return Session()
        try:
            return Session.from_json(raw)
        except (KeyError, TypeError):
            # a damaged profile entry must not lose the tokens
            raw = dict(raw, user_profile=None)
            return Session.from_json(raw)

    def _write(self, session: Session) -> None:
        data = self._load()
        data["session"] = session.to_json()
        self._dump(data)

    def clear(self) -> None:
        if self.path.exists():
            self._dump({})

    def save_auth_state(self, state: str) -> None:
        data = self._load()
        data["auth_state"] = state
        self._dump(data)

    def pop_auth_state(self) -> Optional[str]:
        data = self._load()
        state = data.pop("auth_state", None)
        self._dump(data)
        return state
