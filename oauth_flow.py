from __future__ import annotations

import enum
import logging
import secrets
import string
import urllib.parse as up
from typing import Mapping, Optional

from config import SPOTIFY_AUTH_URL, Settings
from errors import (ExchangeFailed, MissingCode, ProviderDenied, StateMismatch,
                    TokenExchangeFailed, UpstreamError, Unauthorized)
from models import Session
from spotify_client import SpotifyClient
from token_store import SessionRepository

log = logging.getLogger(__name__)

STATE_ALPHABET = string.ascii_letters + string.digits
STATE_LENGTH   = 16


class FlowState(enum.Enum):
    ANONYMOUS = "anonymous"
    AUTHORIZATION_REQUESTED = "authorization_requested"
    CALLBACK_PENDING = "callback_pending"
    AUTHENTICATED = "authenticated"


def generate_state(length: int = STATE_LENGTH) -> str:
    """Random alphanumeric nonce; the comparison on callback is the CSRF check."""
    if length < STATE_LENGTH:
        raise ValueError(f"state must be at least {STATE_LENGTH} characters")
    return "".join(secrets.choice(STATE_ALPHABET) for _ in range(length))


class OAuthFlow:
    """Authorization-code login against Spotify, storing into a SessionRepository."""

    def __init__(self, settings: Settings, client: SpotifyClient, store: SessionRepository):
        self.settings = settings
        self.client = client
        self.store = store
        self.state = FlowState.AUTHENTICATED if store.is_authenticated() else FlowState.ANONYMOUS

    def authorize_url(self, state: str) -> str:
        params = dict(
            client_id=self.settings.client_id,
            response_type="code",
            redirect_uri=self.settings.redirect_uri,
            state=state,
            scope=self.settings.scope,
            show_dialog="true",
        )
        return SPOTIFY_AUTH_URL + "?" + up.urlencode(params)

    def begin_login(self) -> str:
        state = generate_state()
        self.store.save_auth_state(state)
        self.state = FlowState.AUTHORIZATION_REQUESTED
        log.info("Starting Spotify authorization")
        return self.authorize_url(state)

    def handle_callback(self, params: Mapping[str, str]) -> Session:
        """Validate the provider redirect and establish the session.

        Raises ProviderDenied, StateMismatch, MissingCode or ExchangeFailed;
        nothing is written to the store in any of those cases.
        """
        self.state = FlowState.CALLBACK_PENDING
        code  = params.get("code")
        state = params.get("state")
        error = params.get("error")

        # single use: the stored nonce is gone whatever happens next
        stored_state = self.store.pop_auth_state()

        try:
            if error:
                log.warning("Spotify authorization denied: %s", error)
                raise ProviderDenied(error)
            if not state or not stored_state or state != stored_state:
                log.warning("OAuth state validation failed (stored state %s)",
                            "present" if stored_state else "missing")
                raise StateMismatch("Authorization state did not match")
            if not code:
                raise MissingCode("No authorization code received from Spotify")
            try:
                tokens = self.client.exchange_code_for_token(code)
            except TokenExchangeFailed as e:
                raise ExchangeFailed(e.description) from e
        except Exception:
            self.state = FlowState.ANONYMOUS
            raise

        # a previous user's profile must not survive a new login
        self.store.clear()
        session = self.store.put(tokens)
        self._cache_profile(session)
        self.state = FlowState.AUTHENTICATED
        log.info("Spotify login complete")
        return self.store.get()

    def _cache_profile(self, session: Session) -> None:
        try:
            profile = self.client.get_current_user(session.access_token or "")
        except (Unauthorized, UpstreamError, KeyError) as e:
            log.warning("Could not fetch user profile after login: %s", e)
            return
        self.store.save_profile(profile)

    def logout(self) -> None:
        self.store.clear()
        self.state = FlowState.ANONYMOUS
        log.info("Session cleared")
