"""
Authenticator: OAuth2 Authorization Code + PKCE session management.

Responsibilities:
- Drive the login state machine:
    UNAUTHENTICATED -> AUTHORIZATION_REQUESTED -> CALLBACK_RECEIVED
      -> TOKEN_EXCHANGED -> BASE_ACCESS_VERIFIED -> AUTHENTICATED
  Any failure drops back to UNAUTHENTICATED with a reported error.
- Keep the single-use PKCE values in the session store only between the
  redirect and the callback.
- Persist, restore and clear the session in the persistent store. No other
  component writes there.

Every public operation returns an AuthResult; exceptions from the protocol
helpers never leave this module, except PkceError which marks a programming
error and aborts before anything is persisted.
"""
from __future__ import annotations

import asyncio
import dataclasses
import enum
import logging
from typing import Mapping

import aiohttp

from .api import auth
from .const import (
    ACCESS_DENIED_MESSAGE,
    KEY_AUTH_TOKEN,
    KEY_OAUTH_CODE_VERIFIER,
    KEY_OAUTH_STATE,
    KEY_REFRESH_TOKEN,
    KEY_USER_EMAIL,
    KEY_USER_ID,
    KEY_USER_NAME,
    LOGIN_IN_PROGRESS_MESSAGE,
    OAUTH_ERROR_MESSAGES,
    PERSISTED_SESSION_KEYS,
    RESTORE_REQUIRED_KEYS,
    STATE_MISMATCH_MESSAGE,
)
from .context import AppContext
from .errors import AccessDenied, ProtocolViolation, UpstreamRejection

_LOGGER = logging.getLogger(__name__)


class _Superseded(Exception):
    """A logout happened while the callback was awaiting the network."""


class AuthState(enum.Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHORIZATION_REQUESTED = "authorization_requested"
    CALLBACK_RECEIVED = "callback_received"
    TOKEN_EXCHANGED = "token_exchanged"
    BASE_ACCESS_VERIFIED = "base_access_verified"
    AUTHENTICATED = "authenticated"


class AuthOutcome(enum.Enum):
    REDIRECTED = "redirected"
    IN_PROGRESS = "in_progress"
    NO_CALLBACK = "no_callback"
    OAUTH_ERROR = "oauth_error"
    PROTOCOL_VIOLATION = "protocol_violation"
    ACCESS_DENIED = "access_denied"
    AUTHENTICATION_FAILED = "authentication_failed"
    SUPERSEDED = "superseded"
    AUTHENTICATED = "authenticated"
    RESTORED = "restored"
    NO_SESSION = "no_session"


_SUCCESS_OUTCOMES = {AuthOutcome.REDIRECTED, AuthOutcome.AUTHENTICATED, AuthOutcome.RESTORED}


@dataclasses.dataclass(frozen=True)
class AuthResult:
    outcome: AuthOutcome
    message: str | None = None
    redirect_url: str | None = None

    @property
    def success(self) -> bool:
        return self.outcome in _SUCCESS_OUTCOMES

    @property
    def is_error(self) -> bool:
        """True for outcomes the user must be told about."""
        return self.outcome in {
            AuthOutcome.OAUTH_ERROR,
            AuthOutcome.PROTOCOL_VIOLATION,
            AuthOutcome.ACCESS_DENIED,
            AuthOutcome.AUTHENTICATION_FAILED,
        }


def oauth_error_message(error: str) -> str:
    return OAUTH_ERROR_MESSAGES.get(error, f"Authentication failed: {error}\n\nPlease try again.")


class Authenticator:
    """Owns the AuthSession held by the app context."""

    def __init__(self, context: AppContext) -> None:
        self._context = context
        self.state = AuthState.UNAUTHENTICATED
        self._login_in_progress = False
        # Bumped by logout so that in-flight callbacks can detect they are stale
        self._generation = 0

    @property
    def session(self):
        return self._context.session

    @property
    def is_authenticated(self) -> bool:
        return self._context.session.is_authenticated

    @property
    def login_in_progress(self) -> bool:
        return self._login_in_progress

    @property
    def generation(self) -> int:
        """Changes on every logout; callers compare it across an await."""
        return self._generation

    def _transition(self, new_state: AuthState) -> None:
        if new_state != self.state:
            _LOGGER.debug("Auth state %s -> %s", self.state.value, new_state.value)
        self.state = new_state

    def _fail(self, outcome: AuthOutcome, message: str) -> AuthResult:
        self._transition(AuthState.UNAUTHENTICATED)
        return AuthResult(outcome, message)

    # ------------------------------------------------------------------
    # Authorization request
    # ------------------------------------------------------------------

    async def initiate_authorization(self) -> AuthResult:
        """
        Generate PKCE values, store them for the callback and redirect.

        A second call while one is pending is rejected instead of starting a
        competing exchange.
        """
        if self._login_in_progress:
            _LOGGER.warning("Login requested while another authorization is pending")
            return AuthResult(AuthOutcome.IN_PROGRESS, LOGIN_IN_PROGRESS_MESSAGE)

        self._login_in_progress = True
        try:
            params = auth.generate_pkce_parameters()
            url = auth.build_authorization_url(self._context.config, params)

            store = self._context.session_store
            store.set(KEY_OAUTH_STATE, params.state)
            store.set(KEY_OAUTH_CODE_VERIFIER, params.code_verifier)
            _LOGGER.debug(
                "PKCE parameters stored (state %s chars, verifier %s chars, challenge %s chars)",
                len(params.state), len(params.code_verifier), len(params.code_challenge),
            )

            self._transition(AuthState.AUTHORIZATION_REQUESTED)
            # Navigation is the last step; nothing may happen after it.
            await self._context.ui.navigate(url)
            return AuthResult(AuthOutcome.REDIRECTED, redirect_url=url)
        finally:
            self._login_in_progress = False

    # ------------------------------------------------------------------
    # Callback
    # ------------------------------------------------------------------

    def _clear_transient(self) -> None:
        self._context.session_store.remove(KEY_OAUTH_STATE)
        self._context.session_store.remove(KEY_OAUTH_CODE_VERIFIER)

    async def handle_callback(self, query_params: Mapping[str, str]) -> AuthResult:
        """
        Process the redirect back from the authorization server.

        Returns NO_CALLBACK when the query carries no authorization response,
        which is the normal case on a first load.
        """
        error = query_params.get("error")
        code = query_params.get("code")
        state = query_params.get("state")

        if not error and not (code and state):
            _LOGGER.debug("No OAuth callback parameters found")
            return AuthResult(AuthOutcome.NO_CALLBACK)

        stored_state = self._context.session_store.get(KEY_OAUTH_STATE)
        code_verifier = self._context.session_store.get(KEY_OAUTH_CODE_VERIFIER)
        # Single use: gone before any network call, whatever the outcome.
        self._clear_transient()

        if error:
            _LOGGER.error("OAuth error returned by authorization server: %s", error)
            return self._fail(AuthOutcome.OAUTH_ERROR, oauth_error_message(error))

        self._transition(AuthState.CALLBACK_RECEIVED)
        generation = self._generation
        try:
            tokens, user_info = await self._complete(code, state, stored_state, code_verifier, generation)
        except ProtocolViolation as e:
            _LOGGER.error("State parameter mismatch - possible CSRF attempt")
            return self._fail(AuthOutcome.PROTOCOL_VIOLATION, str(e))
        except AccessDenied as e:
            return self._fail(AuthOutcome.ACCESS_DENIED, str(e))
        except _Superseded:
            _LOGGER.info("Discarding authentication result superseded by logout")
            return self._fail(AuthOutcome.SUPERSEDED, "Authentication was cancelled")
        except UpstreamRejection as e:
            return self._fail(AuthOutcome.AUTHENTICATION_FAILED, f"Authentication failed: {e}")
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            _LOGGER.error("Network failure during authentication: %s", e)
            return self._fail(
                AuthOutcome.AUTHENTICATION_FAILED, f"Authentication failed: unable to reach the server ({e})"
            )

        self._store_session(tokens, user_info)
        self._transition(AuthState.AUTHENTICATED)
        _LOGGER.info("Authentication successful for %s", self.session.user_name)
        return AuthResult(AuthOutcome.AUTHENTICATED)

    async def _complete(self, code, state, stored_state, code_verifier, generation) -> tuple[dict, dict]:
        """Exchange, identify and check base access. Raises on every failure."""
        if stored_state is None or state != stored_state:
            raise ProtocolViolation(STATE_MISMATCH_MESSAGE)
        if not code_verifier:
            raise UpstreamRejection("missing code verifier")

        config = self._context.config
        tokens = await auth.exchange_code_for_tokens(config, code, code_verifier)
        access_token = (tokens or {}).get("access_token")
        if not access_token:
            _LOGGER.error("No access token received from token exchange")
            raise UpstreamRejection("No access token received")
        self._transition(AuthState.TOKEN_EXCHANGED)

        user_info = await auth.fetch_user_info(config, access_token)
        has_access = await auth.verify_base_access(config, access_token)
        if generation != self._generation:
            raise _Superseded()
        if not has_access:
            _LOGGER.error("User %s lacks access to the required base", user_info.get("id"))
            raise AccessDenied(ACCESS_DENIED_MESSAGE)
        self._transition(AuthState.BASE_ACCESS_VERIFIED)
        return tokens, user_info

    def _store_session(self, tokens: dict, user_info: dict) -> None:
        session = self._context.session
        session.access_token = tokens["access_token"]
        session.refresh_token = tokens.get("refresh_token")
        session.user_id = user_info.get("id")
        session.user_email = user_info.get("email")
        session.user_name = user_info.get("display_name") or session.user_email
        session.is_authenticated = True

        values = {
            KEY_AUTH_TOKEN: session.access_token,
            KEY_REFRESH_TOKEN: session.refresh_token,
            KEY_USER_EMAIL: session.user_email,
            KEY_USER_NAME: session.user_name,
            KEY_USER_ID: session.user_id,
        }
        store = self._context.persistent_store
        for key, value in values.items():
            if value:
                store.set(key, str(value))
            else:
                store.remove(key)

    # ------------------------------------------------------------------
    # Restore / logout
    # ------------------------------------------------------------------

    def restore_session(self) -> AuthResult:
        """
        Rebuild the session from the persistent store without any network call.

        Token validity is found out on the first failing API call.
        """
        store = self._context.persistent_store
        if not store.has_all(RESTORE_REQUIRED_KEYS):
            _LOGGER.info("No existing authentication found")
            self._transition(AuthState.UNAUTHENTICATED)
            return AuthResult(AuthOutcome.NO_SESSION)

        session = self._context.session
        session.access_token = store.get(KEY_AUTH_TOKEN)
        session.refresh_token = store.get(KEY_REFRESH_TOKEN)
        session.user_email = store.get(KEY_USER_EMAIL)
        session.user_name = store.get(KEY_USER_NAME) or session.user_email
        session.user_id = store.get(KEY_USER_ID)
        session.is_authenticated = True
        self._transition(AuthState.AUTHENTICATED)
        _LOGGER.info("Restored existing session for %s", session.user_name)
        return AuthResult(AuthOutcome.RESTORED)

    def logout(self) -> None:
        """Clear the session and its persisted keys. Safe to call repeatedly."""
        self._generation += 1
        self._context.session.clear()
        for key in PERSISTED_SESSION_KEYS:
            self._context.persistent_store.remove(key)
        self._transition(AuthState.UNAUTHENTICATED)
        _LOGGER.info("Logged out")

    def invalidate_session(self, reason: str) -> None:
        """Drop a session the store no longer accepts."""
        if self.is_authenticated:
            _LOGGER.warning("Session invalidated: %s", reason)
        self.logout()
