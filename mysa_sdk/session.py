"""Session management for the signed in user.

The `SessionManager` owns the tokens of the signed in user and is the only
place they are read from. Every authenticated operation asks it for a fresh
token set, which refreshes expired tokens transparently.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Callable

from mashumaro import field_options
from mashumaro.config import BaseConfig
from mashumaro.mixins.json import DataClassJSONMixin

from .auth import AbstractAuthenticator, TokenSet
from .diagnostics import SESSION_DIAGNOSTICS as DIAGNOSTICS
from .events import EventBus, EventType
from .exceptions import UnauthenticatedException

__all__ = [
    "Session",
    "SessionManager",
]

_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class Session(DataClassJSONMixin):
    """Persistable snapshot of a signed in session."""

    username: str
    id_token: str = field(metadata=field_options(alias="idToken"))
    access_token: str = field(metadata=field_options(alias="accessToken"))
    refresh_token: str = field(metadata=field_options(alias="refreshToken"))

    @property
    def token_set(self) -> TokenSet:
        """Return the tokens of the session."""
        return TokenSet(
            id_token=self.id_token,
            access_token=self.access_token,
            refresh_token=self.refresh_token,
        )

    def __repr__(self) -> str:
        return f"<Session username={self.username}>"

    class Config(BaseConfig):
        serialize_by_alias = True


@dataclass(frozen=True)
class _AuthState:
    username: str
    token_set: TokenSet


class SessionManager:
    """Holds the tokens of the signed in user and keeps them fresh."""

    def __init__(
        self,
        authenticator: AbstractAuthenticator,
        events: EventBus,
        session: Session | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize SessionManager, optionally restoring a persisted session."""
        self._authenticator = authenticator
        self._events = events
        self._clock = clock
        self._auth_state: _AuthState | None = None
        if session is not None:
            self._auth_state = _AuthState(session.username, session.token_set)
        self._refresh_lock = asyncio.Lock()

    @property
    def session(self) -> Session | None:
        """Return a snapshot of the current session, if signed in."""
        if (state := self._auth_state) is None:
            return None
        return Session(
            username=state.username,
            id_token=state.token_set.id_token,
            access_token=state.token_set.access_token,
            refresh_token=state.token_set.refresh_token,
        )

    @property
    def is_authenticated(self) -> bool:
        """Return True if there is a session."""
        return self._auth_state is not None

    async def async_login(self, username: str, password: str) -> None:
        """Sign in, replacing any existing session.

        The session is cleared and listeners are notified before signing in so
        they can discard any persisted session even if signing in fails.
        """
        self._auth_state = None
        await self._events.async_emit(EventType.SESSION_CHANGED, None)

        _LOGGER.debug("Signing in")
        DIAGNOSTICS.increment("login")
        token_set = await self._authenticator.async_authenticate(username, password)
        self._auth_state = _AuthState(username, token_set)
        _LOGGER.debug("Signed in, token expiration %s", token_set.expiration)
        await self._events.async_emit(EventType.SESSION_CHANGED, self.session)

    async def async_get_token_set(self) -> TokenSet:
        """Return a token set that has not expired.

        Raises UnauthenticatedException if there is no session or if the
        session could not be refreshed, in which case the user must sign in
        again.
        """
        if (state := self._auth_state) is None:
            raise UnauthenticatedException(
                "An attempt was made to access a resource without a valid session"
            )
        if state.token_set.is_valid(self._clock()):
            return state.token_set

        async with self._refresh_lock:
            # Another task may have refreshed or signed in while waiting
            if (state := self._auth_state) is None:
                raise UnauthenticatedException(
                    "An attempt was made to access a resource without a valid session"
                )
            if state.token_set.is_valid(self._clock()):
                return state.token_set

            _LOGGER.debug("Session expired, refreshing")
            DIAGNOSTICS.increment("refresh")
            try:
                token_set = await self._authenticator.async_refresh(
                    state.username, state.token_set.refresh_token
                )
            except Exception as err:  # pylint: disable=broad-except
                DIAGNOSTICS.increment("refresh_error")
                _LOGGER.error("Failed to refresh session: %s", err)
                raise UnauthenticatedException(
                    "Unable to refresh the authentication session"
                ) from err

            if self._auth_state is not state:
                # Signed in again during the refresh; keep the newer session
                if self._auth_state is None:
                    raise UnauthenticatedException("Session was cleared during refresh")
                return self._auth_state.token_set

            self._auth_state = _AuthState(state.username, token_set)
            _LOGGER.debug("Session refreshed, new expiration %s", token_set.expiration)
        await self._events.async_emit(EventType.SESSION_CHANGED, self.session)
        return token_set
