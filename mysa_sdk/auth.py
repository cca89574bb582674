"""Authentication library, implemented by users of the API.

The Mysa cloud authenticates users with an identity provider and hands out
short lived transport credentials for the realtime MQTT broker. Both exchanges
are provided by the caller:

- `AbstractAuthenticator` logs a user in with a username and password and
  refreshes an expired token set using its refresh token.
- `AbstractCredentialBroker` exchanges an id token for transport credentials
  (access key, secret key and session token) used to sign the websocket
  connection to the broker.

The library never persists tokens. Listen for `EventType.SESSION_CHANGED` to
store the `Session` snapshot and pass it back when creating a new client.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass

_LOGGER = logging.getLogger(__name__)

__all__ = [
    "AbstractAuthenticator",
    "AbstractCredentialBroker",
    "TokenSet",
    "TransportCredentials",
]

EXPIRATION_CLAIM = "exp"


def decode_expiration(token: str) -> float | None:
    """Return the expiration claim of a JWT as a unix timestamp.

    The signature is not verified. Returns None when the token is not a JWT or
    has no expiration claim.
    """
    parts = token.split(".")
    if len(parts) != 3:
        return None
    padded = parts[1] + "=" * (-len(parts[1]) % 4)
    try:
        claims = json.loads(base64.urlsafe_b64decode(padded))
    except (binascii.Error, UnicodeDecodeError, ValueError):
        return None
    if not isinstance(claims, dict):
        return None
    try:
        return float(claims[EXPIRATION_CLAIM])
    except (KeyError, TypeError, ValueError):
        return None


@dataclass(frozen=True)
class TokenSet:
    """Tokens issued by the identity provider for a signed in user."""

    id_token: str
    access_token: str
    refresh_token: str

    @property
    def expiration(self) -> float | None:
        """Unix timestamp when the id token expires, if it can be determined."""
        return decode_expiration(self.id_token)

    def is_valid(self, now: float) -> bool:
        """Return True if the id token has not expired at the given time."""
        expiration = self.expiration
        if expiration is None:
            _LOGGER.debug("Unable to determine id token expiration")
            return False
        return now < expiration

    def __repr__(self) -> str:
        return f"<TokenSet expiration={self.expiration}>"


@dataclass(frozen=True)
class TransportCredentials:
    """Short lived credentials for connecting to the realtime broker."""

    access_key_id: str
    secret_access_key: str
    session_token: str | None = None

    def __repr__(self) -> str:
        return f"<TransportCredentials access_key_id={self.access_key_id}>"


class AbstractAuthenticator(ABC):
    """Exchanges user credentials with the identity provider."""

    @abstractmethod
    async def async_authenticate(self, username: str, password: str) -> TokenSet:
        """Sign in and return a new token set.

        Raise an exception when the credentials are rejected.
        """

    @abstractmethod
    async def async_refresh(self, username: str, refresh_token: str) -> TokenSet:
        """Return a new token set using the refresh token.

        Implementations return the refresh token that was passed in when the
        identity provider does not rotate it.
        """


class AbstractCredentialBroker(ABC):
    """Exchanges an id token for realtime transport credentials."""

    @abstractmethod
    async def async_get_credentials(self, id_token: str) -> TransportCredentials:
        """Return credentials for connecting to the realtime broker."""
