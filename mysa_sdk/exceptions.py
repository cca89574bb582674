"""Library for exceptions raised by the Mysa client."""

from __future__ import annotations


class MysaException(Exception):
    """Base class for all client exceptions."""


class UnauthenticatedException(MysaException):
    """Raised when there is no session, or the session can no longer be refreshed.

    The caller must log in again.
    """


class ApiException(MysaException):
    """Raised during problems talking to the REST API."""

    def __init__(
        self, message: str, status: int | None = None, status_text: str | None = None
    ) -> None:
        """Initialize ApiException."""
        super().__init__(message)
        self.status = status
        self.status_text = status_text


class DeviceNotFoundException(MysaException):
    """Raised when a device id is not part of the account inventory."""


class TransportException(MysaException):
    """Raised during problems connecting to or talking over the realtime transport."""


class PublishException(TransportException):
    """Raised when a message could not be published."""

    def __init__(
        self, message: str, attempts: int = 1, cause: Exception | None = None
    ) -> None:
        """Initialize PublishException."""
        super().__init__(message)
        self.attempts = attempts
        self.cause = cause


class DecodeException(MysaException):
    """Raised when a realtime message could not be decoded."""
