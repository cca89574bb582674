"""Library to access the Mysa REST API."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from typing import Any, TypeVar

import aiohttp
from aiohttp.client_exceptions import ClientError

from .diagnostics import API_DIAGNOSTICS as DIAGNOSTICS
from .exceptions import ApiException
from .model import ApiModel, Devices, DeviceStates, Firmwares
from .session import SessionManager

__all__ = ["MysaApi"]

_T = TypeVar("_T", bound=ApiModel)

_LOGGER = logging.getLogger(__name__)

API_URL = "https://app-prod.mysa.cloud"
AUTHORIZATION_HEADER = "Authorization"

DEVICES_PATH = "devices"
FIRMWARE_PATH = "devices/firmware"
STATE_PATH = "devices/state"

MALFORMED_RESPONSE = "Server returned malformed response"


class MysaApi:
    """Client library to communicate with the Mysa REST API."""

    def __init__(
        self,
        websession: aiohttp.ClientSession,
        session: SessionManager,
        host: str = API_URL,
    ) -> None:
        """Initialize MysaApi."""
        self._websession = websession
        self._session = session
        self._host = host

    def _resolve_url(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        return f"{self._host}/{path}"

    async def _async_headers(
        self, extra: Mapping[str, str] | None
    ) -> dict[str, str]:
        """Return request headers, signed with the id token unless overridden.

        The API expects the raw id token, without a `Bearer` prefix.
        """
        headers = dict(extra or {})
        if AUTHORIZATION_HEADER not in headers:
            token_set = await self._session.async_get_token_set()
            headers[AUTHORIZATION_HEADER] = token_set.id_token
        return headers

    async def request(
        self,
        method: str,
        url: str,
        **kwargs: Any,
    ) -> aiohttp.ClientResponse:
        """Make an authenticated request to the API."""
        headers = await self._async_headers(kwargs.pop("headers", None))
        url = self._resolve_url(url)
        _LOGGER.debug("Sending %s request to %s", method.upper(), url)
        DIAGNOSTICS.increment(f"request.{method}")
        try:
            return await self._websession.request(
                method, url, headers=headers, **kwargs
            )
        except (ClientError, asyncio.TimeoutError) as err:
            DIAGNOSTICS.increment("request_error")
            raise ApiException(f"Unable to reach the Mysa API: {err}") from err

    async def get(self, url: str, **kwargs: Any) -> aiohttp.ClientResponse:
        """Make a get request and check the response status."""
        response = await self.request("get", url, **kwargs)
        _check_status(response)
        return response

    async def get_json(self, url: str, **kwargs: Any) -> dict[str, Any]:
        """Make a get request and return the JSON object in the response."""
        response = await self.get(url, **kwargs)
        try:
            body = await response.json()
        except (ClientError, ValueError) as err:
            raise ApiException(MALFORMED_RESPONSE) from err
        if not isinstance(body, dict):
            raise ApiException(f"{MALFORMED_RESPONSE}: {body}")
        _LOGGER.debug("Response from %s: %s", url, body)
        return body

    async def async_get_devices(self) -> Devices:
        """Return the devices registered to the account."""
        _LOGGER.debug("Fetching devices")
        return await self._async_get_model(DEVICES_PATH, Devices)

    async def async_get_firmwares(self) -> Firmwares:
        """Return the firmware installed on each device."""
        _LOGGER.debug("Fetching device firmwares")
        return await self._async_get_model(FIRMWARE_PATH, Firmwares)

    async def async_get_device_states(self) -> DeviceStates:
        """Return the last known state of each device."""
        _LOGGER.debug("Fetching device states")
        return await self._async_get_model(STATE_PATH, DeviceStates)

    async def _async_get_model(self, url: str, model: type[_T]) -> _T:
        data = await self.get_json(url)
        try:
            return model.from_dict(data)
        except (LookupError, ValueError) as err:
            raise ApiException(f"{MALFORMED_RESPONSE}: {err}") from err


def _check_status(response: aiohttp.ClientResponse) -> None:
    """Raise an ApiException when the server rejected the request."""
    if response.ok:
        return
    DIAGNOSTICS.increment(f"status.{response.status}")
    raise ApiException(
        f"Request to {response.url} failed with a status of "
        f"{response.status} ({response.reason})",
        status=response.status,
        status_text=response.reason,
    )
