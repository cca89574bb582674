"""Client for the Mysa cloud and realtime device updates."""

from __future__ import annotations

import datetime
import logging
from typing import Any

import aiohttp

from .api import API_URL, MysaApi
from .auth import AbstractAuthenticator, AbstractCredentialBroker
from .codec import serialize
from .commands import device_in_topic, encode_change_state
from .diagnostics import get_diagnostics, redact_data
from .events import DeviceMode, EventBus
from .exceptions import DeviceNotFoundException, UnauthenticatedException
from .iot import async_get_serial_number
from .model import Device, Devices, DeviceStates, Firmwares
from .realtime import KEEPALIVE_TIMEOUT, RESUME_DELAY, SubscriptionManager
from .session import Session, SessionManager
from .transport import TransportConfig, TransportConnection

__all__ = ["MysaClient"]

_LOGGER = logging.getLogger(__name__)


class MysaClient:
    """Authenticate, fetch devices and control them in realtime."""

    def __init__(
        self,
        websession: aiohttp.ClientSession,
        authenticator: AbstractAuthenticator,
        credential_broker: AbstractCredentialBroker,
        session: Session | None = None,
        *,
        host: str = API_URL,
        transport_config: TransportConfig | None = None,
        keepalive_timeout: datetime.timedelta = KEEPALIVE_TIMEOUT,
        resume_delay: datetime.timedelta = RESUME_DELAY,
    ) -> None:
        """Initialize the client, optionally restoring a persisted session."""
        self._events = EventBus()
        self._session = SessionManager(authenticator, self._events, session)
        self._api = MysaApi(websession, self._session, host)
        self._credential_broker = credential_broker
        self._transport_config = transport_config or TransportConfig()
        self._transport = TransportConnection(
            self._session, credential_broker, self._transport_config
        )
        self._subscriptions = SubscriptionManager(
            self._transport, self._events, keepalive_timeout, resume_delay
        )
        self._cached_devices: Devices | None = None

    @property
    def events(self) -> EventBus:
        """Return the bus used to listen for client events."""
        return self._events

    @property
    def session(self) -> Session | None:
        """Return the persistable session, if signed in."""
        return self._session.session

    @property
    def is_authenticated(self) -> bool:
        """Return True if the client has a session."""
        return self._session.is_authenticated

    @property
    def api(self) -> MysaApi:
        """Return the REST API client."""
        return self._api

    @property
    def realtime_device_ids(self) -> list[str]:
        """Return the ids of devices receiving realtime updates."""
        return self._subscriptions.device_ids

    async def async_login(self, username: str, password: str) -> None:
        """Sign in with the given username and password."""
        self._cached_devices = None
        await self._session.async_login(username, password)

    async def async_get_devices(self) -> Devices:
        """Return the devices registered to the account."""
        return await self._api.async_get_devices()

    async def async_get_firmwares(self) -> Firmwares:
        """Return the firmware installed on each device."""
        return await self._api.async_get_firmwares()

    async def async_get_device_states(self) -> DeviceStates:
        """Return the last known state of each device."""
        return await self._api.async_get_device_states()

    async def async_get_device_serial_number(self, device_id: str) -> str | None:
        """Return the serial number of a device, or None if it is not available."""
        token_set = await self._session.async_get_token_set()
        credentials = await self._credential_broker.async_get_credentials(
            token_set.id_token
        )
        return await async_get_serial_number(
            self._transport_config.region, credentials, device_id
        )

    async def async_set_device_state(
        self,
        device_id: str,
        set_point: float | None = None,
        mode: DeviceMode | None = None,
    ) -> None:
        """Change the set point and/or mode of a device.

        A set point or mode of None leaves that setting unchanged.
        """
        _LOGGER.debug("Setting device state for '%s'", device_id)
        device = await self._async_get_cached_device(device_id)
        connection = await self._transport.async_get_connection()
        if (session := self._session.session) is None:
            raise UnauthenticatedException("Session was cleared while connecting")
        command = encode_change_state(device, session.username, set_point, mode)
        await connection.async_publish(device_in_topic(device_id), serialize(command))

    async def async_start_realtime_updates(self, device_id: str) -> None:
        """Start receiving realtime updates for a device."""
        await self._subscriptions.async_start(device_id)

    async def async_stop_realtime_updates(self, device_id: str) -> None:
        """Stop receiving realtime updates for a device."""
        await self._subscriptions.async_stop(device_id)

    async def async_close(self) -> None:
        """Stop all realtime updates and disconnect from the broker."""
        await self._subscriptions.async_stop_all()
        await self._transport.async_disconnect()

    def get_diagnostics(self) -> dict[str, Any]:
        """Return diagnostics for the client, with credentials redacted."""
        session = self._session.session
        return {
            **get_diagnostics(),
            "client": {
                "session": redact_data(session.to_dict()) if session else None,
                "connected": self._transport.connection is not None,
                "realtime_device_ids": self._subscriptions.device_ids,
            },
        }

    async def _async_get_cached_device(self, device_id: str) -> Device:
        """Return a device from the cached inventory, fetching it when needed."""
        if self._cached_devices is None or device_id not in self._cached_devices.devices:
            _LOGGER.debug("Refreshing device cache")
            self._cached_devices = await self._api.async_get_devices()
        if (device := self._cached_devices.devices.get(device_id)) is None:
            raise DeviceNotFoundException(f"Device '{device_id}' was not found")
        return device
