"""Realtime updates for devices.

Devices only publish their status for a limited time after being asked to,
so each subscribed device has a keepalive task that repeats the request
shortly before the previous one times out.
"""

from __future__ import annotations

import asyncio
import contextlib
import datetime
import logging
from dataclasses import dataclass

from .codec import decode_message, parse_payload, serialize
from .commands import device_in_topic, device_out_topic, encode_start_publishing
from .diagnostics import REALTIME_DIAGNOSTICS as DIAGNOSTICS
from .events import EventBus, EventType
from .exceptions import DecodeException, MysaException
from .transport import MqttConnection, TransportConnection

__all__ = [
    "SubscriptionManager",
]

_LOGGER = logging.getLogger(__name__)

# How long a device keeps publishing after each request
KEEPALIVE_TIMEOUT = datetime.timedelta(minutes=5)

# Requests are repeated this long before the previous one times out
KEEPALIVE_SAFETY_MARGIN = datetime.timedelta(seconds=10)

# Wait before resubscribing after the broker drops the connection
RESUME_DELAY = datetime.timedelta(seconds=10)


@dataclass
class Subscription:
    """A device receiving realtime updates."""

    device_id: str
    keepalive: asyncio.Task[None]
    connection: MqttConnection
    """The connection the device topic was subscribed on."""


class SubscriptionManager:
    """Tracks the devices receiving realtime updates."""

    def __init__(
        self,
        transport: TransportConnection,
        events: EventBus,
        keepalive_timeout: datetime.timedelta = KEEPALIVE_TIMEOUT,
        resume_delay: datetime.timedelta = RESUME_DELAY,
    ) -> None:
        """Initialize SubscriptionManager."""
        if keepalive_timeout <= KEEPALIVE_SAFETY_MARGIN:
            raise ValueError(
                f"Keepalive timeout must be longer than {KEEPALIVE_SAFETY_MARGIN}"
            )
        self._transport = transport
        self._events = events
        self._keepalive_timeout = keepalive_timeout
        self._resume_delay = resume_delay
        self._subscriptions: dict[str, Subscription] = {}
        self._lock = asyncio.Lock()
        self._resume_task: asyncio.Task[None] | None = None
        transport.add_disconnect_listener(self._handle_disconnect)

    @property
    def device_ids(self) -> list[str]:
        """Return the ids of devices receiving realtime updates."""
        return list(self._subscriptions)

    @property
    def keepalive_interval(self) -> datetime.timedelta:
        """Return the time between keepalive requests."""
        return self._keepalive_timeout - KEEPALIVE_SAFETY_MARGIN

    def is_subscribed(self, device_id: str) -> bool:
        """Return True if the device is receiving realtime updates."""
        return device_id in self._subscriptions

    async def async_start(self, device_id: str) -> None:
        """Start receiving realtime updates for a device.

        Does nothing if updates are already running for the device.
        """
        async with self._lock:
            if device_id in self._subscriptions:
                _LOGGER.debug("Realtime updates for '%s' already started", device_id)
                return
            _LOGGER.info("Starting realtime updates for device '%s'", device_id)
            DIAGNOSTICS.increment("start")

            connection = await self._transport.async_get_connection()
            topic = device_out_topic(device_id)
            async with contextlib.AsyncExitStack() as stack:
                await connection.async_subscribe(topic, self.async_handle_payload)
                stack.push_async_callback(self._async_unsubscribe_quietly, connection, topic)

                await self._async_request_status(connection, device_id)

                keepalive = asyncio.create_task(self._async_run_keepalive(device_id))
                stack.callback(keepalive.cancel)

                self._subscriptions[device_id] = Subscription(
                    device_id, keepalive, connection
                )
                stack.pop_all()

    async def async_stop(self, device_id: str) -> None:
        """Stop receiving realtime updates for a device."""
        async with self._lock:
            _LOGGER.info("Stopping realtime updates for device '%s'", device_id)
            if (subscription := self._subscriptions.get(device_id)) is None:
                _LOGGER.warning("No realtime updates are running for '%s'", device_id)
                return
            DIAGNOSTICS.increment("stop")
            try:
                if subscription.connection is self._transport.connection:
                    await subscription.connection.async_unsubscribe(
                        device_out_topic(device_id)
                    )
            finally:
                subscription.keepalive.cancel()
                del self._subscriptions[device_id]

    async def async_stop_all(self) -> None:
        """Stop realtime updates for every device."""
        if self._resume_task:
            self._resume_task.cancel()
            self._resume_task = None
        for device_id in list(self._subscriptions):
            try:
                await self.async_stop(device_id)
            except MysaException as err:
                _LOGGER.warning(
                    "Error stopping realtime updates for '%s': %s", device_id, err
                )

    async def async_handle_payload(self, payload: bytes) -> None:
        """Publish events for a message received from a device."""
        DIAGNOSTICS.increment("message")
        try:
            envelope = parse_payload(payload)
        except DecodeException as err:
            DIAGNOSTICS.increment("decode_error")
            _LOGGER.warning("Error handling realtime message: %s", err)
            return
        await self._events.async_emit(EventType.RAW_MESSAGE_RECEIVED, envelope)

        try:
            message = decode_message(envelope)
        except DecodeException as err:
            DIAGNOSTICS.increment("decode_error")
            _LOGGER.warning("Error handling realtime message: %s", err)
            return
        if message is None or (event := message.to_event()) is None:
            return
        await self._events.async_emit(event.EVENT_TYPE, event)

    async def _async_request_status(
        self, connection: MqttConnection, device_id: str
    ) -> None:
        """Ask the device to publish its status until the keepalive timeout."""
        _LOGGER.debug("Requesting status from '%s'", device_id)
        command = encode_start_publishing(device_id, self._keepalive_timeout)
        await connection.async_publish(device_in_topic(device_id), serialize(command))

    async def _async_keepalive(self, device_id: str) -> None:
        """Renew the status request, resubscribing on a new connection if needed."""
        if (subscription := self._subscriptions.get(device_id)) is None:
            return
        connection = await self._transport.async_get_connection()
        async with self._lock:
            # The device may have been stopped while connecting
            if self._subscriptions.get(device_id) is not subscription:
                _LOGGER.debug("Realtime updates for '%s' were stopped", device_id)
                return
            if subscription.connection is not connection:
                _LOGGER.debug("Resubscribing to '%s' on new connection", device_id)
                await connection.async_subscribe(
                    device_out_topic(device_id), self.async_handle_payload
                )
                subscription.connection = connection
            await self._async_request_status(connection, device_id)

    async def _async_run_keepalive(self, device_id: str) -> None:
        """Run the keepalive for a device until cancelled."""
        interval = self.keepalive_interval.total_seconds()
        while True:
            await asyncio.sleep(interval)
            _LOGGER.debug("Sending keepalive for '%s'", device_id)
            try:
                await self._async_keepalive(device_id)
            except Exception as err:  # pylint: disable=broad-except
                DIAGNOSTICS.increment("keepalive_error")
                _LOGGER.warning("Error sending keepalive for '%s': %s", device_id, err)

    async def _async_unsubscribe_quietly(
        self, connection: MqttConnection, topic: str
    ) -> None:
        try:
            await connection.async_unsubscribe(topic)
        except MysaException as err:
            _LOGGER.debug("Error unsubscribing from %s: %s", topic, err)

    def _handle_disconnect(self) -> None:
        """Schedule resubscribing every device after the connection was lost."""
        if not self._subscriptions:
            return
        if self._resume_task and not self._resume_task.done():
            return
        _LOGGER.debug("Resuming %d subscriptions", len(self._subscriptions))
        self._resume_task = asyncio.create_task(self._async_resume())

    async def _async_resume(self) -> None:
        await asyncio.sleep(self._resume_delay.total_seconds())
        DIAGNOSTICS.increment("resume")
        for device_id in list(self._subscriptions):
            try:
                await self._async_keepalive(device_id)
            except Exception as err:  # pylint: disable=broad-except
                DIAGNOSTICS.increment("resume_error")
                _LOGGER.warning(
                    "Error resuming realtime updates for '%s': %s", device_id, err
                )
