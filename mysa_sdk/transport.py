"""Realtime transport over MQTT.

The client keeps a single MQTT connection to the broker, shared by every
device subscription and command. The connection is created lazily from
transport credentials derived from the current session, dropped when the
broker disconnects, and created again on next use.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import ssl
import time
import urllib.parse
import uuid
from dataclasses import dataclass
from typing import Awaitable, Callable

import aiomqtt
from botocore.auth import SigV4QueryAuth
from botocore.awsrequest import AWSRequest
from botocore.credentials import Credentials

from .auth import AbstractCredentialBroker, TransportCredentials
from .diagnostics import TRANSPORT_DIAGNOSTICS as DIAGNOSTICS
from .exceptions import MysaException, PublishException, TransportException
from .session import SessionManager

__all__ = [
    "MqttConnection",
    "TransportConfig",
    "TransportConnection",
]

_LOGGER = logging.getLogger(__name__)

MQTT_ENDPOINT = "a3q27gia9qg3zy-ats.iot.us-east-1.amazonaws.com"
AWS_REGION = "us-east-1"
IOT_SERVICE_NAME = "iotdevicegateway"
WEBSOCKET_PORT = 443
WEBSOCKET_PATH = "/mqtt"
SECURITY_TOKEN_PARAM = "X-Amz-Security-Token"
PRESIGNED_URL_EXPIRES_SECONDS = 86400

MessageHandler = Callable[[bytes], Awaitable[None]]
DisconnectListener = Callable[[], None]


@dataclass(frozen=True)
class TransportConfig:
    """Settings for connecting to the realtime broker."""

    endpoint: str = MQTT_ENDPOINT
    region: str = AWS_REGION
    port: int = WEBSOCKET_PORT
    keepalive_seconds: int = 30
    operation_timeout_seconds: float = 60.0
    client_id_prefix: str = "mysa-py-sdk"

    def new_client_id(self) -> str:
        """Return a client id that is unique for each connection attempt."""
        return f"{self.client_id_prefix}-{int(time.time())}-{uuid.uuid4().hex[:8]}"


def presign_websocket_path(
    config: TransportConfig, credentials: TransportCredentials
) -> str:
    """Return the websocket path with a SigV4 signed query string.

    The broker expects the session token to be added after signing, so it is
    not part of the signature.
    """
    request = AWSRequest(method="GET", url=f"wss://{config.endpoint}{WEBSOCKET_PATH}")
    SigV4QueryAuth(
        Credentials(credentials.access_key_id, credentials.secret_access_key),
        IOT_SERVICE_NAME,
        config.region,
        expires=PRESIGNED_URL_EXPIRES_SECONDS,
    ).add_auth(request)
    url = urllib.parse.urlsplit(request.url)
    path = f"{url.path}?{url.query}"
    if credentials.session_token:
        token = urllib.parse.quote(credentials.session_token, safe="")
        path += f"&{SECURITY_TOKEN_PARAM}={token}"
    return path


class MqttConnection:
    """A live connection to the broker.

    Received messages are read by a single background task and passed, in
    the order they arrive, to the handler registered for their topic.
    """

    def __init__(
        self,
        config: TransportConfig,
        credentials: TransportCredentials,
        on_disconnect: Callable[[MqttConnection], None],
    ) -> None:
        """Initialize MqttConnection."""
        self._config = config
        self._credentials = credentials
        self._on_disconnect = on_disconnect
        self._client_id = config.new_client_id()
        self._client: aiomqtt.Client | None = None
        self._exit_stack = contextlib.AsyncExitStack()
        self._handlers: dict[str, MessageHandler] = {}
        self._reader_task: asyncio.Task[None] | None = None
        self._closed = False

    @property
    def client_id(self) -> str:
        """Return the MQTT client id of this connection."""
        return self._client_id

    @property
    def connected(self) -> bool:
        """Return True until the connection is closed or lost."""
        return self._client is not None and not self._closed

    async def async_connect(self) -> None:
        """Connect to the broker and start reading messages."""
        client = aiomqtt.Client(
            hostname=self._config.endpoint,
            port=self._config.port,
            identifier=self._client_id,
            transport="websockets",
            websocket_path=presign_websocket_path(self._config, self._credentials),
            tls_context=ssl.create_default_context(),
            clean_session=True,
            keepalive=self._config.keepalive_seconds,
            timeout=self._config.operation_timeout_seconds,
        )
        _LOGGER.debug("Connecting to %s as %s", self._config.endpoint, self._client_id)
        try:
            await self._exit_stack.enter_async_context(client)
        except aiomqtt.MqttError as err:
            DIAGNOSTICS.increment("connect_error")
            raise TransportException(f"Error connecting to broker: {err}") from err
        self._client = client
        self._reader_task = asyncio.create_task(self._async_read_messages())
        _LOGGER.debug("Connected to broker")

    def _get_client(self) -> aiomqtt.Client:
        if self._client is None or self._closed:
            raise TransportException("Connection to broker is not available")
        return self._client

    async def async_publish(
        self, topic: str, payload: bytes, at_least_once: bool = True
    ) -> None:
        """Publish a message."""
        client = self._get_client()
        _LOGGER.debug("Publishing to %s", topic)
        try:
            await client.publish(topic, payload, qos=1 if at_least_once else 0)
        except aiomqtt.MqttError as err:
            DIAGNOSTICS.increment("publish_error")
            raise PublishException(
                f"Error publishing to {topic}: {err}", attempts=1, cause=err
            ) from err

    async def async_subscribe(
        self, topic: str, handler: MessageHandler, at_least_once: bool = True
    ) -> None:
        """Subscribe to a topic, passing each received payload to the handler."""
        client = self._get_client()
        _LOGGER.debug("Subscribing to %s", topic)
        self._handlers[topic] = handler
        try:
            await client.subscribe(topic, qos=1 if at_least_once else 0)
        except aiomqtt.MqttError as err:
            self._handlers.pop(topic, None)
            DIAGNOSTICS.increment("subscribe_error")
            raise TransportException(f"Error subscribing to {topic}: {err}") from err

    async def async_unsubscribe(self, topic: str) -> None:
        """Unsubscribe from a topic."""
        client = self._get_client()
        _LOGGER.debug("Unsubscribing from %s", topic)
        try:
            await client.unsubscribe(topic)
        except aiomqtt.MqttError as err:
            DIAGNOSTICS.increment("unsubscribe_error")
            raise TransportException(f"Error unsubscribing from {topic}: {err}") from err
        self._handlers.pop(topic, None)

    async def async_close(self) -> None:
        """Close the connection without reporting a disconnect."""
        if self._closed:
            return
        self._closed = True
        if self._reader_task:
            self._reader_task.cancel()
        try:
            await self._exit_stack.aclose()
        except aiomqtt.MqttError as err:
            _LOGGER.debug("Error while disconnecting: %s", err)
        _LOGGER.debug("Connection %s closed", self._client_id)

    async def _async_read_messages(self) -> None:
        """Dispatch received messages until the connection is lost."""
        client = self._get_client()
        try:
            async for message in client.messages:
                topic = message.topic.value
                handler = self._handlers.get(topic)
                if handler is None:
                    _LOGGER.debug("Ignoring message on %s", topic)
                    continue
                payload = message.payload
                if isinstance(payload, str):
                    payload = payload.encode("utf-8")
                elif not isinstance(payload, (bytes, bytearray)):
                    _LOGGER.debug("Ignoring message without payload on %s", topic)
                    continue
                try:
                    await handler(bytes(payload))
                except Exception:  # pylint: disable=broad-except
                    _LOGGER.exception("Uncaught error handling message on %s", topic)
        except aiomqtt.MqttError as err:
            _LOGGER.info("Connection to broker lost: %s", err)
        if self._closed:
            return
        self._closed = True
        DIAGNOSTICS.increment("disconnect")
        self._on_disconnect(self)
        with contextlib.suppress(aiomqtt.MqttError):
            await self._exit_stack.aclose()


@dataclass(frozen=True)
class Disconnected:
    """No connection and no connection attempt in progress."""


@dataclass(frozen=True)
class Connecting:
    """A connection attempt is in progress; callers share its task."""

    task: asyncio.Task[MqttConnection]


@dataclass(frozen=True)
class Connected:
    """A live connection."""

    connection: MqttConnection


ConnectionState = Disconnected | Connecting | Connected


class TransportConnection:
    """Owns the single shared connection to the broker."""

    def __init__(
        self,
        session: SessionManager,
        credential_broker: AbstractCredentialBroker,
        config: TransportConfig | None = None,
    ) -> None:
        """Initialize TransportConnection."""
        self._session = session
        self._credential_broker = credential_broker
        self._config = config or TransportConfig()
        self._state: ConnectionState = Disconnected()
        self._disconnect_listeners: list[DisconnectListener] = []

    @property
    def state(self) -> ConnectionState:
        """Return the current connection state."""
        return self._state

    @property
    def connection(self) -> MqttConnection | None:
        """Return the live connection, if any, without connecting."""
        if isinstance(self._state, Connected):
            return self._state.connection
        return None

    def add_disconnect_listener(self, listener: DisconnectListener) -> Callable[[], None]:
        """Register a callback invoked when the broker drops the connection."""
        self._disconnect_listeners.append(listener)

        def remove_listener() -> None:
            self._disconnect_listeners.remove(listener)

        return remove_listener

    async def async_get_connection(self) -> MqttConnection:
        """Return the live connection, connecting if needed.

        Concurrent callers share a single connection attempt. A failed
        attempt is discarded so the next call starts over.
        """
        state = self._state
        if isinstance(state, Connected):
            return state.connection
        if isinstance(state, Disconnected):
            state = Connecting(asyncio.create_task(self._async_connect()))
            self._state = state
        return await asyncio.shield(state.task)

    async def _async_connect(self) -> MqttConnection:
        """Run the connect sequence and record the outcome in the state."""
        task = asyncio.current_task()

        def is_current_attempt() -> bool:
            return isinstance(self._state, Connecting) and self._state.task is task

        DIAGNOSTICS.increment("connect")
        try:
            with DIAGNOSTICS.timer("connect"):
                connection = await self._async_create_connection()
        except BaseException:
            if is_current_attempt():
                self._state = Disconnected()
            raise
        if not is_current_attempt():
            # Disconnected explicitly while connecting
            await connection.async_close()
            raise TransportException("Connection attempt was cancelled")
        self._state = Connected(connection)
        return connection

    async def _async_create_connection(self) -> MqttConnection:
        token_set = await self._session.async_get_token_set()
        try:
            credentials = await self._credential_broker.async_get_credentials(
                token_set.id_token
            )
        except MysaException:
            raise
        except Exception as err:  # pylint: disable=broad-except
            DIAGNOSTICS.increment("credentials_error")
            raise TransportException(
                f"Error obtaining transport credentials: {err}"
            ) from err
        connection = MqttConnection(self._config, credentials, self._handle_disconnect)
        await connection.async_connect()
        return connection

    def _handle_disconnect(self, connection: MqttConnection) -> None:
        """Forget a connection dropped by the broker."""
        if self.connection is not connection:
            return
        _LOGGER.info("Disconnected from broker")
        self._state = Disconnected()
        for listener in list(self._disconnect_listeners):
            try:
                listener()
            except Exception:  # pylint: disable=broad-except
                _LOGGER.exception("Uncaught error in disconnect listener")

    async def async_disconnect(self) -> None:
        """Close the connection, if any."""
        state = self._state
        self._state = Disconnected()
        if isinstance(state, Connecting):
            state.task.cancel()
            with contextlib.suppress(asyncio.CancelledError, MysaException):
                await state.task
        elif isinstance(state, Connected):
            await state.connection.async_close()

    async def async_publish(
        self, topic: str, payload: bytes, at_least_once: bool = True
    ) -> None:
        """Publish a message on the shared connection."""
        connection = await self.async_get_connection()
        await connection.async_publish(topic, payload, at_least_once)

    async def async_subscribe(
        self, topic: str, handler: MessageHandler, at_least_once: bool = True
    ) -> None:
        """Subscribe to a topic on the shared connection."""
        connection = await self.async_get_connection()
        await connection.async_subscribe(topic, handler, at_least_once)

    async def async_unsubscribe(self, topic: str) -> None:
        """Unsubscribe from a topic on the shared connection."""
        connection = await self.async_get_connection()
        await connection.async_unsubscribe(topic)
