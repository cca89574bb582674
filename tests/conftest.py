"""Fixtures and libraries shared by tests."""

from __future__ import annotations

import asyncio
import base64
import datetime
import json
import logging
import time
from types import SimpleNamespace
from typing import (
    Any,
    AsyncGenerator,
    Awaitable,
    Callable,
    Generator,
    Optional,
)
from unittest.mock import patch

import aiohttp
import aiomqtt
import pytest
from aiohttp.test_utils import TestClient, TestServer

from mysa_sdk import diagnostics
from mysa_sdk.auth import (
    AbstractAuthenticator,
    AbstractCredentialBroker,
    TokenSet,
    TransportCredentials,
)
from mysa_sdk.events import EventBus
from mysa_sdk.realtime import SubscriptionManager
from mysa_sdk.session import Session, SessionManager
from mysa_sdk.transport import TransportConnection

USERNAME = "user@example.com"
PASSWORD = "some-password"
SESSION_TOKEN = "session/token+="

# Keepalive interval of 50ms
FAST_KEEPALIVE = datetime.timedelta(seconds=10, milliseconds=50)

_LOGGER = logging.getLogger(__name__)


def pytest_configure(config: pytest.Config) -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s.%(msecs)03d %(levelname)-8s %(name)s:%(filename)s:%(lineno)s %(message)s",  # noqa: E501
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    if config.getoption("verbose") > 0:
        logging.getLogger().setLevel(logging.DEBUG)


def _b64(data: dict[str, Any]) -> str:
    encoded = base64.urlsafe_b64encode(json.dumps(data).encode())
    return encoded.decode().rstrip("=")


def make_jwt(exp: float | None, subject: str = "subject") -> str:
    """Return an unsigned JWT with the given expiration claim."""
    claims: dict[str, Any] = {"sub": subject}
    if exp is not None:
        claims["exp"] = exp
    return f"{_b64({'alg': 'none'})}.{_b64(claims)}.signature"


def make_token_set(exp: float | None, name: str = "initial") -> TokenSet:
    return TokenSet(
        id_token=make_jwt(exp, name),
        access_token=f"access-{name}",
        refresh_token=f"refresh-{name}",
    )


def make_session(
    exp: float | None, name: str = "initial", username: str = USERNAME
) -> Session:
    token_set = make_token_set(exp, name)
    return Session(
        username=username,
        id_token=token_set.id_token,
        access_token=token_set.access_token,
        refresh_token=token_set.refresh_token,
    )


async def wait_for(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Wait until the predicate is true, letting background tasks run."""
    async with asyncio.timeout(timeout):
        while not predicate():
            await asyncio.sleep(0.01)


class FakeAuthenticator(AbstractAuthenticator):
    """Identity provider that hands out tokens and counts calls."""

    def __init__(self) -> None:
        self.expiration = time.time() + 3600
        self.login_calls: list[tuple[str, str]] = []
        self.refresh_calls: list[str] = []
        self.login_error: Exception | None = None
        self.refresh_error: Exception | None = None
        self.refresh_gate: asyncio.Event | None = None

    async def async_authenticate(self, username: str, password: str) -> TokenSet:
        self.login_calls.append((username, password))
        if self.login_error:
            raise self.login_error
        return make_token_set(self.expiration, f"login-{len(self.login_calls)}")

    async def async_refresh(self, username: str, refresh_token: str) -> TokenSet:
        self.refresh_calls.append(refresh_token)
        if self.refresh_gate:
            await self.refresh_gate.wait()
        if self.refresh_error:
            raise self.refresh_error
        return make_token_set(self.expiration, f"refresh-{len(self.refresh_calls)}")


class FakeCredentialBroker(AbstractCredentialBroker):
    """Hands out fixed transport credentials."""

    def __init__(self) -> None:
        self.id_tokens: list[str] = []
        self.error: Exception | None = None

    async def async_get_credentials(self, id_token: str) -> TransportCredentials:
        self.id_tokens.append(id_token)
        if self.error:
            raise self.error
        return TransportCredentials(
            access_key_id="AKIDEXAMPLE",
            secret_access_key="wJalrXUtnFEMI/K7MDENG+bPxRfiCYEXAMPLEKEY",
            session_token=SESSION_TOKEN,
        )


class FakeMqttClient:
    """Stand in for `aiomqtt.Client` connected to a `FakeBroker`."""

    def __init__(self, broker: FakeBroker, **kwargs: Any) -> None:
        self.broker = broker
        self.kwargs = kwargs
        self.published: list[tuple[str, Any, int]] = []
        self.subscriptions: list[str] = []
        self.unsubscriptions: list[str] = []
        self.entered = False
        self.exited = False
        self._queue: asyncio.Queue[SimpleNamespace | None] = asyncio.Queue()

    @property
    def identifier(self) -> str:
        return str(self.kwargs["identifier"])

    async def __aenter__(self) -> FakeMqttClient:
        if self.broker.connect_gate:
            await self.broker.connect_gate.wait()
        if self.broker.connect_errors:
            raise self.broker.connect_errors.pop(0)
        self.entered = True
        return self

    async def __aexit__(self, *args: Any) -> None:
        self.exited = True

    async def publish(self, topic: str, payload: Any = None, qos: int = 0) -> None:
        if self.broker.publish_error:
            raise self.broker.publish_error
        self.published.append((topic, payload, qos))

    async def subscribe(self, topic: str, qos: int = 0) -> None:
        self.subscriptions.append(topic)

    async def unsubscribe(self, topic: str) -> None:
        self.unsubscriptions.append(topic)

    @property
    def messages(self) -> AsyncGenerator[SimpleNamespace, None]:
        return self._messages()

    async def _messages(self) -> AsyncGenerator[SimpleNamespace, None]:
        while True:
            message = await self._queue.get()
            if message is None:
                raise aiomqtt.MqttError("Disconnected during message iteration")
            yield message

    def deliver(self, topic: str, payload: bytes | dict[str, Any]) -> None:
        """Deliver a message as if it was received from the broker."""
        if isinstance(payload, dict):
            payload = json.dumps(payload).encode()
        self._queue.put_nowait(
            SimpleNamespace(topic=SimpleNamespace(value=topic), payload=payload)
        )

    def drop(self) -> None:
        """Simulate the broker dropping the connection."""
        self._queue.put_nowait(None)

    def published_json(self, topic: str) -> list[dict[str, Any]]:
        return [json.loads(payload) for (t, payload, _) in self.published if t == topic]


class FakeBroker:
    """Records every client created by the library."""

    def __init__(self) -> None:
        self.clients: list[FakeMqttClient] = []
        self.connect_errors: list[Exception] = []
        self.connect_gate: asyncio.Event | None = None
        self.publish_error: Exception | None = None

    def create_client(self, **kwargs: Any) -> FakeMqttClient:
        client = FakeMqttClient(self, **kwargs)
        self.clients.append(client)
        return client

    @property
    def client(self) -> FakeMqttClient:
        """Return the most recently created client."""
        assert self.clients
        return self.clients[-1]


@pytest.fixture(name="mqtt_broker", autouse=True)
def mock_mqtt_broker() -> Generator[FakeBroker, None, None]:
    """Patch the MQTT client so no test talks to a real broker."""
    broker = FakeBroker()
    with patch("mysa_sdk.transport.aiomqtt.Client", side_effect=broker.create_client):
        yield broker


@pytest.fixture(name="app")
def mock_app() -> Generator[aiohttp.web.Application, None, None]:
    yield aiohttp.web.Application()


@pytest.fixture(name="server")
def mock_server(
    app: aiohttp.web.Application,
    aiohttp_server: Callable[[aiohttp.web.Application], Awaitable[TestServer]],
) -> Callable[[], Awaitable[TestServer]]:
    async def _make_server() -> TestServer:
        server = await aiohttp_server(app)
        server.skip_url_asserts = True
        assert isinstance(server, TestServer)
        return server

    return _make_server


@pytest.fixture(name="client")
def mock_client(
    server: Callable[[], Awaitable[TestServer]],
    aiohttp_client: Callable[[TestServer], Awaitable[TestClient]],
) -> Callable[[], Awaitable[TestClient]]:
    # Cache the value so that it can be mutated by a test
    cached_client: Optional[TestClient] = None

    async def _make_client() -> TestClient:
        nonlocal cached_client
        if not cached_client:
            cached_client = await aiohttp_client(await server())
            assert isinstance(cached_client, TestClient)
        return cached_client

    return _make_client


@pytest.fixture(name="authenticator")
def mock_authenticator() -> FakeAuthenticator:
    return FakeAuthenticator()


@pytest.fixture(name="credential_broker")
def mock_credential_broker() -> FakeCredentialBroker:
    return FakeCredentialBroker()


@pytest.fixture(name="event_bus")
def mock_event_bus() -> EventBus:
    return EventBus()


@pytest.fixture(name="initial_session")
def mock_initial_session(authenticator: FakeAuthenticator) -> Session | None:
    """A persisted session that has not expired."""
    return make_session(authenticator.expiration)


@pytest.fixture(name="session_manager")
def mock_session_manager(
    authenticator: FakeAuthenticator,
    event_bus: EventBus,
    initial_session: Session | None,
) -> SessionManager:
    return SessionManager(authenticator, event_bus, initial_session)


@pytest.fixture(name="transport")
async def mock_transport(
    session_manager: SessionManager,
    credential_broker: FakeCredentialBroker,
) -> AsyncGenerator[TransportConnection, None]:
    transport = TransportConnection(session_manager, credential_broker)
    yield transport
    await transport.async_disconnect()


@pytest.fixture(name="keepalive_timeout")
def mock_keepalive_timeout() -> datetime.timedelta:
    return datetime.timedelta(minutes=5)


@pytest.fixture(name="subscription_manager")
async def mock_subscription_manager(
    transport: TransportConnection,
    event_bus: EventBus,
    keepalive_timeout: datetime.timedelta,
) -> AsyncGenerator[SubscriptionManager, None]:
    manager = SubscriptionManager(
        transport, event_bus, keepalive_timeout, resume_delay=datetime.timedelta(0)
    )
    yield manager
    await manager.async_stop_all()


@pytest.fixture(autouse=True)
def reset_diagnostics() -> Generator[None, None, None]:
    yield
    diagnostics.reset()


def assert_diagnostics(actual: dict[str, Any], expected: dict[str, Any]) -> None:
    """Helper method for stripping timing based diagnostics."""

    def scrub_dict(data: dict[str, Any]) -> dict[str, Any]:
        return {k: v for k, v in data.items() if not k.endswith("_sum")}

    actual = {
        k: scrub_dict(v) if isinstance(v, dict) else v for k, v in actual.items()
    }
    assert actual == expected


class EventCallback:
    """A callback that can be used in tests for assertions."""

    def __init__(self) -> None:
        """Initialize EventCallback."""
        self.invoked: bool = False
        self.messages: list[Any] = []

    async def async_handle_event(self, data: Any) -> None:
        self.invoked = True
        self.messages.append(data)
