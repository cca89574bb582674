from __future__ import annotations

import time
from typing import Any, Awaitable, Callable, cast

import aiohttp
import pytest
from aiohttp.test_utils import TestClient

from mysa_sdk import diagnostics
from mysa_sdk.api import MysaApi
from mysa_sdk.exceptions import ApiException, UnauthenticatedException
from mysa_sdk.session import SessionManager

from .conftest import FakeAuthenticator, make_session, make_token_set

DEVICES_RESPONSE = {
    "DevicesObj": {
        "dev1": {
            "Id": "dev1",
            "Model": "BB-V2-3",
            "Name": "Living Room",
            "Voltage": 240,
            "MaxCurrent": "15",
            "HeaterType": "baseboard",
            "MinSetpoint": 5,
            "MaxSetpoint": 30,
            "Mode": {"Id": 3},
            "Home": "home-1",
            "TimeZone": "America/Toronto",
            "Format": "celsius",
            "AllowedUsers": ["user-1"],
            "ecoMode": 1,
            "Brand": {"Brand": "Mysa", "Id": 0, "OEMBrand": "mysa"},
            "SupportedCaps": {
                "tempRange": [5, 30],
                "modes": {"1": {}, "3": {"temperatures": [20, 21]}},
                "version": "1.0",
                "keys": [1, 2],
            },
        },
        "dev2": {"Id": "dev2", "Model": "BB-V1-1"},
    }
}

FIRMWARE_RESPONSE = {
    "Firmware": {
        "dev1": {"Device": "dev1", "InstalledVersion": "3.13.2.5"},
        "dev2": {"Device": "dev2", "InstalledVersion": "2.71.1"},
    }
}

STATES_RESPONSE = {
    "DeviceStatesObj": {
        "dev1": {
            "Device": "dev1",
            "Timestamp": 1700000000,
            "SetPoint": {"t": 1700000000, "v": 21.5},
            "CorrectedTemp": {"t": 1700000000, "v": 20.75},
            "Humidity": {"t": 1700000000, "v": 41},
            "Duty": {"t": 1700000000, "v": 0.5},
            "Connected": {"t": 1700000000, "v": True},
        }
    }
}


class Recorder:
    def __init__(self) -> None:
        self.authorization: list[str] = []


@pytest.fixture(name="recorder")
def mock_recorder() -> Recorder:
    return Recorder()


def json_handler(
    recorder: Recorder, data: Any, status: int = 200
) -> Callable[[aiohttp.web.Request], Awaitable[aiohttp.web.Response]]:
    async def handler(request: aiohttp.web.Request) -> aiohttp.web.Response:
        recorder.authorization.append(request.headers["Authorization"])
        return aiohttp.web.json_response(data, status=status)

    return handler


@pytest.fixture(name="api_client")
def mock_api_client(
    client: Callable[[], Awaitable[TestClient]],
    session_manager: SessionManager,
) -> Callable[[], Awaitable[MysaApi]]:
    """Fixture to provide an API client to avoid freezing the http router."""

    async def make_api() -> MysaApi:
        return MysaApi(
            cast(aiohttp.ClientSession, await client()), session_manager, host=""
        )

    return make_api


async def test_get_devices(
    app: aiohttp.web.Application,
    recorder: Recorder,
    api_client: Callable[[], Awaitable[MysaApi]],
    session_manager: SessionManager,
) -> None:
    app.router.add_get("/devices", json_handler(recorder, DEVICES_RESPONSE))
    api = await api_client()

    devices = await api.async_get_devices()
    assert sorted(devices.devices) == ["dev1", "dev2"]
    device = devices.devices["dev1"]
    assert device.id == "dev1"
    assert device.model == "BB-V2-3"
    assert device.name == "Living Room"
    assert device.voltage == 240
    assert device.mode and device.mode.id == 3
    assert device.brand and device.brand.oem_brand == "mysa"
    assert device.supported_caps
    assert device.supported_caps.temp_range == [5, 30]
    assert device.supported_caps.modes["3"].temperatures == [20, 21]
    assert device.supported_caps.modes["1"].temperatures == []
    assert device.supported_caps.keys == [1, 2]

    other = devices.devices["dev2"]
    assert other.model == "BB-V1-1"
    assert other.name is None
    assert other.supported_caps is None

    token_set = await session_manager.async_get_token_set()
    assert recorder.authorization == [token_set.id_token]
    assert diagnostics.get_diagnostics() == {"api": {"request.get": 1}}


async def test_get_firmwares(
    app: aiohttp.web.Application,
    recorder: Recorder,
    api_client: Callable[[], Awaitable[MysaApi]],
) -> None:
    app.router.add_get("/devices/firmware", json_handler(recorder, FIRMWARE_RESPONSE))
    api = await api_client()

    firmwares = await api.async_get_firmwares()
    assert firmwares.firmware["dev1"].installed_version == "3.13.2.5"
    assert firmwares.firmware["dev2"].device == "dev2"


async def test_get_device_states(
    app: aiohttp.web.Application,
    recorder: Recorder,
    api_client: Callable[[], Awaitable[MysaApi]],
) -> None:
    app.router.add_get("/devices/state", json_handler(recorder, STATES_RESPONSE))
    api = await api_client()

    states = await api.async_get_device_states()
    state = states.states["dev1"]
    assert state.device == "dev1"
    assert state.timestamp == 1700000000
    assert state.set_point and state.set_point.v == 21.5
    assert state.corrected_temp and state.corrected_temp.v == 20.75
    assert state.connected and state.connected.v is True
    assert state.rssi is None


@pytest.mark.parametrize(
    "initial_session", [make_session(time.time() - 60, "expired")]
)
async def test_refreshes_expired_session(
    app: aiohttp.web.Application,
    recorder: Recorder,
    api_client: Callable[[], Awaitable[MysaApi]],
    authenticator: FakeAuthenticator,
) -> None:
    app.router.add_get("/devices", json_handler(recorder, DEVICES_RESPONSE))
    api = await api_client()

    await api.async_get_devices()
    assert authenticator.refresh_calls == ["refresh-expired"]
    assert recorder.authorization == [
        make_token_set(authenticator.expiration, "refresh-1").id_token
    ]


@pytest.mark.parametrize("initial_session", [None])
async def test_no_session(
    app: aiohttp.web.Application,
    recorder: Recorder,
    api_client: Callable[[], Awaitable[MysaApi]],
) -> None:
    app.router.add_get("/devices", json_handler(recorder, DEVICES_RESPONSE))
    api = await api_client()

    with pytest.raises(UnauthenticatedException):
        await api.async_get_devices()
    assert not recorder.authorization


async def test_custom_authorization_header(
    app: aiohttp.web.Application,
    recorder: Recorder,
    api_client: Callable[[], Awaitable[MysaApi]],
) -> None:
    app.router.add_get("/devices", json_handler(recorder, DEVICES_RESPONSE))
    api = await api_client()

    await api.get("devices", headers={"Authorization": "other-token"})
    assert recorder.authorization == ["other-token"]


@pytest.mark.parametrize(
    ("status", "reason"),
    [
        (401, "Unauthorized"),
        (404, "Not Found"),
        (500, "Internal Server Error"),
    ],
)
async def test_error_status(
    app: aiohttp.web.Application,
    recorder: Recorder,
    api_client: Callable[[], Awaitable[MysaApi]],
    status: int,
    reason: str,
) -> None:
    app.router.add_get(
        "/devices", json_handler(recorder, {"message": "error"}, status=status)
    )
    api = await api_client()

    with pytest.raises(ApiException) as exc_info:
        await api.async_get_devices()
    assert exc_info.value.status == status
    assert exc_info.value.status_text == reason
    assert f"status of {status}" in str(exc_info.value)
    assert diagnostics.get_diagnostics()["api"][f"status.{status}"] == 1


async def test_malformed_json(
    app: aiohttp.web.Application,
    api_client: Callable[[], Awaitable[MysaApi]],
) -> None:
    async def handler(request: aiohttp.web.Request) -> aiohttp.web.Response:
        return aiohttp.web.Response(body="not json", content_type="application/json")

    app.router.add_get("/devices", handler)
    api = await api_client()

    with pytest.raises(ApiException) as exc_info:
        await api.async_get_devices()
    assert exc_info.value.status is None


@pytest.mark.parametrize(
    "response",
    [
        [1, 2, 3],
        {"DevicesObj": {"dev1": {"Id": "dev1"}}},
        {"DevicesObj": {"dev1": {"Model": "BB-V2-3"}}},
    ],
)
async def test_malformed_response(
    app: aiohttp.web.Application,
    recorder: Recorder,
    api_client: Callable[[], Awaitable[MysaApi]],
    response: Any,
) -> None:
    app.router.add_get("/devices", json_handler(recorder, response))
    api = await api_client()

    with pytest.raises(ApiException, match="malformed"):
        await api.async_get_devices()


async def test_connection_error(
    session_manager: SessionManager,
) -> None:
    async with aiohttp.ClientSession() as websession:
        api = MysaApi(websession, session_manager, host="http://127.0.0.1:1")
        with pytest.raises(ApiException) as exc_info:
            await api.async_get_devices()
    assert exc_info.value.status is None
    assert diagnostics.get_diagnostics()["api"]["request_error"] == 1
