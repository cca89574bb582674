"""Builders for commands sent to devices over the realtime transport."""

from __future__ import annotations

import datetime
import time

from .events import DeviceMode
from .model import Device
from .payloads import (
    MODE_CODES,
    ChangeDeviceState,
    ChangeStateBody,
    DeviceCommand,
    Endpoint,
    StartPublishingDeviceStatus,
)

__all__ = [
    "command_type_for_model",
    "device_in_topic",
    "device_out_topic",
    "encode_change_state",
    "encode_start_publishing",
]

DEVICE_IN_TOPIC_FORMAT = "/v1/dev/{device_id}/in"
DEVICE_OUT_TOPIC_FORMAT = "/v1/dev/{device_id}/out"

# Endpoint types used in the `src` and `dest` of current format commands
APP_ENDPOINT_TYPE = 100
DEVICE_ENDPOINT_TYPE = 1

# Ask the device to acknowledge the command
RESPONSE_REQUESTED = 2

DEFAULT_COMMAND_TYPE = 0


def device_in_topic(device_id: str) -> str:
    """Topic the device listens on for commands."""
    return DEVICE_IN_TOPIC_FORMAT.format(device_id=device_id)


def device_out_topic(device_id: str) -> str:
    """Topic the device publishes its messages on."""
    return DEVICE_OUT_TOPIC_FORMAT.format(device_id=device_id)


def command_type_for_model(model: str) -> int:
    """Return the state command type code for a hardware model.

    First generation `BB-V1` devices use 1. `BB-V2` devices use 4, or 5 for
    the `-L` variant. Anything else uses the default code 0.
    """
    if model.startswith("BB-V1"):
        return 1
    if model.startswith("BB-V2"):
        return 5 if model.endswith("-L") else 4
    return DEFAULT_COMMAND_TYPE


def encode_start_publishing(
    device_id: str,
    timeout: datetime.timedelta,
    now: float | None = None,
) -> StartPublishingDeviceStatus:
    """Build a request for the device to publish its status until the timeout."""
    if now is None:
        now = time.time()
    return StartPublishingDeviceStatus(
        device=device_id,
        timestamp=int(now),
        timeout=int(timeout.total_seconds()),
    )


def encode_change_state(
    device: Device,
    username: str,
    set_point: float | None = None,
    mode: DeviceMode | None = None,
    now: float | None = None,
) -> ChangeDeviceState:
    """Build a request to change the set point and/or mode of a device.

    A set point or mode of None leaves that setting unchanged.
    """
    if now is None:
        now = time.time()
    return ChangeDeviceState(
        id=int(now * 1000),
        time=int(now),
        src=Endpoint(ref=username, type=APP_ENDPOINT_TYPE),
        dest=Endpoint(ref=device.id, type=DEVICE_ENDPOINT_TYPE),
        resp=RESPONSE_REQUESTED,
        body=ChangeStateBody(
            type=command_type_for_model(device.model),
            cmd=[
                DeviceCommand(
                    sp=set_point,
                    md=MODE_CODES[mode] if mode is not None else None,
                )
            ],
        ),
    )
