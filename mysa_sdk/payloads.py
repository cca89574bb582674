"""Wire schemas for realtime messages exchanged with devices.

Devices speak one of two incompatible JSON formats depending on their firmware
generation:

- The legacy format is flat and carries its type code in `MsgType`, with the
  device id in `Device`.
- The current format nests the sender in `src` and the data in `body` and
  carries its type code in `msg`.

Messages sent by a device are registered by type code in `LEGACY_MESSAGES`
or `CURRENT_MESSAGES` so the codec can pick the right class, and know how to
convert themselves into a normalized event.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum, StrEnum
from typing import ClassVar

from mashumaro import DataClassDictMixin, field_options
from mashumaro.config import BaseConfig

from .events import DeviceEvent, DeviceMode, SetPointChange, StateChange, Status
from .registry import Registry

__all__ = [
    "Schema",
    "DeviceMessageType",
    "CommandMessageType",
    "LEGACY_MESSAGES",
    "CURRENT_MESSAGES",
    "DeviceV1Status",
    "DeviceSetpointChange",
    "DeviceLog",
    "DevicePostBoot",
    "DeviceV2Status",
    "DeviceStateChange",
    "StartPublishingDeviceStatus",
    "ChangeDeviceState",
]

LEGACY_TYPE_FIELD = "MsgType"
CURRENT_TYPE_FIELD = "msg"

# Placed in every state command, meaning unknown
COMMAND_SENTINEL = -1

MODE_CODES: dict[DeviceMode, int] = {
    DeviceMode.OFF: 1,
    DeviceMode.HEAT: 3,
}
MODES_BY_CODE = {code: mode for mode, code in MODE_CODES.items()}

LEGACY_MESSAGES = Registry()
CURRENT_MESSAGES = Registry()


class Schema(StrEnum):
    """Generation of the wire format of a message."""

    LEGACY = "legacy"
    CURRENT = "current"


class DeviceMessageType(IntEnum):
    """Type codes of messages published by devices."""

    # Legacy format, in `MsgType`
    V1_STATUS = 0
    SETPOINT_CHANGE = 1
    LOG = 4
    POST_BOOT = 10

    # Current format, in `msg`
    V2_STATUS = 40
    STATE_CHANGE = 44


class CommandMessageType(IntEnum):
    """Type codes of messages sent to devices."""

    # Legacy format, in `MsgType`
    START_PUBLISHING_DEVICE_STATUS = 11

    # Current format, in `msg`
    CHANGE_DEVICE_STATE = 44


@dataclass(kw_only=True)
class Payload(DataClassDictMixin):
    """Base class for all wire messages."""

    class Config(BaseConfig):
        serialize_by_alias = True
        omit_none = True


@dataclass(kw_only=True)
class Endpoint(Payload):
    """Sender or recipient of a current format message."""

    ref: str
    """Device id, or username for messages sent by the app."""

    type: int | None = None


@dataclass(kw_only=True)
class LegacyMessage(Payload):
    """Base class for legacy format messages published by a device."""

    MESSAGE_TYPE: ClassVar[int]

    msg_type: int = field(metadata=field_options(alias=LEGACY_TYPE_FIELD))
    device: str = field(metadata=field_options(alias="Device"))
    timestamp: int | None = field(
        metadata=field_options(alias="Timestamp"), default=None
    )

    @property
    def device_id(self) -> str:
        """Id of the device that published the message."""
        return self.device

    def to_event(self) -> DeviceEvent | None:
        """Return the normalized event for this message, if any."""
        return None


@LEGACY_MESSAGES.register()
@dataclass(kw_only=True)
class DeviceV1Status(LegacyMessage):
    """Periodic status from a first generation device."""

    MESSAGE_TYPE: ClassVar[int] = DeviceMessageType.V1_STATUS

    main_temp: float = field(metadata=field_options(alias="MainTemp"))
    humidity: float = field(metadata=field_options(alias="Humidity"))
    set_point: float = field(metadata=field_options(alias="SetPoint"))
    current: float | None = field(metadata=field_options(alias="Current"), default=None)
    thermistor_temp: float | None = field(
        metadata=field_options(alias="ThermistorTemp"), default=None
    )
    combo_temp: float | None = field(
        metadata=field_options(alias="ComboTemp"), default=None
    )
    stream: int | None = field(metadata=field_options(alias="Stream"), default=None)

    def to_event(self) -> Status:
        return Status(
            device_id=self.device,
            temperature=self.main_temp,
            humidity=self.humidity,
            set_point=self.set_point,
            current=self.current,
        )


@LEGACY_MESSAGES.register()
@dataclass(kw_only=True)
class DeviceSetpointChange(LegacyMessage):
    """The set point was changed, for example with the buttons on the device."""

    MESSAGE_TYPE: ClassVar[int] = DeviceMessageType.SETPOINT_CHANGE

    previous_set_point: float = field(metadata=field_options(alias="Prev"))
    new_set_point: float = field(metadata=field_options(alias="Next"))
    source: int | None = field(metadata=field_options(alias="Source"), default=None)

    def to_event(self) -> SetPointChange:
        return SetPointChange(
            device_id=self.device,
            previous_set_point=self.previous_set_point,
            new_set_point=self.new_set_point,
        )


@LEGACY_MESSAGES.register()
@dataclass(kw_only=True)
class DeviceLog(LegacyMessage):
    """A log line from the device firmware."""

    MESSAGE_TYPE: ClassVar[int] = DeviceMessageType.LOG

    level: str | None = field(metadata=field_options(alias="Level"), default=None)
    message: str | None = field(metadata=field_options(alias="Message"), default=None)


@LEGACY_MESSAGES.register()
@dataclass(kw_only=True)
class DevicePostBoot(LegacyMessage):
    """The device finished booting."""

    MESSAGE_TYPE: ClassVar[int] = DeviceMessageType.POST_BOOT


@dataclass(kw_only=True)
class CurrentMessage(Payload):
    """Base class for current format messages published by a device."""

    MESSAGE_TYPE: ClassVar[int]

    msg: int = field(metadata=field_options(alias=CURRENT_TYPE_FIELD))
    src: Endpoint
    id: int | None = None
    time: int | None = None
    ver: str | None = None

    @property
    def device_id(self) -> str:
        """Id of the device that published the message."""
        return self.src.ref

    def to_event(self) -> DeviceEvent | None:
        """Return the normalized event for this message, if any."""
        return None


@dataclass(kw_only=True)
class V2StatusBody(Payload):
    """Readings in a current format status message."""

    amb_temp: float = field(metadata=field_options(alias="ambTemp"))
    hum: float
    stpt: float
    dty_cycle: float | None = field(
        metadata=field_options(alias="dtyCycle"), default=None
    )


@CURRENT_MESSAGES.register()
@dataclass(kw_only=True)
class DeviceV2Status(CurrentMessage):
    """Periodic status from a newer device."""

    MESSAGE_TYPE: ClassVar[int] = DeviceMessageType.V2_STATUS

    body: V2StatusBody

    def to_event(self) -> Status:
        return Status(
            device_id=self.src.ref,
            temperature=self.body.amb_temp,
            humidity=self.body.hum,
            set_point=self.body.stpt,
            duty_cycle=self.body.dty_cycle,
        )


@dataclass(kw_only=True)
class DeviceStateValues(Payload):
    """Device state reported in a state change message.

    Only the mode, set point and fan speed fields are understood. The
    remaining fields are kept as reported.
    """

    sp: float
    md: int | None = None
    fn: int | None = None
    br: int | None = None
    ho: int | None = None
    lk: int | None = None


@dataclass(kw_only=True)
class StateChangeBody(Payload):
    """Body of a state change message."""

    state: DeviceStateValues
    success: int | None = None
    trig_src: int | None = None
    type: int | None = None


@CURRENT_MESSAGES.register()
@dataclass(kw_only=True)
class DeviceStateChange(CurrentMessage):
    """The state of a newer device was changed."""

    MESSAGE_TYPE: ClassVar[int] = DeviceMessageType.STATE_CHANGE

    body: StateChangeBody

    def to_event(self) -> StateChange:
        state = self.body.state
        return StateChange(
            device_id=self.src.ref,
            set_point=state.sp,
            mode=MODES_BY_CODE.get(state.md) if state.md is not None else None,
            fan_speed=state.fn,
        )


InboundMessage = LegacyMessage | CurrentMessage


@dataclass(kw_only=True)
class StartPublishingDeviceStatus(Payload):
    """Ask a device to publish status messages until the timeout elapses."""

    msg_type: int = field(
        metadata=field_options(alias=LEGACY_TYPE_FIELD),
        default=int(CommandMessageType.START_PUBLISHING_DEVICE_STATUS),
    )
    device: str = field(metadata=field_options(alias="Device"))
    timestamp: int = field(metadata=field_options(alias="Timestamp"))
    timeout: int = field(metadata=field_options(alias="Timeout"))
    """Seconds the device keeps publishing."""


@dataclass(kw_only=True)
class DeviceCommand(Payload):
    """A single entry of the command array of a state change request."""

    tm: int = COMMAND_SENTINEL
    sp: float | None = None
    md: int | None = None


@dataclass(kw_only=True)
class ChangeStateBody(Payload):
    """Body of a state change request."""

    type: int
    """Command type code for the hardware revision of the device."""

    cmd: list[DeviceCommand]
    ver: int = 1


@dataclass(kw_only=True)
class ChangeDeviceState(Payload):
    """Request to change the set point and/or mode of a device."""

    msg: int = int(CommandMessageType.CHANGE_DEVICE_STATE)
    id: int
    time: int
    ver: str = "1.0"
    src: Endpoint
    dest: Endpoint
    resp: int = 2
    body: ChangeStateBody
