"""Data model for responses from the REST API."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from mashumaro import DataClassDictMixin, field_options
from mashumaro.config import BaseConfig

__all__ = [
    "Device",
    "Devices",
    "DeviceState",
    "DeviceStates",
    "Firmwares",
    "FirmwareDevice",
    "SupportedCaps",
]


@dataclass
class ApiModel(DataClassDictMixin):
    """Base class for REST API objects."""

    class Config(BaseConfig):
        serialize_by_alias = True
        omit_none = True


@dataclass
class BrandInfo(ApiModel):
    """Brand of a device, for devices sold under another name."""

    brand: str = field(metadata=field_options(alias="Brand"))
    id: int = field(metadata=field_options(alias="Id"))
    remote_model_number: str | None = field(
        metadata=field_options(alias="remoteModelNumber"), default=None
    )
    oem_brand: str | None = field(metadata=field_options(alias="OEMBrand"), default=None)


@dataclass
class ModeCaps(ApiModel):
    """Capabilities of a device in one operating mode."""

    temperatures: list[float] = field(default_factory=list)


@dataclass
class SupportedCaps(ApiModel):
    """Capabilities supported by a device."""

    temp_range: list[float] = field(
        metadata=field_options(alias="tempRange"), default_factory=list
    )
    """Minimum and maximum set point."""

    modes: dict[str, ModeCaps] = field(default_factory=dict)
    version: str | None = None
    keys: list[int] = field(default_factory=list)


@dataclass
class ModeObj(ApiModel):
    """Operating mode as reported by the REST API."""

    id: int = field(metadata=field_options(alias="Id"))


@dataclass
class Device(ApiModel):
    """A device registered to the account."""

    id: str = field(metadata=field_options(alias="Id"))
    model: str = field(metadata=field_options(alias="Model"))
    """Hardware model, for example `BB-V2-1`."""

    name: str | None = field(metadata=field_options(alias="Name"), default=None)
    voltage: float | None = field(metadata=field_options(alias="Voltage"), default=None)
    measured_voltage: float | None = field(
        metadata=field_options(alias="MeasuredVoltage"), default=None
    )
    max_current: str | None = field(
        metadata=field_options(alias="MaxCurrent"), default=None
    )
    heater_type: str | None = field(
        metadata=field_options(alias="HeaterType"), default=None
    )
    min_setpoint: float | None = field(
        metadata=field_options(alias="MinSetpoint"), default=None
    )
    max_setpoint: float | None = field(
        metadata=field_options(alias="MaxSetpoint"), default=None
    )
    mode: ModeObj | None = field(metadata=field_options(alias="Mode"), default=None)
    home: str | None = field(metadata=field_options(alias="Home"), default=None)
    zone: str | None = field(metadata=field_options(alias="Zone"), default=None)
    time_zone: str | None = field(metadata=field_options(alias="TimeZone"), default=None)
    format: str | None = field(metadata=field_options(alias="Format"), default=None)
    owner: str | None = field(metadata=field_options(alias="Owner"), default=None)
    allowed_users: list[str] = field(
        metadata=field_options(alias="AllowedUsers"), default_factory=list
    )
    last_paired: int | None = field(
        metadata=field_options(alias="LastPaired"), default=None
    )
    is_thermostatic: bool | None = field(
        metadata=field_options(alias="IsThermostatic"), default=None
    )
    setup_required: bool | None = field(
        metadata=field_options(alias="SetupRequired"), default=None
    )
    eco_mode: int | None = field(metadata=field_options(alias="ecoMode"), default=None)
    brand: BrandInfo | None = field(metadata=field_options(alias="Brand"), default=None)
    supported_caps: SupportedCaps | None = field(
        metadata=field_options(alias="SupportedCaps"), default=None
    )


@dataclass
class Devices(ApiModel):
    """Response of the device inventory endpoint."""

    devices: dict[str, Device] = field(
        metadata=field_options(alias="DevicesObj"), default_factory=dict
    )


@dataclass
class FirmwareDevice(ApiModel):
    """Firmware installed on a device."""

    device: str = field(metadata=field_options(alias="Device"))
    installed_version: str = field(metadata=field_options(alias="InstalledVersion"))


@dataclass
class Firmwares(ApiModel):
    """Response of the firmware endpoint."""

    firmware: dict[str, FirmwareDevice] = field(
        metadata=field_options(alias="Firmware"), default_factory=dict
    )


@dataclass
class TimestampedValue(ApiModel):
    """A reading with the unix time it was taken."""

    t: int
    v: float


@dataclass
class TimestampedFlag(ApiModel):
    """A boolean reading with the unix time it was taken."""

    t: int
    v: bool


def _reading(alias: str) -> Any:
    return field(metadata=field_options(alias=alias), default=None)


@dataclass
class DeviceState(ApiModel):
    """Last known state of a device."""

    device: str = field(metadata=field_options(alias="Device"))
    timestamp: int = field(metadata=field_options(alias="Timestamp"))
    on_time: TimestampedValue | None = _reading("OnTime")
    off_time: TimestampedValue | None = _reading("OffTime")
    set_point: TimestampedValue | None = _reading("SetPoint")
    brightness: TimestampedValue | None = _reading("Brightness")
    schedule_mode: TimestampedValue | None = _reading("ScheduleMode")
    hold_time: TimestampedValue | None = _reading("HoldTime")
    rssi: TimestampedValue | None = _reading("Rssi")
    tstat_mode: TimestampedValue | None = _reading("TstatMode")
    free_heap: TimestampedValue | None = _reading("FreeHeap")
    sensor_temp: TimestampedValue | None = _reading("SensorTemp")
    corrected_temp: TimestampedValue | None = _reading("CorrectedTemp")
    mode: TimestampedValue | None = _reading("Mode")
    voltage: TimestampedValue | None = _reading("Voltage")
    duty: TimestampedValue | None = _reading("Duty")
    heat_sink: TimestampedValue | None = _reading("HeatSink")
    current: TimestampedValue | None = _reading("Current")
    humidity: TimestampedValue | None = _reading("Humidity")
    lock: TimestampedValue | None = _reading("Lock")
    fan_speed: TimestampedValue | None = _reading("FanSpeed")
    connected: TimestampedFlag | None = _reading("Connected")


@dataclass
class DeviceStates(ApiModel):
    """Response of the device state endpoint."""

    states: dict[str, DeviceState] = field(
        metadata=field_options(alias="DeviceStatesObj"), default_factory=dict
    )
