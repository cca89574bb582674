"""Events published by the client to its listeners.

Realtime messages from both generations of device firmware are normalized
into the `Status`, `SetPointChange` and `StateChange` events defined here, so
listeners do not need to know which wire format a device speaks.
"""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Awaitable, Callable, ClassVar

__all__ = [
    "DeviceMode",
    "EventBus",
    "EventType",
    "SetPointChange",
    "StateChange",
    "Status",
]

_LOGGER = logging.getLogger(__name__)


class EventType(StrEnum):
    """Channels available on the EventBus."""

    SESSION_CHANGED = "session_changed"
    """The session was replaced or cleared. Data is a `Session` or None."""

    RAW_MESSAGE_RECEIVED = "raw_message_received"
    """A realtime message was received. Data is the decoded JSON object."""

    STATUS_CHANGED = "status_changed"
    """Data is a `Status`."""

    SETPOINT_CHANGED = "setpoint_changed"
    """Data is a `SetPointChange`."""

    STATE_CHANGED = "state_changed"
    """Data is a `StateChange`."""


class DeviceMode(StrEnum):
    """Operating mode of a device."""

    OFF = "off"
    HEAT = "heat"


@dataclass(frozen=True)
class Status:
    """Periodic status report from a device."""

    EVENT_TYPE: ClassVar[EventType] = EventType.STATUS_CHANGED

    device_id: str
    temperature: float
    humidity: float
    set_point: float
    current: float | None = None
    """Current draw in amps, reported by first generation devices."""

    duty_cycle: float | None = None
    """Heater duty cycle, reported by newer devices."""


@dataclass(frozen=True)
class SetPointChange:
    """The set point of a device was changed."""

    EVENT_TYPE: ClassVar[EventType] = EventType.SETPOINT_CHANGED

    device_id: str
    previous_set_point: float
    new_set_point: float


@dataclass(frozen=True)
class StateChange:
    """The state of a device was changed."""

    EVENT_TYPE: ClassVar[EventType] = EventType.STATE_CHANGED

    device_id: str
    set_point: float
    mode: DeviceMode | None = None
    fan_speed: int | None = None


DeviceEvent = Status | SetPointChange | StateChange

EventCallback = Callable[[Any], Awaitable[None] | None]


class EventBus:
    """Fan out events to listeners registered for each event type."""

    def __init__(self) -> None:
        """Initialize EventBus."""
        self._listeners: dict[EventType, list[EventCallback]] = {}

    def add_listener(
        self, event_type: EventType, callback: EventCallback
    ) -> Callable[[], None]:
        """Register a callback for an event type.

        The callback may be a plain function or a coroutine function. Returns a
        callable that removes the listener.
        """
        self._listeners.setdefault(event_type, []).append(callback)

        def remove_listener() -> None:
            self.remove_listener(event_type, callback)

        return remove_listener

    def remove_listener(self, event_type: EventType, callback: EventCallback) -> None:
        """Remove a previously registered callback."""
        listeners = self._listeners.get(event_type, [])
        if callback in listeners:
            listeners.remove(callback)

    def listener_count(self, event_type: EventType) -> int:
        """Return the number of listeners for an event type."""
        return len(self._listeners.get(event_type, []))

    async def async_emit(self, event_type: EventType, data: Any) -> None:
        """Invoke every listener of the event type in registration order."""
        for callback in list(self._listeners.get(event_type, [])):
            try:
                result = callback(data)
                if inspect.isawaitable(result):
                    await result
            except Exception:  # pylint: disable=broad-except
                _LOGGER.exception("Uncaught error in %s listener", event_type)
