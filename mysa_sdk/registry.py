"""Decorator for creating a registry of message types."""

from __future__ import annotations

from typing import Any, Callable, TypeVar

CLASS_T = TypeVar("CLASS_T", bound=type)  # pylint: disable=invalid-name


class Registry(dict[int, Any]):
    """Registry of payload classes keyed by message type code."""

    def register(self, code: int | None = None) -> Callable[[CLASS_T], CLASS_T]:
        """Return decorator to register a class with a specific code.

        When no code is given the class attribute `MESSAGE_TYPE` is used.
        """

        def decorator(cls: CLASS_T) -> CLASS_T:
            """Register decorated class."""
            key = code if code is not None else cls.MESSAGE_TYPE
            if key in self:
                raise ValueError(f"Message type {key} is already registered")
            self[key] = cls
            return cls

        return decorator
