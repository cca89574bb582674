"""Diagnostics for debugging.

Each component of the client records counters for interesting events, such
as token refreshes, broker connections and undecodable messages, which can be
attached to bug reports through `MysaClient.get_diagnostics`.
"""

from __future__ import annotations

import time
from collections import Counter
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from typing import Any

__all__ = [
    "get_diagnostics",
    "redact_data",
]

REDACTED = "**REDACTED**"

# Session fields that identify the user or grant access
REDACT_KEYS = frozenset(
    {
        "username",
        "idToken",
        "accessToken",
        "refreshToken",
    }
)


class Diagnostics:
    """Counters recorded by one component of the client."""

    def __init__(self) -> None:
        """Initialize Diagnostics."""
        self._counter: Counter[str] = Counter()

    def increment(self, key: str, count: int = 1) -> None:
        """Increment the counter for an event."""
        self._counter[key] += count

    def elapsed(self, key_prefix: str, elapsed_ms: int) -> None:
        """Record one occurrence of an operation and the time it took."""
        self._counter[f"{key_prefix}_count"] += 1
        self._counter[f"{key_prefix}_sum"] += elapsed_ms

    @contextmanager
    def timer(self, key_prefix: str) -> Iterator[None]:
        """Record the duration of the wrapped operation, even if it fails."""
        start = time.perf_counter()
        try:
            yield
        finally:
            self.elapsed(key_prefix, int((time.perf_counter() - start) * 1000))

    def as_dict(self) -> dict[str, int]:
        """Return the counters as a dictionary."""
        return dict(self._counter)

    def reset(self) -> None:
        """Clear all counters, for testing."""
        self._counter.clear()


SESSION_DIAGNOSTICS = Diagnostics()
TRANSPORT_DIAGNOSTICS = Diagnostics()
REALTIME_DIAGNOSTICS = Diagnostics()
API_DIAGNOSTICS = Diagnostics()

MAP = {
    "session": SESSION_DIAGNOSTICS,
    "transport": TRANSPORT_DIAGNOSTICS,
    "realtime": REALTIME_DIAGNOSTICS,
    "api": API_DIAGNOSTICS,
}


def reset() -> None:
    """Clear all diagnostics, for testing."""
    for diagnostics in MAP.values():
        diagnostics.reset()


def get_diagnostics() -> dict[str, Any]:
    """Return the counters of every component that recorded any."""
    return {name: data for name, diagnostics in MAP.items() if (data := diagnostics.as_dict())}


def redact_data(data: Any) -> Any:
    """Return a copy of the data with user identity and tokens replaced."""
    if isinstance(data, Mapping):
        return {
            key: REDACTED if key in REDACT_KEYS else redact_data(value)
            for key, value in data.items()
        }
    if isinstance(data, list):
        return [redact_data(item) for item in data]
    return data
