"""Encoding and decoding of realtime message payloads.

Payloads on the wire are UTF-8 encoded JSON objects. Inbound messages are
first parsed into a plain envelope (a dict), then classified by the type field
they carry and decoded into one of the typed classes in `payloads`.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Mapping

from .exceptions import DecodeException
from .payloads import (
    CURRENT_MESSAGES,
    CURRENT_TYPE_FIELD,
    LEGACY_MESSAGES,
    LEGACY_TYPE_FIELD,
    InboundMessage,
    Payload,
    Schema,
)

__all__ = [
    "parse_payload",
    "discriminate",
    "decode_message",
    "serialize",
]

_LOGGER = logging.getLogger(__name__)


def parse_payload(data: bytes) -> dict[str, Any]:
    """Parse raw message bytes into an envelope.

    Raises DecodeException when the bytes are not UTF-8 encoded JSON or the
    document is not an object. Unknown message types are not an error.
    """
    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError as err:
        raise DecodeException(f"Payload is not valid UTF-8: {err}") from err
    try:
        envelope = json.loads(text)
    except ValueError as err:
        raise DecodeException(f"Payload is not valid JSON: {err}") from err
    if not isinstance(envelope, dict):
        raise DecodeException(
            f"Expected payload to be a JSON object but was {type(envelope).__name__}"
        )
    return envelope


def discriminate(envelope: Mapping[str, Any]) -> Schema | None:
    """Return the wire format of the envelope.

    Exactly one of the legacy or current type fields must be present, otherwise
    the message is not actionable and None is returned.
    """
    legacy = LEGACY_TYPE_FIELD in envelope
    current = CURRENT_TYPE_FIELD in envelope
    if legacy and not current:
        return Schema.LEGACY
    if current and not legacy:
        return Schema.CURRENT
    return None


def decode_message(envelope: Mapping[str, Any]) -> InboundMessage | None:
    """Decode an envelope into its typed message.

    Returns None for envelopes that are ambiguous or have an unknown type
    code. Raises DecodeException when a known message is missing fields.
    """
    schema = discriminate(envelope)
    if schema is None:
        _LOGGER.debug("Ignoring message without a single type field")
        return None
    if schema == Schema.LEGACY:
        registry, code = LEGACY_MESSAGES, envelope[LEGACY_TYPE_FIELD]
    else:
        registry, code = CURRENT_MESSAGES, envelope[CURRENT_TYPE_FIELD]
    if not isinstance(code, int) or isinstance(code, bool) or code not in registry:
        _LOGGER.debug("Ignoring %s message with type %s", schema, code)
        return None
    cls = registry[code]
    try:
        message: InboundMessage = cls.from_dict(envelope)
    except (LookupError, ValueError, TypeError) as err:
        raise DecodeException(
            f"Invalid {schema} message with type {code}: {err}"
        ) from err
    return message


def serialize(command: Payload | Mapping[str, Any]) -> bytes:
    """Encode an outbound command as UTF-8 JSON bytes."""
    if isinstance(command, Payload):
        data = command.to_dict()
    else:
        data = dict(command)
    return json.dumps(data).encode("utf-8")
