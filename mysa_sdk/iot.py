"""Device attributes stored in the AWS IoT thing registry."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from botocore.exceptions import BotoCoreError, ClientError
from botocore.session import get_session

from .auth import TransportCredentials
from .diagnostics import API_DIAGNOSTICS as DIAGNOSTICS

__all__ = ["async_get_serial_number"]

_LOGGER = logging.getLogger(__name__)

SERIAL_ATTRIBUTE = "Serial"


def _describe_thing(
    region: str, credentials: TransportCredentials, thing_name: str
) -> dict[str, Any]:
    client = get_session().create_client(
        "iot",
        region_name=region,
        aws_access_key_id=credentials.access_key_id,
        aws_secret_access_key=credentials.secret_access_key,
        aws_session_token=credentials.session_token,
    )
    try:
        return client.describe_thing(thingName=thing_name)
    finally:
        client.close()


async def async_get_serial_number(
    region: str, credentials: TransportCredentials, device_id: str
) -> str | None:
    """Return the serial number of a device, or None if it is not available.

    The botocore client is blocking so the lookup runs in a worker thread.
    """
    _LOGGER.debug("Fetching serial number for device '%s'", device_id)
    try:
        response = await asyncio.to_thread(
            _describe_thing, region, credentials, device_id
        )
    except (BotoCoreError, ClientError) as err:
        DIAGNOSTICS.increment("serial_number_error")
        _LOGGER.warning(
            "Could not get serial number for device '%s': %s", device_id, err
        )
        return None
    serial = response.get("attributes", {}).get(SERIAL_ATTRIBUTE)
    if serial is None:
        _LOGGER.debug("Device '%s' has no serial number attribute", device_id)
    return serial
