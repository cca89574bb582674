"""Library for using the Mysa smart thermostat cloud.

The primary components in this library are:
- `auth`: You need to implement `AbstractAuthenticator` and
  `AbstractCredentialBroker` to sign in and to obtain realtime credentials.
- `client`: `MysaClient` ties the REST API and realtime updates together.
- `events`: The `EventBus` and the normalized events it publishes.
- `session`: The persistable `Session`, refreshed as needed.
- `transport`: The single shared MQTT connection to the broker.
- `realtime`: Per device subscriptions and keepalives.

Example usage:
```
    client = MysaClient(websession, authenticator, credential_broker, session)
    client.events.add_listener(EventType.SESSION_CHANGED, save_session)
    client.events.add_listener(EventType.STATUS_CHANGED, print)

    if not client.is_authenticated:
        await client.async_login(username, password)

    devices = await client.async_get_devices()
    for device_id in devices.devices:
        await client.async_start_realtime_updates(device_id)

    await client.async_set_device_state(device_id, set_point=21.5)

    await client.async_close()  # Stop updates when done
```
"""

__all__ = [
    "api",
    "auth",
    "client",
    "codec",
    "commands",
    "diagnostics",
    "events",
    "exceptions",
    "iot",
    "model",
    "payloads",
    "realtime",
    "session",
    "transport",
]
