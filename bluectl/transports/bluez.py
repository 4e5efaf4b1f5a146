"""BlueZ D-Bus names and the daemon-side service database."""

from __future__ import annotations

import itertools
import logging

from bluectl.core.errors import BusError
from bluectl.transports.base import Bus

BLUEZ_SERVICE = "org.bluez"
MANAGER_PATH = "/org/bluez"
MANAGER_INTERFACE = "org.bluez.Manager"
ADAPTER_INTERFACE = "org.bluez.Adapter"
DATABASE_INTERFACE = "org.bluez.Database"
ADAPTER_PATH_PREFIX = "/org/bluez/"
DEVICE_ID_PREFIX = "hci"

# Signatures for methods whose arguments cannot be inferred from Python values.
METHOD_SIGNATURES = {
    "GetRemoteServiceHandles": "ss",
    "GetRemoteServiceRecord": "su",
    "AddServiceRecord": "ay",
    "UpdateServiceRecord": "uay",
    "RemoveServiceRecord": "u",
}

UNREACHABLE_ERRORS = frozenset(
    {
        "org.bluez.Error.HostDown",
        "org.bluez.Error.ConnectionAttemptFailed",
        "org.bluez.Error.NotAvailable",
        "org.bluez.Error.NoSuchDevice",
    }
)

LOGGER = logging.getLogger(__name__)


def error_suffix(exc: BusError) -> str:
    return exc.name.rsplit(".", 1)[-1]


class BluezServiceDatabase:
    """Service record storage backed by the adapter's `org.bluez.Database`.

    A session is bracketed by `RequestSession`/`ReleaseSession` on the
    adapter; records registered through it belong to this connection.
    """

    def __init__(self, bus: Bus, adapter_path: str) -> None:
        self._bus = bus
        self._adapter_path = adapter_path
        self._session_ids = itertools.count(1)

    def open_session(self) -> int:
        self._bus.call(self._adapter_path, ADAPTER_INTERFACE, "RequestSession")
        session = next(self._session_ids)
        LOGGER.debug("Opened service directory session %d on %s", session, self._adapter_path)
        return session

    def close_session(self, session: int) -> None:
        LOGGER.debug("Closing service directory session %d", session)
        self._bus.call(self._adapter_path, ADAPTER_INTERFACE, "ReleaseSession")

    def register(self, session: int, record: bytes) -> int:
        return int(self._bus.call(MANAGER_PATH, DATABASE_INTERFACE, "AddServiceRecord", record))

    def update(self, session: int, handle: int, record: bytes) -> None:
        self._bus.call(MANAGER_PATH, DATABASE_INTERFACE, "UpdateServiceRecord", handle, record)

    def unregister(self, session: int, handle: int, record: bytes) -> None:
        self._bus.call(MANAGER_PATH, DATABASE_INTERFACE, "RemoveServiceRecord", handle)
