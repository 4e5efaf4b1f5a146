"""Service layer used by CLI and future UI frontends."""

from __future__ import annotations

import logging
import socket
import uuid
from collections.abc import Iterable
from types import TracebackType

from bluectl.core.adapter import AdapterSession
from bluectl.core.address import to_int
from bluectl.core.config import Settings, load_settings
from bluectl.core.directory import ServiceDatabase, ServiceDirectorySession
from bluectl.core.discovery import DiscoveryEngine, NameResolver
from bluectl.core.model import (
    GIAC,
    DiscoverableMode,
    DiscoveryListener,
    DiscoveryResult,
    SearchResult,
)
from bluectl.core.sdp import ServiceRecord
from bluectl.core.search import SearchTransaction, ServiceSearchEngine
from bluectl.transports.base import Bus
from bluectl.transports.bluez import BluezServiceDatabase

LOGGER = logging.getLogger(__name__)

# Needed by whatever serves the published RFCOMM and L2CAP records.
_SOCKET_CONSTANTS = ("AF_BLUETOOTH", "BTPROTO_RFCOMM", "BTPROTO_L2CAP")


def _as_address(address: int | str) -> int:
    return address if isinstance(address, int) else to_int(address)


class BluetoothService:
    """Wires one adapter to the discovery, search and directory components."""

    def __init__(
        self,
        *,
        bus: Bus | None = None,
        settings: Settings | None = None,
        database: ServiceDatabase | None = None,
    ) -> None:
        self.settings = settings or load_settings()
        if bus is None:
            from bluectl.transports.dbus_bus import SystemDBus

            bus = SystemDBus()
        self.bus = bus
        try:
            self.adapter = AdapterSession.resolve(
                bus,
                self.settings.selector,
                unknown_class_policy=self.settings.unknown_class_policy,
            )
        except Exception:
            bus.close()
            raise
        self.discovery = DiscoveryEngine(self.adapter)
        self.names = NameResolver(self.discovery, self.adapter)
        self.search_engine = ServiceSearchEngine(self.adapter)
        self.directory = ServiceDirectorySession(
            database or BluezServiceDatabase(bus, self.adapter.identity.path)
        )
        self.runtime_warnings = _runtime_warnings()

    def __enter__(self) -> BluetoothService:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def close(self) -> None:
        LOGGER.debug("Shutting down adapter %s", self.adapter.identity.device_id)
        try:
            self.directory.close()
        finally:
            self.bus.close()

    # --- Inquiry

    def discover(self, listener: DiscoveryListener | None = None, *, access_code: int = GIAC) -> DiscoveryResult:
        return self.discovery.start(access_code, listener)

    def cancel_discovery(self) -> bool:
        return self.discovery.cancel()

    def friendly_name(self, address: int | str) -> str:
        return self.names.resolve(_as_address(address))

    # --- Service search

    def begin_search(self, address: int | str) -> SearchTransaction:
        return self.search_engine.begin(_as_address(address))

    def search_services(
        self,
        uuids: Iterable[uuid.UUID | int | str],
        address: int | str,
        *,
        transaction: SearchTransaction | None = None,
    ) -> SearchResult:
        return self.search_engine.search(uuids, _as_address(address), transaction=transaction)

    def cancel_search(self, trans_id: int) -> bool:
        return self.search_engine.cancel(trans_id)

    # --- Local adapter

    def set_discoverable(self, mode: DiscoverableMode) -> bool:
        return self.adapter.set_discoverable(mode)

    def pair(self, address: int | str) -> None:
        self.adapter.create_bonding(_as_address(address))

    def unpair(self, address: int | str) -> None:
        self.adapter.remove_bonding(_as_address(address))

    # --- Published services

    def publish_rfcomm_service(
        self,
        channel: int,
        service_uuid: uuid.UUID | int | str,
        name: str | None = None,
        *,
        obex: bool = False,
    ) -> ServiceRecord:
        record = ServiceRecord.for_rfcomm(channel, service_uuid, name, obex=obex)
        record.device_address = self.adapter.local_address
        self.directory.register(record)
        return record

    def publish_l2cap_service(
        self,
        psm: int,
        service_uuid: uuid.UUID | int | str,
        name: str | None = None,
    ) -> ServiceRecord:
        record = ServiceRecord.for_l2cap(psm, service_uuid, name)
        record.device_address = self.adapter.local_address
        self.directory.register(record)
        return record

    def update_service(self, record: ServiceRecord) -> None:
        self.directory.update(record)

    def withdraw_service(self, record: ServiceRecord) -> None:
        self.directory.unregister(record)


def _runtime_warnings() -> tuple[str, ...]:
    missing = [name for name in _SOCKET_CONSTANTS if not hasattr(socket, name)]
    if not missing:
        return ()
    return (
        f"socket module lacks {', '.join(missing)}; services published from this process cannot accept connections.",
    )
