"""Supported entry point for programs that drive a local Bluetooth adapter.

`Client` and the names in ``__all__`` keep their signatures across releases;
the ``bluectl.core`` and ``bluectl.transports`` modules behind them may change.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable
from dataclasses import dataclass
from types import TracebackType

from bluectl.core.config import Settings
from bluectl.core.errors import (
    AdapterNotFoundError,
    AlreadyRunningError,
    BluectlError,
    BondingError,
    BusError,
    ConfigError,
    MalformedAddressError,
    NameNotAvailableError,
    OperationInterruptedError,
    RegistrationUnavailableError,
    ServiceRecordError,
    ServiceRegistrationError,
    StateChangeFailedError,
    TransportError,
    TransportUnavailableError,
)
from bluectl.core.model import (
    GIAC,
    LIAC,
    AdapterSelector,
    DeviceClass,
    DiscoverableMode,
    DiscoveredDevice,
    DiscoveryListener,
    DiscoveryResult,
    InquiryStatus,
    KnownDevice,
    SearchResult,
    SearchStatus,
)
from bluectl.core.sdp import DataElement, ServiceRecord
from bluectl.core.service import BluetoothService
from bluectl.transports.base import Bus

__all__ = [
    "BluectlError",
    "AdapterNotFoundError",
    "AlreadyRunningError",
    "BondingError",
    "BusError",
    "ConfigError",
    "MalformedAddressError",
    "NameNotAvailableError",
    "OperationInterruptedError",
    "RegistrationUnavailableError",
    "ServiceRecordError",
    "ServiceRegistrationError",
    "StateChangeFailedError",
    "TransportError",
    "TransportUnavailableError",
    "GIAC",
    "LIAC",
    "AdapterSelector",
    "DeviceClass",
    "DiscoverableMode",
    "DiscoveredDevice",
    "DiscoveryListener",
    "DiscoveryResult",
    "InquiryStatus",
    "KnownDevice",
    "SearchResult",
    "SearchStatus",
    "DataElement",
    "ServiceRecord",
    "Bus",
    "LocalDeviceInfo",
    "Client",
]


@dataclass(frozen=True)
class LocalDeviceInfo:
    """Snapshot of the local adapter's identity and state."""

    device_id: str
    address: int
    name: str | None
    device_class: DeviceClass
    powered_on: bool
    discoverable: DiscoverableMode


class Client:
    """One connection to the Bluetooth daemon bound to one selected adapter.

    Without ``bus`` the system D-Bus is opened. `close` releases the bus
    either way.
    """

    def __init__(
        self,
        *,
        bus: Bus | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._service = BluetoothService(bus=bus, settings=settings)

    def __enter__(self) -> Client:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def close(self) -> None:
        self._service.close()

    @property
    def runtime_warnings(self) -> tuple[str, ...]:
        return self._service.runtime_warnings

    def local_device(self) -> LocalDeviceInfo:
        adapter = self._service.adapter
        return LocalDeviceInfo(
            device_id=adapter.identity.device_id,
            address=adapter.local_address,
            name=adapter.local_name(),
            device_class=adapter.device_class(),
            powered_on=adapter.is_powered_on(),
            discoverable=adapter.discoverable_mode(),
        )

    def list_adapters(self) -> list[str]:
        return self._service.adapter.list_adapters()

    def known_devices(self) -> list[KnownDevice]:
        return self._service.adapter.known_devices()

    def discover(
        self,
        listener: DiscoveryListener | None = None,
        *,
        access_code: int = GIAC,
    ) -> DiscoveryResult:
        return self._service.discover(listener, access_code=access_code)

    def cancel_discovery(self) -> bool:
        return self._service.cancel_discovery()

    def friendly_name(self, address: int | str) -> str:
        return self._service.friendly_name(address)

    def search_services(
        self,
        uuids: Iterable[uuid.UUID | int | str],
        address: int | str,
    ) -> SearchResult:
        return self._service.search_services(uuids, address)

    def cancel_search(self, trans_id: int) -> bool:
        return self._service.cancel_search(trans_id)

    def set_discoverable(self, mode: DiscoverableMode) -> bool:
        return self._service.set_discoverable(mode)

    def pair(self, address: int | str) -> None:
        self._service.pair(address)

    def unpair(self, address: int | str) -> None:
        self._service.unpair(address)

    def publish_rfcomm_service(
        self,
        channel: int,
        service_uuid: uuid.UUID | int | str,
        name: str | None = None,
        *,
        obex: bool = False,
    ) -> ServiceRecord:
        return self._service.publish_rfcomm_service(channel, service_uuid, name, obex=obex)

    def publish_l2cap_service(
        self,
        psm: int,
        service_uuid: uuid.UUID | int | str,
        name: str | None = None,
    ) -> ServiceRecord:
        return self._service.publish_l2cap_service(psm, service_uuid, name)

    def update_service(self, record: ServiceRecord) -> None:
        self._service.update_service(record)

    def withdraw_service(self, record: ServiceRecord) -> None:
        self._service.withdraw_service(record)
