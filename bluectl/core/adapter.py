"""Local adapter selection, queries and control actions."""

from __future__ import annotations

import logging
from typing import Any

from bluectl.core.address import to_int, to_wire
from bluectl.core.device_class import DecodedDeviceClass, decode_device_class
from bluectl.core.errors import (
    AdapterNotFoundError,
    BondingError,
    BusError,
    StateChangeFailedError,
    TransportUnavailableError,
)
from bluectl.core.model import (
    AdapterIdentity,
    AdapterSelector,
    DeviceClass,
    DiscoverableMode,
    KnownDevice,
    UnknownClassPolicy,
)
from bluectl.transports.base import Bus
from bluectl.transports.bluez import (
    ADAPTER_INTERFACE,
    ADAPTER_PATH_PREFIX,
    DEVICE_ID_PREFIX,
    MANAGER_INTERFACE,
    MANAGER_PATH,
    error_suffix,
)

LOGGER = logging.getLogger(__name__)

_MODE_STRINGS = {
    DiscoverableMode.NOT_DISCOVERABLE: "connectable",
    DiscoverableMode.GIAC: "discoverable",
    DiscoverableMode.LIAC: "limited",
}

PROPERTY_DEVICE_ID = "device_id"
PROPERTY_DEVICES_LIST = "devices"
PROPERTY_RADIO_VERSION = "radio.version"
PROPERTY_RADIO_MANUFACTURER = "radio.manufacturer"
PROPERTY_SD_TRANS_MAX = "sd.trans.max"


def _strip_adapter_path(path: str) -> str:
    if path.startswith(ADAPTER_PATH_PREFIX):
        return path[len(ADAPTER_PATH_PREFIX) :]
    return path


def _manager_call(bus: Bus, method: str, *args: Any) -> Any:
    try:
        return bus.call(MANAGER_PATH, MANAGER_INTERFACE, method, *args)
    except BusError as exc:
        if error_suffix(exc) == "NoSuchAdapter":
            return None
        raise TransportUnavailableError(f"BlueZ manager request {method} failed: {exc}") from exc


def _find_adapter_path(bus: Bus, selector: AdapterSelector) -> str:
    if selector.device_id is not None:
        device_id = selector.device_id.strip()
        if device_id.isdigit():
            index = int(device_id)
            adapters = _manager_call(bus, "ListAdapters") or []
            if not adapters:
                raise AdapterNotFoundError("Can't find BlueZ adapters")
            if index >= len(adapters):
                raise AdapterNotFoundError(f"Can't find adapter #{device_id}")
            return str(adapters[index])
        path = _manager_call(bus, "FindAdapter", device_id)
        if not path:
            raise AdapterNotFoundError(f"Can't find '{device_id}' adapter")
        return str(path)

    if selector.device_address is not None:
        wire = to_wire(to_int(selector.device_address))
        path = _manager_call(bus, "FindAdapter", wire)
        if not path:
            raise AdapterNotFoundError(f"Can't find adapter with address '{selector.device_address}'")
        return str(path)

    path = _manager_call(bus, "DefaultAdapter")
    if not path:
        raise AdapterNotFoundError("Can't find default adapter")
    return str(path)


class AdapterSession:
    """The single active local adapter and the requests addressed to it."""

    def __init__(
        self,
        bus: Bus,
        identity: AdapterIdentity,
        *,
        unknown_class_policy: UnknownClassPolicy = UnknownClassPolicy.IGNORE,
    ) -> None:
        self.bus = bus
        self.identity = identity
        self.unknown_class_policy = unknown_class_policy

    @classmethod
    def resolve(
        cls,
        bus: Bus,
        selector: AdapterSelector | None = None,
        *,
        unknown_class_policy: UnknownClassPolicy = UnknownClassPolicy.IGNORE,
    ) -> AdapterSession:
        selector = selector or AdapterSelector()
        path = _find_adapter_path(bus, selector)
        try:
            address = to_int(str(bus.call(path, ADAPTER_INTERFACE, "GetAddress")))
        except BusError as exc:
            raise TransportUnavailableError(f"Can't connect to '{path}' adapter: {exc}") from exc

        index = path.find(DEVICE_ID_PREFIX)
        device_id = path[index:] if index >= 0 else _strip_adapter_path(path)
        identity = AdapterIdentity(path=path, address=address, device_id=device_id)
        LOGGER.debug("Using adapter %s (%s)", identity.device_id, to_wire(address))
        return cls(bus, identity, unknown_class_policy=unknown_class_policy)

    def call(self, method: str, *args: Any) -> Any:
        return self.bus.call(self.identity.path, ADAPTER_INTERFACE, method, *args)

    # --- Queries

    @property
    def local_address(self) -> int:
        return self.identity.address

    def local_name(self) -> str | None:
        try:
            return self.call("GetName")
        except BusError as exc:
            if error_suffix(exc) in {"NotReady", "Failed"}:
                return None
            raise

    def device_class(self) -> DeviceClass:
        return self.device_class_details().device_class

    def device_class_details(self) -> DecodedDeviceClass:
        return decode_device_class(
            str(self.call("GetMajorClass")),
            str(self.call("GetMinorClass")),
            self.call("GetServiceClasses"),
            limited_discoverable=self.discoverable_mode() is DiscoverableMode.LIAC,
            policy=self.unknown_class_policy,
        )

    def is_powered_on(self) -> bool:
        return self.call("GetMode") != "off"

    def discoverable_mode(self) -> DiscoverableMode:
        if not self.call("IsDiscoverable"):
            return DiscoverableMode.NOT_DISCOVERABLE
        timeout = self.call("GetDiscoverableTimeout")
        if not timeout:
            return DiscoverableMode.GIAC
        return DiscoverableMode.LIAC

    def is_discoverable(self) -> bool:
        return self.discoverable_mode() is not DiscoverableMode.NOT_DISCOVERABLE

    def list_adapters(self) -> list[str]:
        adapters = _manager_call(self.bus, "ListAdapters") or []
        return [_strip_adapter_path(str(path)) for path in adapters]

    def radio_version(self) -> str:
        return f"{self.call('GetVersion')}; HCI {self.call('GetRevision')}"

    def radio_manufacturer(self) -> str:
        return str(self.call("GetManufacturer"))

    def local_property(self, name: str) -> str | None:
        if name == PROPERTY_DEVICES_LIST:
            return ",".join(self.list_adapters())
        if name == PROPERTY_RADIO_VERSION:
            return self.radio_version()
        if name == PROPERTY_RADIO_MANUFACTURER:
            return self.radio_manufacturer()
        if name == PROPERTY_DEVICE_ID:
            return self.identity.device_id
        if name == PROPERTY_SD_TRANS_MAX:
            return str(self.identity.sd_trans_max)
        return None

    # --- Control

    def set_discoverable(self, mode: DiscoverableMode) -> bool:
        mode = DiscoverableMode(mode)
        if self.discoverable_mode() is mode:
            return True
        try:
            self.call("SetMode", _MODE_STRINGS[mode])
        except BusError as exc:
            raise StateChangeFailedError(f"Adapter rejected mode '{_MODE_STRINGS[mode]}': {exc}") from exc
        return True

    def create_bonding(self, address: int) -> None:
        try:
            self.call("CreateBonding", to_wire(address))
        except BusError as exc:
            LOGGER.error("Error creating bonding with %s: %s", to_wire(address), exc)
            raise BondingError(f"Bonding with {to_wire(address)} failed: {exc}") from exc

    def remove_bonding(self, address: int) -> None:
        try:
            self.call("RemoveBonding", to_wire(address))
        except BusError as exc:
            raise BondingError(f"Removing bonding with {to_wire(address)} failed: {exc}") from exc

    # --- Remote device state

    def has_bonding(self, address: int) -> bool:
        return bool(self.call("HasBonding", to_wire(address)))

    def is_connected(self, address: int) -> bool:
        return bool(self.call("IsConnected", to_wire(address)))

    def is_trusted(self, address: int) -> bool:
        return self.has_bonding(address)

    def is_authenticated(self, address: int) -> bool:
        return self.is_connected(address) and self.has_bonding(address)

    def known_devices(self) -> list[KnownDevice]:
        devices = [KnownDevice(address=to_int(a), paired=True) for a in self.call("ListBondings") or []]
        devices.extend(KnownDevice(address=to_int(a), paired=False) for a in self.call("ListTrusts") or [])
        return devices

    # --- Inquiry

    def start_discovery(self) -> None:
        self.call("DiscoverDevices")

    def cancel_discovery(self) -> None:
        self.call("CancelDiscovery")
