"""Core data models used across the adapter, discovery, search and CLI layers."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from bluectl.core.sdp import ServiceRecord

# Inquiry access codes.
GIAC = 0x9E8B33
LIAC = 0x9E8B00

MAX_ADDRESS = 0xFFFFFFFFFFFF


class DiscoverableMode(IntEnum):
    NOT_DISCOVERABLE = 0
    GIAC = GIAC
    LIAC = LIAC


class InquiryStatus(Enum):
    COMPLETED = "completed"
    TERMINATED = "terminated"
    FAILED = "failed"


class SearchStatus(Enum):
    COMPLETED = "completed"
    TERMINATED = "terminated"
    ERROR = "error"
    NO_RECORDS = "no_records"
    DEVICE_NOT_REACHABLE = "device_not_reachable"


class UnknownClassPolicy(Enum):
    IGNORE = "ignore"
    WARN = "warn"


@dataclass(frozen=True)
class DeviceClass:
    value: int

    @property
    def major_device_class(self) -> int:
        return self.value & 0x1F00

    @property
    def minor_device_class(self) -> int:
        return self.value & 0xFC

    @property
    def service_classes(self) -> int:
        return self.value & 0xFFE000


@dataclass(frozen=True)
class AdapterSelector:
    device_id: str | None = None
    device_address: str | None = None


@dataclass(frozen=True)
class AdapterIdentity:
    path: str
    address: int
    device_id: str
    sd_trans_max: int = 1


@dataclass(frozen=True)
class DiscoveredDevice:
    address: int
    name: str | None
    device_class: DeviceClass | None
    paired: bool


@dataclass(frozen=True)
class KnownDevice:
    address: int
    paired: bool


@dataclass
class DiscoveredDeviceFragment:
    device_class: DeviceClass | None = None
    name: str | None = None


@dataclass(frozen=True)
class DiscoveryResult:
    status: InquiryStatus
    devices: tuple[DiscoveredDevice, ...] = ()
    error: Exception | None = None


@dataclass(frozen=True)
class SearchResult:
    trans_id: int
    status: SearchStatus
    records: tuple[ServiceRecord, ...] = field(default=())


class DiscoveryListener(Protocol):
    def inquiry_started(self) -> None:
        """Called once the daemon accepted the inquiry request."""

    def device_discovered(self, device: DiscoveredDevice) -> None:
        """Called for every device collected by a completed inquiry."""
