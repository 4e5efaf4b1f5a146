"""Translation of the daemon's class-of-device strings into class bits."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass

from bluectl.core.model import DeviceClass, UnknownClassPolicy

LOGGER = logging.getLogger(__name__)

LIMITED_DISCOVERY_SERVICE = 0x2000

MAJOR_CLASSES = {
    "miscellaneous": 0x0000,
    "computer": 0x0100,
    "phone": 0x0200,
    "access point": 0x0300,
    "audio/video": 0x0400,
    "peripheral": 0x0500,
    "imaging": 0x0600,
    "wearable": 0x0700,
    "toy": 0x0800,
    "health": 0x0900,
    "uncategorized": 0x1F00,
}

COMPUTER_MINOR_UNCLASSIFIED = 0x00

COMPUTER_MINOR_CLASSES = {
    "uncategorized": COMPUTER_MINOR_UNCLASSIFIED,
    "desktop": 0x04,
    "server": 0x08,
    "laptop": 0x0C,
    "handheld": 0x10,
    "palm": 0x14,
    "wearable": 0x18,
}

SERVICE_CLASSES = {
    "positioning": 0x010000,
    "networking": 0x020000,
    "rendering": 0x040000,
    "capturing": 0x080000,
    "object transfer": 0x100000,
    "audio": 0x200000,
    "telephony": 0x400000,
    "information": 0x800000,
}


@dataclass(frozen=True)
class DecodedDeviceClass:
    device_class: DeviceClass
    unknown: tuple[str, ...]


def decode_device_class(
    major: str,
    minor: str,
    service_classes: Iterable[str] | None,
    *,
    limited_discoverable: bool = False,
    policy: UnknownClassPolicy = UnknownClassPolicy.IGNORE,
) -> DecodedDeviceClass:
    """Combine major, minor and service-class names into class-of-device bits.

    Names the table does not know contribute nothing (an unknown minor class
    maps to "unclassified"); they are reported in ``unknown`` and logged at
    a level chosen by ``policy``.
    """
    record = 0
    unknown: list[str] = []

    major_bits = MAJOR_CLASSES.get(major)
    if major_bits is None:
        unknown.append(f"major:{major}")
    else:
        record |= major_bits

    minor_bits = COMPUTER_MINOR_CLASSES.get(minor)
    if minor_bits is None:
        unknown.append(f"minor:{minor}")
        minor_bits = COMPUTER_MINOR_UNCLASSIFIED
    record |= minor_bits

    if limited_discoverable:
        record |= LIMITED_DISCOVERY_SERVICE

    for service_class in service_classes or ():
        bits = SERVICE_CLASSES.get(service_class)
        if bits is None:
            unknown.append(f"service:{service_class}")
            continue
        record |= bits

    level = logging.WARNING if policy is UnknownClassPolicy.WARN else logging.DEBUG
    for token in unknown:
        LOGGER.log(level, "Unknown device class component %s", token)

    return DecodedDeviceClass(device_class=DeviceClass(record), unknown=tuple(unknown))
