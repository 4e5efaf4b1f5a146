"""Conversion between integer device addresses and the daemon's colon-hex form."""

from __future__ import annotations

import re

from bluectl.core.errors import MalformedAddressError
from bluectl.core.model import MAX_ADDRESS

_SEPARATORS_RE = re.compile(r"[:\-]")
_HEX_RE = re.compile(r"^[0-9a-f]{1,12}$", re.IGNORECASE)


def to_wire(address: int) -> str:
    if address < 0 or address > MAX_ADDRESS:
        raise MalformedAddressError(f"Address {address:#x} does not fit in 48 bits")
    digits = f"{address:012X}"
    return ":".join(digits[i : i + 2] for i in range(0, 12, 2))


def to_int(wire: str) -> int:
    stripped = _SEPARATORS_RE.sub("", wire.strip())
    if not _HEX_RE.match(stripped):
        raise MalformedAddressError(f"Malformed Bluetooth address '{wire}'")
    return int(stripped, 16)
