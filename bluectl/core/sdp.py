"""SDP data elements and service records.

Records travel as their binary SDP form: a data element sequence of
alternating uint16 attribute ids and attribute values.
"""

from __future__ import annotations

import re
import struct
import uuid
from collections.abc import Iterator, Sequence
from dataclasses import dataclass
from enum import IntEnum
from typing import Any

from bluectl.core.errors import ServiceRecordError

BASE_UUID = uuid.UUID("00000000-0000-1000-8000-00805f9b34fb")
_BASE_MASK = (1 << 96) - 1

_HEX_UUID_RE = re.compile(r"^[0-9a-f]{4}$|^[0-9a-f]{8}$|^[0-9a-f]{32}$")

# Attribute ids.
ATTR_SERVICE_RECORD_HANDLE = 0x0000
ATTR_SERVICE_CLASS_ID_LIST = 0x0001
ATTR_PROTOCOL_DESCRIPTOR_LIST = 0x0004
ATTR_BROWSE_GROUP_LIST = 0x0005
ATTR_SERVICE_NAME = 0x0100

# Protocol and group UUIDs.
L2CAP_PROTOCOL_UUID = 0x0100
RFCOMM_PROTOCOL_UUID = 0x0003
OBEX_PROTOCOL_UUID = 0x0008
PUBLIC_BROWSE_GROUP = 0x1002

_FIXED_SIZES = (1, 2, 4, 8, 16)
MAX_NESTING_DEPTH = 32


class ElementType(IntEnum):
    NIL = 0
    UINT = 1
    INT = 2
    UUID = 3
    STRING = 4
    BOOL = 5
    SEQUENCE = 6
    ALTERNATIVE = 7
    URL = 8


def short_uuid(value: int) -> uuid.UUID:
    return uuid.UUID(int=BASE_UUID.int | (value << 96))


def to_uuid(value: uuid.UUID | int | str) -> uuid.UUID:
    """Normalise a 16-bit, 32-bit or 128-bit UUID given as int, string or UUID."""
    if isinstance(value, uuid.UUID):
        return value
    if isinstance(value, int):
        if value < 0 or value > 0xFFFFFFFF:
            raise ServiceRecordError(f"Short UUID {value:#x} does not fit in 32 bits")
        return short_uuid(value)
    normalized = value.strip().lower().replace("-", "")
    if normalized.startswith("0x"):
        normalized = normalized[2:]
    if not _HEX_UUID_RE.match(normalized):
        raise ServiceRecordError(f"'{value}' must be a 16-bit, 32-bit, or 128-bit UUID string")
    if len(normalized) == 32:
        return uuid.UUID(hex=normalized)
    return short_uuid(int(normalized, 16))


def _short_form(value: uuid.UUID) -> int | None:
    if value.int & _BASE_MASK != BASE_UUID.int:
        return None
    return value.int >> 96


@dataclass(frozen=True)
class DataElement:
    type: ElementType
    value: Any = None
    size: int = 0

    @classmethod
    def nil(cls) -> DataElement:
        return cls(ElementType.NIL)

    @classmethod
    def uint(cls, size: int, value: int) -> DataElement:
        if size not in _FIXED_SIZES or value < 0 or value >= 1 << (8 * size):
            raise ServiceRecordError(f"{value} does not fit in an unsigned {size}-byte element")
        return cls(ElementType.UINT, value, size)

    @classmethod
    def signed(cls, size: int, value: int) -> DataElement:
        bound = 1 << (8 * size - 1)
        if size not in _FIXED_SIZES or not -bound <= value < bound:
            raise ServiceRecordError(f"{value} does not fit in a signed {size}-byte element")
        return cls(ElementType.INT, value, size)

    @classmethod
    def uuid(cls, value: uuid.UUID | int | str) -> DataElement:
        normalized = to_uuid(value)
        short = _short_form(normalized)
        if short is None:
            size = 16
        elif short <= 0xFFFF:
            size = 2
        else:
            size = 4
        return cls(ElementType.UUID, normalized, size)

    @classmethod
    def string(cls, value: str) -> DataElement:
        return cls(ElementType.STRING, value)

    @classmethod
    def url(cls, value: str) -> DataElement:
        return cls(ElementType.URL, value)

    @classmethod
    def boolean(cls, value: bool) -> DataElement:
        return cls(ElementType.BOOL, bool(value), 1)

    @classmethod
    def sequence(cls, items: Sequence[DataElement]) -> DataElement:
        return cls(ElementType.SEQUENCE, tuple(items))

    @classmethod
    def alternative(cls, items: Sequence[DataElement]) -> DataElement:
        return cls(ElementType.ALTERNATIVE, tuple(items))

    def walk(self) -> Iterator[DataElement]:
        yield self
        if self.type in (ElementType.SEQUENCE, ElementType.ALTERNATIVE):
            for item in self.value:
                yield from item.walk()


# --- Binary codec


def _encode_length(type_bits: int, length: int) -> bytes:
    if length <= 0xFF:
        return struct.pack(">BB", type_bits | 5, length)
    if length <= 0xFFFF:
        return struct.pack(">BH", type_bits | 6, length)
    return struct.pack(">BI", type_bits | 7, length)


def encode_element(element: DataElement) -> bytes:
    type_bits = element.type << 3
    if element.type is ElementType.NIL:
        return b"\x00"
    if element.type in (ElementType.UINT, ElementType.INT):
        index = _FIXED_SIZES.index(element.size)
        signed = element.type is ElementType.INT
        return bytes([type_bits | index]) + element.value.to_bytes(element.size, "big", signed=signed)
    if element.type is ElementType.UUID:
        if element.size == 16:
            body = element.value.bytes
        else:
            body = (element.value.int >> 96).to_bytes(element.size, "big")
        return bytes([type_bits | _FIXED_SIZES.index(element.size)]) + body
    if element.type is ElementType.BOOL:
        return bytes([type_bits, 1 if element.value else 0])
    if element.type in (ElementType.STRING, ElementType.URL):
        body = element.value.encode("utf-8")
        return _encode_length(type_bits, len(body)) + body
    body = b"".join(encode_element(item) for item in element.value)
    return _encode_length(type_bits, len(body)) + body


def _take(data: bytes, offset: int, length: int) -> bytes:
    if offset + length > len(data):
        raise ServiceRecordError(f"Truncated data element at offset {offset}")
    return data[offset : offset + length]


def decode_element(data: bytes, offset: int = 0, depth: int = 0) -> tuple[DataElement, int]:
    """Decode one data element starting at ``offset``; returns it and the next offset."""
    header = _take(data, offset, 1)[0]
    offset += 1
    try:
        element_type = ElementType(header >> 3)
    except ValueError as exc:
        raise ServiceRecordError(f"Unknown data element type {header >> 3}") from exc
    size_index = header & 0x07

    if element_type is ElementType.NIL:
        return DataElement.nil(), offset

    if size_index < 5:
        size = _FIXED_SIZES[size_index]
        body = _take(data, offset, size)
        offset += size
        if element_type is ElementType.UINT:
            return DataElement(element_type, int.from_bytes(body, "big"), size), offset
        if element_type is ElementType.INT:
            return DataElement(element_type, int.from_bytes(body, "big", signed=True), size), offset
        if element_type is ElementType.UUID:
            if size == 16:
                return DataElement(element_type, uuid.UUID(bytes=body), size), offset
            if size in (2, 4):
                return DataElement(element_type, short_uuid(int.from_bytes(body, "big")), size), offset
        if element_type is ElementType.BOOL and size == 1:
            return DataElement.boolean(body[0] != 0), offset
        raise ServiceRecordError(f"Invalid size {size} for {element_type.name} element")

    length_size = {5: 1, 6: 2, 7: 4}[size_index]
    length = int.from_bytes(_take(data, offset, length_size), "big")
    offset += length_size
    body = _take(data, offset, length)
    end = offset + length

    if element_type in (ElementType.STRING, ElementType.URL):
        return DataElement(element_type, body.decode("utf-8", errors="replace")), end
    if element_type in (ElementType.SEQUENCE, ElementType.ALTERNATIVE):
        if depth >= MAX_NESTING_DEPTH:
            raise ServiceRecordError(f"Data element nesting deeper than {MAX_NESTING_DEPTH} levels")
        items: list[DataElement] = []
        while offset < end:
            item, offset = decode_element(data[:end], offset, depth + 1)
            items.append(item)
        return DataElement(element_type, tuple(items)), end
    raise ServiceRecordError(f"Variable length is not valid for {element_type.name} element")


# --- Service records


class ServiceRecord:
    """Attribute map of one SDP service record."""

    def __init__(
        self,
        attributes: dict[int, DataElement] | None = None,
        *,
        handle: int | None = None,
        device_address: int | None = None,
    ) -> None:
        self.attributes: dict[int, DataElement] = dict(attributes or {})
        self.handle = handle
        self.device_address = device_address

    def __repr__(self) -> str:
        ids = ", ".join(f"{attr_id:#06x}" for attr_id in sorted(self.attributes))
        return f"ServiceRecord(handle={self.handle}, attributes=[{ids}])"

    def get_attribute(self, attr_id: int) -> DataElement | None:
        return self.attributes.get(attr_id)

    def set_attribute(self, attr_id: int, element: DataElement | None) -> None:
        if element is None:
            self.attributes.pop(attr_id, None)
        else:
            self.attributes[attr_id] = element

    @property
    def attribute_ids(self) -> tuple[int, ...]:
        return tuple(sorted(self.attributes))

    def service_class_uuids(self) -> list[uuid.UUID]:
        element = self.attributes.get(ATTR_SERVICE_CLASS_ID_LIST)
        if element is None:
            return []
        return [item.value for item in element.walk() if item.type is ElementType.UUID]

    def protocol_uuids(self) -> list[uuid.UUID]:
        element = self.attributes.get(ATTR_PROTOCOL_DESCRIPTOR_LIST)
        if element is None:
            return []
        return [item.value for item in element.walk() if item.type is ElementType.UUID]

    def has_service_class_uuid(self, value: uuid.UUID | int | str) -> bool:
        return to_uuid(value) in self.service_class_uuids()

    def has_protocol_class_uuid(self, value: uuid.UUID | int | str) -> bool:
        return to_uuid(value) in self.protocol_uuids()

    @property
    def service_name(self) -> str | None:
        element = self.attributes.get(ATTR_SERVICE_NAME)
        if element is None or element.type is not ElementType.STRING:
            return None
        return element.value

    def _protocol_parameter(self, protocol: int) -> int | None:
        element = self.attributes.get(ATTR_PROTOCOL_DESCRIPTOR_LIST)
        if element is None:
            return None
        target = short_uuid(protocol)
        for item in element.walk():
            if item.type is not ElementType.SEQUENCE or not item.value:
                continue
            head, *params = item.value
            if head.type is ElementType.UUID and head.value == target:
                for param in params:
                    if param.type is ElementType.UINT:
                        return param.value
        return None

    @property
    def rfcomm_channel(self) -> int | None:
        return self._protocol_parameter(RFCOMM_PROTOCOL_UUID)

    @property
    def l2cap_psm(self) -> int | None:
        return self._protocol_parameter(L2CAP_PROTOCOL_UUID)

    def stamp_handle(self, handle: int) -> None:
        self.handle = handle
        self.attributes[ATTR_SERVICE_RECORD_HANDLE] = DataElement.uint(4, handle)

    def to_bytes(self) -> bytes:
        items: list[DataElement] = []
        for attr_id in sorted(self.attributes):
            items.append(DataElement.uint(2, attr_id))
            items.append(self.attributes[attr_id])
        return encode_element(DataElement.sequence(items))

    @classmethod
    def from_bytes(
        cls,
        data: bytes,
        *,
        handle: int | None = None,
        device_address: int | None = None,
    ) -> ServiceRecord:
        element, end = decode_element(bytes(data))
        if element.type is not ElementType.SEQUENCE:
            raise ServiceRecordError("Service record must be a data element sequence")
        if end != len(data):
            raise ServiceRecordError(f"{len(data) - end} trailing byte(s) after service record")
        items = element.value
        if len(items) % 2 != 0:
            raise ServiceRecordError("Service record has an attribute id without a value")
        attributes: dict[int, DataElement] = {}
        for attr_id, value in zip(items[::2], items[1::2]):
            if attr_id.type is not ElementType.UINT or attr_id.size != 2:
                raise ServiceRecordError("Service record attribute ids must be uint16")
            attributes[attr_id.value] = value
        return cls(attributes, handle=handle, device_address=device_address)

    # --- Server records

    @classmethod
    def for_rfcomm(
        cls,
        channel: int,
        service_uuid: uuid.UUID | int | str,
        name: str | None = None,
        *,
        obex: bool = False,
    ) -> ServiceRecord:
        protocols = [
            DataElement.sequence([DataElement.uuid(L2CAP_PROTOCOL_UUID)]),
            DataElement.sequence([DataElement.uuid(RFCOMM_PROTOCOL_UUID), DataElement.uint(1, channel)]),
        ]
        if obex:
            protocols.append(DataElement.sequence([DataElement.uuid(OBEX_PROTOCOL_UUID)]))
        return cls._server_record(service_uuid, name, protocols)

    @classmethod
    def for_l2cap(
        cls,
        psm: int,
        service_uuid: uuid.UUID | int | str,
        name: str | None = None,
    ) -> ServiceRecord:
        protocols = [DataElement.sequence([DataElement.uuid(L2CAP_PROTOCOL_UUID), DataElement.uint(2, psm)])]
        return cls._server_record(service_uuid, name, protocols)

    @classmethod
    def _server_record(
        cls,
        service_uuid: uuid.UUID | int | str,
        name: str | None,
        protocols: list[DataElement],
    ) -> ServiceRecord:
        record = cls()
        record.set_attribute(ATTR_SERVICE_RECORD_HANDLE, DataElement.uint(4, 0))
        record.set_attribute(ATTR_SERVICE_CLASS_ID_LIST, DataElement.sequence([DataElement.uuid(service_uuid)]))
        record.set_attribute(ATTR_PROTOCOL_DESCRIPTOR_LIST, DataElement.sequence(protocols))
        record.set_attribute(
            ATTR_BROWSE_GROUP_LIST, DataElement.sequence([DataElement.uuid(PUBLIC_BROWSE_GROUP)])
        )
        if name:
            record.set_attribute(ATTR_SERVICE_NAME, DataElement.string(name))
        return record
