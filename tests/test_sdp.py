from __future__ import annotations

import uuid

import pytest

from bluectl.core.errors import ServiceRecordError
from bluectl.core.sdp import (
    ATTR_SERVICE_RECORD_HANDLE,
    MAX_NESTING_DEPTH,
    DataElement,
    ElementType,
    ServiceRecord,
    decode_element,
    encode_element,
    short_uuid,
    to_uuid,
)

SERIAL_PORT = 0x1101


def test_short_uuid_uses_base_uuid() -> None:
    assert str(short_uuid(SERIAL_PORT)) == "00001101-0000-1000-8000-00805f9b34fb"


@pytest.mark.parametrize(
    "value",
    [SERIAL_PORT, "1101", "0x1101", "00001101", "00001101-0000-1000-8000-00805F9B34FB"],
)
def test_to_uuid_accepts_short_and_long_forms(value) -> None:
    assert to_uuid(value) == short_uuid(SERIAL_PORT)


@pytest.mark.parametrize("value", ["11011", "xyz1", -1])
def test_to_uuid_rejects_malformed(value) -> None:
    with pytest.raises(ServiceRecordError):
        to_uuid(value)


def test_uuid_element_picks_smallest_size() -> None:
    assert DataElement.uuid(SERIAL_PORT).size == 2
    assert DataElement.uuid(0x12345678).size == 4
    assert DataElement.uuid(uuid.UUID("12345678-1234-5678-1234-567812345678")).size == 16


def test_encode_known_bytes() -> None:
    element = DataElement.sequence([DataElement.uint(2, 0x0100), DataElement.string("SP")])
    assert encode_element(element) == bytes.fromhex("35 07 09 0100 25 02 5350")
    assert encode_element(DataElement.uuid(SERIAL_PORT)) == bytes.fromhex("19 1101")
    assert encode_element(DataElement.boolean(True)) == bytes.fromhex("28 01")
    assert encode_element(DataElement.signed(1, -1)) == bytes.fromhex("10 ff")


def test_long_strings_use_two_byte_length() -> None:
    encoded = encode_element(DataElement.string("x" * 300))
    assert encoded[:3] == bytes.fromhex("26 012c")
    element, end = decode_element(encoded)
    assert element.value == "x" * 300
    assert end == len(encoded)


def test_decode_nested_sequence_and_offset() -> None:
    data = b"\xff" + bytes.fromhex("35 05 35 03 19 0003")
    element, end = decode_element(data, 1)
    assert end == len(data)
    inner = element.value[0]
    assert inner.type is ElementType.SEQUENCE
    assert inner.value[0].value == short_uuid(0x0003)


@pytest.mark.parametrize("data", ["09 01", "35 05 09 0001", "f8", "1d 00"])
def test_decode_rejects_bad_input(data: str) -> None:
    with pytest.raises(ServiceRecordError):
        decode_element(bytes.fromhex(data))


def test_uint_range_is_checked() -> None:
    with pytest.raises(ServiceRecordError):
        DataElement.uint(1, 256)
    with pytest.raises(ServiceRecordError):
        DataElement.uint(3, 1)


def test_rfcomm_record_attributes() -> None:
    record = ServiceRecord.for_rfcomm(5, SERIAL_PORT, "Serial", obex=True)
    assert record.service_name == "Serial"
    assert record.rfcomm_channel == 5
    assert record.l2cap_psm is None
    assert record.has_service_class_uuid(SERIAL_PORT)
    assert record.has_protocol_class_uuid(0x0100)
    assert record.has_protocol_class_uuid(0x0003)
    assert record.has_protocol_class_uuid(0x0008)
    assert not record.has_protocol_class_uuid(0x000F)


def test_record_bytes_survive_decoding() -> None:
    record = ServiceRecord.for_l2cap(0x1001, "12345678-1234-5678-1234-567812345678", "Custom")
    decoded = ServiceRecord.from_bytes(record.to_bytes(), handle=0x10001, device_address=0x0A)

    assert decoded.attribute_ids == record.attribute_ids
    assert decoded.l2cap_psm == 0x1001
    assert decoded.service_name == "Custom"
    assert decoded.handle == 0x10001
    assert decoded.device_address == 0x0A


def test_stamp_handle_updates_attribute() -> None:
    record = ServiceRecord.for_rfcomm(1, SERIAL_PORT)
    record.stamp_handle(0x10005)
    assert record.handle == 0x10005
    assert record.get_attribute(ATTR_SERVICE_RECORD_HANDLE) == DataElement.uint(4, 0x10005)


def test_from_bytes_rejects_odd_attribute_list() -> None:
    with pytest.raises(ServiceRecordError):
        ServiceRecord.from_bytes(bytes.fromhex("35 03 09 0001"))


def test_from_bytes_rejects_trailing_bytes() -> None:
    with pytest.raises(ServiceRecordError):
        ServiceRecord.from_bytes(bytes.fromhex("35 00 00"))


def _nested_sequences(levels: int) -> bytes:
    data = b""
    for _ in range(levels):
        data = bytes([0x37]) + len(data).to_bytes(4, "big") + data
    return data


def test_nesting_up_to_limit_decodes() -> None:
    element, end = decode_element(_nested_sequences(MAX_NESTING_DEPTH))
    assert element.type is ElementType.SEQUENCE
    assert end == 5 * MAX_NESTING_DEPTH


@pytest.mark.parametrize("levels", [MAX_NESTING_DEPTH + 1, 3000])
def test_excessive_nesting_rejected(levels: int) -> None:
    with pytest.raises(ServiceRecordError, match="nesting"):
        decode_element(_nested_sequences(levels))
