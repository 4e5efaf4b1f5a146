from __future__ import annotations

import threading
import time

import pytest
from conftest import ADAPTER_PATH, FakeBus, bus_error

from bluectl.core.directory import ServiceDirectorySession
from bluectl.core.errors import (
    BluectlError,
    RegistrationUnavailableError,
    ServiceRegistrationError,
)
from bluectl.core.sdp import ATTR_SERVICE_RECORD_HANDLE, ServiceRecord
from bluectl.transports.bluez import BluezServiceDatabase


class FakeDatabase:
    def __init__(self) -> None:
        self.sessions_opened = 0
        self.sessions_closed = 0
        self.records: dict[int, bytes] = {}
        self.next_handle = 0x10000
        self.fail_open = False
        self.fail_register = False
        self.register_error: Exception | None = None
        self.register_delay = 0.0
        self.fail_unregister = False

    def open_session(self) -> int:
        if self.fail_open:
            raise BluectlError("daemon gone")
        self.sessions_opened += 1
        return self.sessions_opened

    def close_session(self, session: int) -> None:
        self.sessions_closed += 1

    def register(self, session: int, record: bytes) -> int:
        time.sleep(self.register_delay)
        if self.register_error is not None:
            raise self.register_error
        if self.fail_register:
            raise BluectlError("rejected")
        handle = self.next_handle
        self.next_handle += 1
        self.records[handle] = record
        return handle

    def update(self, session: int, handle: int, record: bytes) -> None:
        self.records[handle] = record

    def unregister(self, session: int, handle: int, record: bytes) -> None:
        if self.fail_unregister:
            raise BluectlError("rejected")
        del self.records[handle]


def _record(channel: int = 1) -> ServiceRecord:
    return ServiceRecord.for_rfcomm(channel, 0x1101, "Serial")


@pytest.fixture
def database() -> FakeDatabase:
    return FakeDatabase()


def test_session_opens_on_first_register_and_closes_after_last(database: FakeDatabase) -> None:
    directory = ServiceDirectorySession(database)
    first, second = _record(1), _record(2)

    directory.register(first)
    directory.register(second)
    assert database.sessions_opened == 1
    assert directory.registered_count == 2

    directory.unregister(first)
    assert directory.is_open
    directory.unregister(second)
    assert not directory.is_open
    assert directory.registered_count == 0
    assert database.sessions_closed == 1


def test_register_stamps_handle(database: FakeDatabase) -> None:
    record = _record()
    handle = ServiceDirectorySession(database).register(record)
    assert record.handle == handle == 0x10000
    assert record.get_attribute(ATTR_SERVICE_RECORD_HANDLE).value == handle


def test_session_reopens_after_closing(database: FakeDatabase) -> None:
    directory = ServiceDirectorySession(database)
    record = _record()
    directory.register(record)
    directory.unregister(record)
    directory.register(_record(2))
    assert database.sessions_opened == 2


def test_open_failure_is_registration_unavailable(database: FakeDatabase) -> None:
    database.fail_open = True
    directory = ServiceDirectorySession(database)
    with pytest.raises(RegistrationUnavailableError):
        directory.register(_record())
    assert not directory.is_open


def test_failed_first_register_closes_session(database: FakeDatabase) -> None:
    database.fail_register = True
    directory = ServiceDirectorySession(database)
    with pytest.raises(ServiceRegistrationError):
        directory.register(_record())
    assert not directory.is_open
    assert directory.registered_count == 0
    assert database.sessions_closed == 1


def test_failed_register_keeps_existing_session(database: FakeDatabase) -> None:
    directory = ServiceDirectorySession(database)
    directory.register(_record(1))
    database.fail_register = True
    with pytest.raises(ServiceRegistrationError):
        directory.register(_record(2))
    assert directory.is_open
    assert directory.registered_count == 1


def test_update_requires_registration(database: FakeDatabase) -> None:
    directory = ServiceDirectorySession(database)
    with pytest.raises(ServiceRegistrationError):
        directory.update(_record())

    registered = _record()
    directory.register(registered)
    with pytest.raises(ServiceRegistrationError):
        directory.update(_record(2))

    registered.set_attribute(0x0100, None)
    directory.update(registered)
    assert database.records[registered.handle] == registered.to_bytes()


def test_unregister_failure_still_releases_slot(database: FakeDatabase) -> None:
    directory = ServiceDirectorySession(database)
    record = _record()
    directory.register(record)
    database.fail_unregister = True

    with pytest.raises(ServiceRegistrationError):
        directory.unregister(record)
    assert record.handle is None
    assert directory.registered_count == 0
    assert not directory.is_open


def test_unregister_unknown_record(database: FakeDatabase) -> None:
    with pytest.raises(ServiceRegistrationError):
        ServiceDirectorySession(database).unregister(_record())


def test_close_drops_outstanding_registrations(database: FakeDatabase) -> None:
    directory = ServiceDirectorySession(database)
    directory.register(_record())
    directory.close()
    directory.close()
    assert not directory.is_open
    assert database.sessions_closed == 1


def test_bluez_database_calls(bus: FakeBus) -> None:
    bus.replies["AddServiceRecord"] = 0x10007
    directory = ServiceDirectorySession(BluezServiceDatabase(bus, ADAPTER_PATH))
    record = _record()

    assert directory.register(record) == 0x10007
    directory.update(record)
    directory.unregister(record)

    assert bus.methods() == [
        "RequestSession",
        "AddServiceRecord",
        "UpdateServiceRecord",
        "RemoveServiceRecord",
        "ReleaseSession",
    ]
    assert bus.calls[2][3] == (0x10007, record.to_bytes())


def test_bluez_request_session_failure(bus: FakeBus) -> None:
    bus.replies["RequestSession"] = bus_error("Failed")
    directory = ServiceDirectorySession(BluezServiceDatabase(bus, ADAPTER_PATH))
    with pytest.raises(RegistrationUnavailableError):
        directory.register(_record())


def _foreign_record(handle: int = 0xDEAD) -> ServiceRecord:
    record = _record(9)
    record.handle = handle
    return record


def test_update_rejects_handle_from_elsewhere(database: FakeDatabase) -> None:
    directory = ServiceDirectorySession(database)
    directory.register(_record())

    with pytest.raises(ServiceRegistrationError):
        directory.update(_foreign_record())
    assert list(database.records) == [0x10000]


def test_unregister_rejects_handle_from_elsewhere(database: FakeDatabase) -> None:
    directory = ServiceDirectorySession(database)
    directory.register(_record())
    foreign = _foreign_record()

    with pytest.raises(ServiceRegistrationError):
        directory.unregister(foreign)
    assert foreign.handle == 0xDEAD
    assert directory.is_open
    assert directory.registered_count == 1


def test_withdrawn_record_cannot_be_withdrawn_twice(database: FakeDatabase) -> None:
    directory = ServiceDirectorySession(database)
    first, second = _record(1), _record(2)
    directory.register(first)
    directory.register(second)
    handle = first.handle
    directory.unregister(first)

    first.handle = handle
    with pytest.raises(ServiceRegistrationError):
        directory.unregister(first)
    assert directory.registered_count == 1
    assert directory.is_open


def test_unexpected_register_failure_closes_new_session(database: FakeDatabase) -> None:
    database.register_error = TypeError("bad reply")
    directory = ServiceDirectorySession(database)

    with pytest.raises(TypeError):
        directory.register(_record())
    assert not directory.is_open
    assert directory.registered_count == 0
    assert database.sessions_closed == 1


def test_concurrent_registrations_share_one_session(database: FakeDatabase) -> None:
    database.register_delay = 0.05
    directory = ServiceDirectorySession(database)
    records = [_record(1), _record(2)]
    barrier = threading.Barrier(len(records))
    errors: list[BaseException] = []

    def worker(action, record: ServiceRecord) -> None:
        try:
            barrier.wait(timeout=5)
            action(record)
        except BaseException as exc:
            errors.append(exc)

    def run_all(action) -> None:
        threads = [threading.Thread(target=worker, args=(action, record)) for record in records]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=5)

    run_all(directory.register)
    assert errors == []
    assert directory.registered_count == 2
    assert database.sessions_opened == 1
    assert {record.handle for record in records} == {0x10000, 0x10001}

    run_all(directory.unregister)
    assert errors == []
    assert directory.registered_count == 0
    assert not directory.is_open
    assert database.sessions_closed == 1
