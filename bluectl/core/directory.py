"""Reference-counted session for publishing local service records."""

from __future__ import annotations

import logging
import threading
from typing import Protocol

from bluectl.core.errors import (
    BluectlError,
    RegistrationUnavailableError,
    ServiceRecordError,
    ServiceRegistrationError,
)
from bluectl.core.sdp import ServiceRecord

LOGGER = logging.getLogger(__name__)


class ServiceDatabase(Protocol):
    def open_session(self) -> int:
        """Open a directory session and return its handle."""

    def close_session(self, session: int) -> None:
        """Close a session returned by `open_session`."""

    def register(self, session: int, record: bytes) -> int:
        """Publish a serialized record and return its record handle."""

    def update(self, session: int, handle: int, record: bytes) -> None:
        """Replace the record published under ``handle``."""

    def unregister(self, session: int, handle: int, record: bytes) -> None:
        """Withdraw the record published under ``handle``."""


def _record_bytes(record: ServiceRecord) -> bytes:
    try:
        return record.to_bytes()
    except ServiceRecordError as exc:
        raise ServiceRegistrationError(f"Can't serialize service record: {exc}") from exc


class ServiceDirectorySession:
    """Opens the directory session on first registration and closes it after the last removal.

    The session handle and the set of record handles registered through it
    change together under one lock: the set is non-empty exactly while a
    session is open, and only handles in the set can be updated or removed.
    """

    def __init__(self, database: ServiceDatabase) -> None:
        self._database = database
        self._lock = threading.RLock()
        self._session: int | None = None
        self._handles: set[int] = set()

    @property
    def registered_count(self) -> int:
        with self._lock:
            return len(self._handles)

    @property
    def is_open(self) -> bool:
        with self._lock:
            return self._session is not None

    def _acquire_for_register(self) -> int:
        if self._session is None:
            try:
                self._session = self._database.open_session()
            except BluectlError as exc:
                raise RegistrationUnavailableError(f"Can't open service directory session: {exc}") from exc
            LOGGER.debug("Created service directory session %s", self._session)
        return self._session

    def _close(self) -> None:
        session, self._session = self._session, None
        self._handles.clear()
        if session is not None:
            LOGGER.debug("Closing service directory session %s", session)
            self._database.close_session(session)

    def _require_registered(self, record: ServiceRecord) -> int:
        if self._session is None or record.handle not in self._handles:
            raise ServiceRegistrationError("Service record is not registered in this session")
        return record.handle

    def register(self, record: ServiceRecord) -> int:
        blob = _record_bytes(record)
        with self._lock:
            session = self._acquire_for_register()
            registered = False
            try:
                handle = int(self._database.register(session, blob))
                registered = True
            except BluectlError as exc:
                raise ServiceRegistrationError(f"Can't register service record: {exc}") from exc
            finally:
                if not registered and not self._handles:
                    self._close()
            record.stamp_handle(handle)
            self._handles.add(handle)
            LOGGER.debug("Registered service record %#x (%d active)", handle, len(self._handles))
            return handle

    def update(self, record: ServiceRecord) -> None:
        blob = _record_bytes(record)
        with self._lock:
            handle = self._require_registered(record)
            try:
                self._database.update(self._session, handle, blob)
            except BluectlError as exc:
                raise ServiceRegistrationError(f"Can't update service record {handle:#x}: {exc}") from exc

    def unregister(self, record: ServiceRecord) -> None:
        blob = _record_bytes(record)
        with self._lock:
            handle = self._require_registered(record)
            try:
                self._database.unregister(self._session, handle, blob)
            except BluectlError as exc:
                raise ServiceRegistrationError(f"Can't unregister service record {handle:#x}: {exc}") from exc
            finally:
                record.handle = None
                self._handles.discard(handle)
                if not self._handles:
                    self._close()

    def close(self) -> None:
        """Close the session regardless of outstanding registrations."""
        with self._lock:
            if self._session is None:
                return
            try:
                self._close()
            except BluectlError as exc:
                LOGGER.warning("Failed to close service directory session: %s", exc)
