"""Remote service search with local UUID filtering."""

from __future__ import annotations

import itertools
import logging
import threading
import uuid
from collections.abc import Iterable

from bluectl.core.adapter import AdapterSession
from bluectl.core.address import to_wire
from bluectl.core.errors import BusError, ServiceRecordError
from bluectl.core.model import SearchResult, SearchStatus
from bluectl.core.sdp import ServiceRecord, to_uuid
from bluectl.transports.bluez import UNREACHABLE_ERRORS

LOGGER = logging.getLogger(__name__)

# The daemon accepts a single match pattern; an empty one returns every
# handle and the UUID filtering is done here.
_MATCH_ALL = ""


class SearchTransaction:
    """One in-flight service search and its termination flag."""

    def __init__(self, trans_id: int, address: int) -> None:
        self.trans_id = trans_id
        self.address = address
        self._terminated = threading.Event()

    @property
    def terminated(self) -> bool:
        return self._terminated.is_set()

    def set_terminated(self) -> bool:
        if self._terminated.is_set():
            return False
        self._terminated.set()
        return True


class ServiceSearchEngine:
    """Queries a remote device's service records and keeps the matching ones.

    Searches are independent of each other; the only shared state is the
    table of running transactions used by `cancel`.
    """

    def __init__(self, adapter: AdapterSession) -> None:
        self._adapter = adapter
        self._lock = threading.Lock()
        self._trans_ids = itertools.count(1)
        self._transactions: dict[int, SearchTransaction] = {}

    def begin(self, address: int) -> SearchTransaction:
        with self._lock:
            transaction = SearchTransaction(next(self._trans_ids), address)
            self._transactions[transaction.trans_id] = transaction
        return transaction

    def cancel(self, trans_id: int) -> bool:
        with self._lock:
            transaction = self._transactions.get(trans_id)
        if transaction is None:
            return False
        return transaction.set_terminated()

    def search(
        self,
        uuid_set: Iterable[uuid.UUID | int | str],
        address: int,
        *,
        transaction: SearchTransaction | None = None,
    ) -> SearchResult:
        required = [to_uuid(value) for value in uuid_set]
        if transaction is not None and transaction.address != address:
            raise ValueError(
                f"Transaction {transaction.trans_id} targets {to_wire(transaction.address)}, not {to_wire(address)}"
            )
        transaction = transaction or self.begin(address)
        with self._lock:
            self._transactions.setdefault(transaction.trans_id, transaction)
        try:
            status, records = self._search(transaction, required)
        finally:
            with self._lock:
                self._transactions.pop(transaction.trans_id, None)

        if status is not SearchStatus.ERROR and transaction.terminated:
            return SearchResult(trans_id=transaction.trans_id, status=SearchStatus.TERMINATED)
        if status is SearchStatus.COMPLETED and not records:
            status = SearchStatus.NO_RECORDS
        LOGGER.debug("Service search %d finished: %s", transaction.trans_id, status.value)
        return SearchResult(trans_id=transaction.trans_id, status=status, records=tuple(records))

    def _search(
        self,
        transaction: SearchTransaction,
        required: list[uuid.UUID],
    ) -> tuple[SearchStatus, list[ServiceRecord]]:
        wire = to_wire(transaction.address)
        try:
            handles = self._adapter.call("GetRemoteServiceHandles", wire, _MATCH_ALL)
        except BusError as exc:
            LOGGER.debug("GetRemoteServiceHandles() failed: %s", exc)
            if exc.name in UNREACHABLE_ERRORS:
                return SearchStatus.DEVICE_NOT_REACHABLE, []
            return SearchStatus.ERROR, []
        if not handles:
            return SearchStatus.NO_RECORDS, []
        LOGGER.debug("Found %d service handle(s) on %s", len(handles), wire)

        records: list[ServiceRecord] = []
        for handle in handles:
            if transaction.terminated:
                return SearchStatus.TERMINATED, []
            record: ServiceRecord | None = None
            try:
                raw = self._adapter.call("GetRemoteServiceRecord", wire, int(handle))
                record = ServiceRecord.from_bytes(raw, handle=int(handle), device_address=transaction.address)
            except (BusError, ServiceRecordError) as exc:
                LOGGER.warning("Failed to load service record %#x from %s: %s", int(handle), wire, exc)
            if transaction.terminated:
                return SearchStatus.TERMINATED, []
            if record is None:
                continue

            if all(record.has_service_class_uuid(u) or record.has_protocol_class_uuid(u) for u in required):
                LOGGER.debug("Found service %r", record)
                records.append(record)
            else:
                LOGGER.debug("Ignoring service %r", record)
        return SearchStatus.COMPLETED, records
