"""Device inquiry and remote name resolution.

Both operations turn the daemon's asynchronous inquiry signals into a
blocking call: the caller issues the request and waits on a condition that
the signal handlers (running on the transport's dispatch thread) update and
notify. Completion is latched in a flag, so a signal delivered before the
caller starts waiting is not lost.

There is no timeout. If the daemon never reports completion the call
blocks until it is cancelled.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterator
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass, field

from bluectl.core.adapter import AdapterSession
from bluectl.core.address import to_int, to_wire
from bluectl.core.errors import (
    AlreadyRunningError,
    BusError,
    NameNotAvailableError,
    OperationInterruptedError,
)
from bluectl.core.model import (
    GIAC,
    DeviceClass,
    DiscoveredDevice,
    DiscoveredDeviceFragment,
    DiscoveryListener,
    DiscoveryResult,
    InquiryStatus,
)
from bluectl.core.subscription import SignalSubscription
from bluectl.transports.bluez import ADAPTER_INTERFACE

LOGGER = logging.getLogger(__name__)

SIGNAL_DISCOVERY_STARTED = "DiscoveryStarted"
SIGNAL_DISCOVERY_COMPLETED = "DiscoveryCompleted"
SIGNAL_DEVICE_FOUND = "RemoteDeviceFound"
SIGNAL_NAME_UPDATED = "RemoteNameUpdated"


@dataclass
class DiscoverySessionState:
    fragments: dict[int, DiscoveredDeviceFragment] = field(default_factory=dict)
    cancelled: bool = False
    completed: bool = False
    condition: threading.Condition = field(default_factory=threading.Condition)

    def on_completed(self, *_: object) -> None:
        LOGGER.debug("Inquiry completed")
        with self.condition:
            self.completed = True
            self.condition.notify_all()

    def on_device_found(self, address: str, device_class: int, *_: object) -> None:
        key = to_int(address)
        with self.condition:
            fragment = self.fragments.setdefault(key, DiscoveredDeviceFragment())
            if fragment.device_class is not None:
                return
            LOGGER.debug("Device found %s, class %#08x", address, device_class)
            fragment.device_class = DeviceClass(int(device_class))

    def on_name_updated(self, address: str, name: str, *_: object) -> None:
        LOGGER.debug("Name updated %s %s", address, name)
        key = to_int(address)
        with self.condition:
            self.fragments.setdefault(key, DiscoveredDeviceFragment()).name = name

    def cancel(self) -> None:
        with self.condition:
            self.cancelled = True

    def wait(self) -> None:
        with self.condition:
            self.condition.wait_for(lambda: self.completed)


def _log_started(*_: object) -> None:
    LOGGER.debug("Device discovery procedure has been started")


class DiscoveryEngine:
    """Runs device inquiries on one adapter, one at a time."""

    def __init__(self, adapter: AdapterSession) -> None:
        self._adapter = adapter
        self._lock = threading.Lock()
        self._state: DiscoverySessionState | None = None
        self._busy = False

    @property
    def running(self) -> bool:
        with self._lock:
            return self._busy

    @contextmanager
    def inquiry_slot(self, state: DiscoverySessionState | None = None) -> Iterator[None]:
        """Hold the adapter's single inquiry slot for the duration of the block."""
        with self._lock:
            if self._busy:
                raise AlreadyRunningError("Another inquiry already running")
            self._busy = True
            self._state = state
        try:
            yield
        finally:
            with self._lock:
                self._busy = False
                self._state = None

    def _subscribe(self, stack: ExitStack, signal_name: str, handler: Callable[..., None]) -> None:
        stack.enter_context(
            SignalSubscription(
                self._adapter.bus,
                ADAPTER_INTERFACE,
                signal_name,
                handler,
                path=self._adapter.identity.path,
            )
        )

    def start(self, access_code: int = GIAC, listener: DiscoveryListener | None = None) -> DiscoveryResult:
        """Run one inquiry and block until the daemon reports completion.

        Devices are reported to ``listener.device_discovered`` only when the
        inquiry completes without being cancelled.
        """
        state = DiscoverySessionState()
        with self.inquiry_slot(state):
            LOGGER.debug("Starting inquiry with access code %#x", access_code)
            return self._run(state, listener)

    def _run(self, state: DiscoverySessionState, listener: DiscoveryListener | None) -> DiscoveryResult:
        try:
            with ExitStack() as stack:
                self._subscribe(stack, SIGNAL_DISCOVERY_COMPLETED, state.on_completed)
                self._subscribe(stack, SIGNAL_DISCOVERY_STARTED, _log_started)
                self._subscribe(stack, SIGNAL_DEVICE_FOUND, state.on_device_found)
                self._subscribe(stack, SIGNAL_NAME_UPDATED, state.on_name_updated)

                self._adapter.start_discovery()
                if listener is not None:
                    listener.inquiry_started()

                LOGGER.debug("Waiting for device inquiry to complete")
                try:
                    state.wait()
                except KeyboardInterrupt:
                    LOGGER.error("Discovery interrupted")
                    return DiscoveryResult(status=InquiryStatus.TERMINATED)
        except BusError as exc:
            LOGGER.error("Device inquiry failed: %s", exc)
            return DiscoveryResult(status=InquiryStatus.FAILED, error=exc)

        with state.condition:
            cancelled = state.cancelled
            fragments = dict(state.fragments)
        LOGGER.debug("%d device(s) found", len(fragments))
        if cancelled:
            return DiscoveryResult(status=InquiryStatus.TERMINATED)

        devices: list[DiscoveredDevice] = []
        try:
            for address, fragment in fragments.items():
                device = DiscoveredDevice(
                    address=address,
                    name=fragment.name,
                    device_class=fragment.device_class,
                    paired=self._adapter.has_bonding(address),
                )
                devices.append(device)
                if listener is not None:
                    listener.device_discovered(device)
        except BusError as exc:
            LOGGER.error("Device inquiry failed: %s", exc)
            return DiscoveryResult(status=InquiryStatus.FAILED, devices=tuple(devices), error=exc)
        return DiscoveryResult(status=InquiryStatus.COMPLETED, devices=tuple(devices))

    def cancel(self) -> bool:
        """Ask a running inquiry to stop; returns False when none is running."""
        with self._lock:
            state = self._state
        if state is None:
            return False
        state.cancel()
        self._adapter.cancel_discovery()
        return True


class NameResolver:
    """Fetches one remote device's friendly name through a short inquiry."""

    def __init__(self, engine: DiscoveryEngine, adapter: AdapterSession) -> None:
        self._engine = engine
        self._adapter = adapter

    def resolve(self, address: int) -> str:
        names: list[str] = []
        condition = threading.Condition()
        done = False
        completed = False

        def on_completed(*_: object) -> None:
            nonlocal done, completed
            with condition:
                done = completed = True
                condition.notify_all()

        def on_name_updated(wire: str, name: str | None, *_: object) -> None:
            nonlocal done
            if to_int(wire) != address:
                LOGGER.debug("Ignore device name %s %s", wire, name)
                return
            if name is None:
                LOGGER.debug("Device name is null")
                return
            with condition:
                names.append(name)
                done = True
                condition.notify_all()

        with self._engine.inquiry_slot(), ExitStack() as stack:
            for signal_name, handler in (
                (SIGNAL_DISCOVERY_COMPLETED, on_completed),
                (SIGNAL_NAME_UPDATED, on_name_updated),
            ):
                stack.enter_context(
                    SignalSubscription(
                        self._adapter.bus,
                        ADAPTER_INTERFACE,
                        signal_name,
                        handler,
                        path=self._adapter.identity.path,
                    )
                )
            self._adapter.start_discovery()
            LOGGER.debug("Waiting for the name of %s", to_wire(address))
            try:
                with condition:
                    condition.wait_for(lambda: done)
                    still_running = not completed
            except KeyboardInterrupt as exc:
                raise OperationInterruptedError(f"Name lookup for {to_wire(address)} interrupted") from exc

            # The daemon inquiry must not outlive the slot.
            if still_running:
                try:
                    self._adapter.cancel_discovery()
                except BusError as exc:
                    LOGGER.debug("Could not cancel inquiry after name lookup: %s", exc)

        with condition:
            if not names:
                raise NameNotAvailableError(f"Can't retrieve name of device {to_wire(address)}")
            return names[-1]
