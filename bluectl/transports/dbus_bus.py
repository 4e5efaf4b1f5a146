"""System D-Bus transport built on dbus-python and a GLib main loop thread."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import Any

from bluectl.core.errors import BusError, TransportUnavailableError
from bluectl.transports.bluez import BLUEZ_SERVICE, METHOD_SIGNATURES

LOGGER = logging.getLogger(__name__)

_main_loop_lock = threading.Lock()
_main_loop_installed = False
_LOOP_JOIN_TIMEOUT_S = 2.0


def _install_main_loop() -> None:
    global _main_loop_installed
    import dbus.mainloop.glib

    with _main_loop_lock:
        if not _main_loop_installed:
            dbus.mainloop.glib.DBusGMainLoop(set_as_default=True)
            _main_loop_installed = True


def _dbus_to_native(value: Any) -> Any:
    import dbus

    if isinstance(value, dbus.Boolean):
        return bool(value)
    if isinstance(value, (dbus.Byte, dbus.Int16, dbus.Int32, dbus.Int64, dbus.UInt16, dbus.UInt32, dbus.UInt64)):
        return int(value)
    if isinstance(value, dbus.ByteArray):
        return bytes(value)
    if isinstance(value, (dbus.String, dbus.ObjectPath)):
        return str(value)
    if isinstance(value, dbus.Array):
        if value.signature == "y":
            return bytes(bytearray(int(b) for b in value))
        return [_dbus_to_native(item) for item in value]
    if isinstance(value, dbus.Dictionary):
        return {_dbus_to_native(key): _dbus_to_native(val) for key, val in value.items()}
    if isinstance(value, dbus.Struct):
        return tuple(_dbus_to_native(item) for item in value)
    return value


class SystemDBus:
    """`Bus` implementation talking to BlueZ on the system bus.

    Signals are dispatched from a GLib main loop running in a daemon thread,
    so handlers run concurrently with the thread issuing requests.
    """

    def __init__(self) -> None:
        try:
            import dbus
            from gi.repository import GLib
        except ImportError as exc:  # pragma: no cover - import failure path
            raise TransportUnavailableError(
                "D-Bus transport requires 'dbus-python' and 'PyGObject'. Install dependencies and retry."
            ) from exc

        _install_main_loop()
        try:
            self._bus = dbus.SystemBus(private=True)
        except dbus.exceptions.DBusException as exc:
            raise TransportUnavailableError(f"Cannot connect to the system bus: {exc}") from exc

        self._loop = GLib.MainLoop()
        self._loop_thread = threading.Thread(target=self._loop.run, name="bluectl-dbus", daemon=True)
        self._loop_thread.start()

    def call(self, path: str, interface: str, method: str, *args: Any) -> Any:
        import dbus

        LOGGER.debug("D-Bus call %s.%s on %s", interface, method, path)
        try:
            reply = self._bus.call_blocking(
                BLUEZ_SERVICE,
                path,
                interface,
                method,
                METHOD_SIGNATURES.get(method),
                args,
                byte_arrays=True,
            )
        except dbus.exceptions.DBusException as exc:
            raise BusError(exc.get_dbus_name(), exc.get_dbus_message()) from exc
        return _dbus_to_native(reply)

    def subscribe(
        self,
        interface: str,
        signal_name: str,
        handler: Callable[..., None],
        *,
        path: str | None = None,
    ) -> Any:
        import dbus

        def _dispatch(*args: Any) -> None:
            handler(*(_dbus_to_native(arg) for arg in args))

        try:
            return self._bus.add_signal_receiver(
                _dispatch,
                signal_name=signal_name,
                dbus_interface=interface,
                bus_name=BLUEZ_SERVICE,
                path=path,
                byte_arrays=True,
            )
        except dbus.exceptions.DBusException as exc:
            raise BusError(exc.get_dbus_name(), exc.get_dbus_message()) from exc

    def unsubscribe(self, token: Any) -> None:
        token.remove()

    def close(self) -> None:
        self._loop.quit()
        self._loop_thread.join(timeout=_LOOP_JOIN_TIMEOUT_S)
        if self._loop_thread.is_alive():
            LOGGER.warning("D-Bus main loop thread did not stop within %.1fs", _LOOP_JOIN_TIMEOUT_S)
        self._bus.close()
