from __future__ import annotations

import threading

from bluectl.transports.dbus_bus import SystemDBus


class FakeLoop:
    def __init__(self) -> None:
        self._stop = threading.Event()

    def run(self) -> None:
        self._stop.wait()

    def quit(self) -> None:
        self._stop.set()


class FakeConnection:
    closed = False

    def close(self) -> None:
        self.closed = True


def test_close_stops_loop_thread_before_closing_bus() -> None:
    bus = SystemDBus.__new__(SystemDBus)
    bus._loop = FakeLoop()
    bus._loop_thread = threading.Thread(target=bus._loop.run, daemon=True)
    bus._bus = FakeConnection()
    bus._loop_thread.start()

    bus.close()

    assert not bus._loop_thread.is_alive()
    assert bus._bus.closed
