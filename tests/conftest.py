from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest

from bluectl.core.adapter import AdapterSession
from bluectl.core.errors import BusError

ADAPTER_PATH = "/org/bluez/hci0"


class FakeBus:
    """In-memory `Bus`: scripted replies and synchronous signal delivery."""

    def __init__(self) -> None:
        self.replies: dict[str, Any] = {
            "DefaultAdapter": ADAPTER_PATH,
            "ListAdapters": [ADAPTER_PATH, "/org/bluez/hci1"],
            "GetAddress": "00:11:22:33:44:55",
            "HasBonding": False,
        }
        self.calls: list[tuple[str, str, str, tuple[Any, ...]]] = []
        self.handlers: list[tuple[str, str, Callable[..., None]]] = []
        self.closed = False

    def call(self, path: str, interface: str, method: str, *args: Any) -> Any:
        self.calls.append((path, interface, method, args))
        reply = self.replies.get(method)
        if isinstance(reply, BaseException):
            raise reply
        if callable(reply):
            return reply(*args)
        return reply

    def subscribe(self, interface: str, signal_name: str, handler: Callable[..., None], *, path: str | None = None):
        token = (interface, signal_name, handler)
        self.handlers.append(token)
        return token

    def unsubscribe(self, token) -> None:
        self.handlers.remove(token)

    def close(self) -> None:
        self.closed = True

    def emit(self, signal_name: str, *args: Any) -> None:
        for _, name, handler in list(self.handlers):
            if name == signal_name:
                handler(*args)

    def methods(self) -> list[str]:
        return [method for _, _, method, _ in self.calls]


def bus_error(suffix: str, message: str = "failed") -> BusError:
    return BusError(f"org.bluez.Error.{suffix}", message)


@pytest.fixture
def bus() -> FakeBus:
    return FakeBus()


@pytest.fixture
def adapter(bus: FakeBus) -> AdapterSession:
    return AdapterSession.resolve(bus)
