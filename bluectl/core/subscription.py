"""Scoped signal handler registration."""

from __future__ import annotations

import logging
from collections.abc import Callable
from types import TracebackType
from typing import Any

from bluectl.transports.base import Bus

LOGGER = logging.getLogger(__name__)


class SignalSubscription:
    """Registers one signal handler for the lifetime of a ``with`` block.

    The handler is removed on every exit path, including exceptions raised
    inside the block. A failure to remove is logged and does not replace
    the exception already propagating.
    """

    def __init__(
        self,
        bus: Bus,
        interface: str,
        signal_name: str,
        handler: Callable[..., None],
        *,
        path: str | None = None,
    ) -> None:
        self._bus = bus
        self.interface = interface
        self.signal_name = signal_name
        self._handler = handler
        self._path = path
        self._token: Any = None

    @property
    def active(self) -> bool:
        return self._token is not None

    def __enter__(self) -> SignalSubscription:
        self._token = self._bus.subscribe(
            self.interface,
            self.signal_name,
            self._handler,
            path=self._path,
        )
        LOGGER.debug("Subscribed to %s.%s", self.interface, self.signal_name)
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        token, self._token = self._token, None
        if token is None:
            return
        try:
            self._bus.unsubscribe(token)
        except Exception as unsubscribe_exc:
            if exc is None:
                raise
            LOGGER.warning(
                "Failed to remove %s.%s handler: %s", self.interface, self.signal_name, unsubscribe_exc
            )
        else:
            LOGGER.debug("Unsubscribed from %s.%s", self.interface, self.signal_name)
