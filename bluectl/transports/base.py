"""Transport interfaces."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, Protocol


class Bus(Protocol):
    def call(self, path: str, interface: str, method: str, *args: Any) -> Any:
        """Issue a request to the daemon and return its reply.

        Error replies are raised as `BusError`.
        """

    def subscribe(
        self,
        interface: str,
        signal_name: str,
        handler: Callable[..., None],
        *,
        path: str | None = None,
    ) -> Any:
        """Register a signal handler and return a token for `unsubscribe`."""

    def unsubscribe(self, token: Any) -> None:
        """Remove a handler registered by `subscribe`."""

    def close(self) -> None:
        """Release the connection to the daemon."""
