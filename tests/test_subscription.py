from __future__ import annotations

import logging

import pytest
from conftest import FakeBus

from bluectl.core.subscription import SignalSubscription


class BrokenUnsubscribeBus(FakeBus):
    def unsubscribe(self, token) -> None:
        raise RuntimeError("connection lost")


def test_handler_is_active_only_inside_block(bus: FakeBus) -> None:
    received = []
    with SignalSubscription(bus, "org.bluez.Adapter", "DiscoveryCompleted", received.append) as sub:
        assert sub.active
        bus.emit("DiscoveryCompleted", "inside")
    bus.emit("DiscoveryCompleted", "outside")

    assert received == ["inside"]
    assert not sub.active
    assert bus.handlers == []


def test_handler_is_removed_when_block_raises(bus: FakeBus) -> None:
    with pytest.raises(ValueError):
        with SignalSubscription(bus, "org.bluez.Adapter", "DiscoveryCompleted", lambda *_: None):
            raise ValueError("boom")
    assert bus.handlers == []


def test_unsubscribe_failure_does_not_mask_original_error(caplog) -> None:
    bus = BrokenUnsubscribeBus()
    with caplog.at_level(logging.WARNING, logger="bluectl.core.subscription"):
        with pytest.raises(ValueError):
            with SignalSubscription(bus, "org.bluez.Adapter", "DiscoveryCompleted", lambda *_: None):
                raise ValueError("boom")
    assert "Failed to remove" in caplog.text


def test_unsubscribe_failure_propagates_on_clean_exit() -> None:
    bus = BrokenUnsubscribeBus()
    with pytest.raises(RuntimeError):
        with SignalSubscription(bus, "org.bluez.Adapter", "DiscoveryCompleted", lambda *_: None):
            pass
