"""
Tests for the coalescing statistics-changed notifier.
"""

import threading

from clarity.events import EventBus
from conftest import FakeClock


def test_first_notification_dispatches_immediately(log):
    bus = EventBus(log, coalesce_seconds=0.5, clock=FakeClock())
    calls = []
    bus.subscribe(lambda: calls.append(1))

    bus.notify()

    assert calls == [1]
    bus.close()


def test_burst_collapses_into_one_trailing_dispatch(log):
    clock = FakeClock()
    bus = EventBus(log, coalesce_seconds=0.05, clock=clock)
    calls = []
    second = threading.Event()

    def listener():
        calls.append(1)
        if len(calls) == 2:
            second.set()

    bus.subscribe(listener)

    bus.notify()
    bus.notify()
    bus.notify()
    bus.notify()

    assert second.wait(timeout=2.0)
    assert len(calls) == 2
    bus.close()


def test_notifications_after_interval_dispatch_immediately(log):
    clock = FakeClock()
    bus = EventBus(log, coalesce_seconds=0.5, clock=clock)
    calls = []
    bus.subscribe(lambda: calls.append(1))

    bus.notify()
    clock.now += 1.0
    bus.notify()

    assert calls == [1, 1]
    bus.close()


def test_unsubscribe(log):
    bus = EventBus(log, coalesce_seconds=0.0)
    calls = []
    unsubscribe = bus.subscribe(lambda: calls.append(1))

    unsubscribe()
    unsubscribe()
    bus.notify()

    assert calls == []


def test_failing_listener_does_not_reach_publisher(log):
    bus = EventBus(log, coalesce_seconds=0.0)
    calls = []

    def broken():
        raise RuntimeError("listener bug")

    bus.subscribe(broken)
    bus.subscribe(lambda: calls.append(1))

    bus.notify()

    assert calls == [1]
