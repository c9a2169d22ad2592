"""Tests for ThreadedCronTrigger."""

import threading
import time
from datetime import UTC, datetime

import pytest

from fleetconf.errors import SchedulerError
from fleetconf.services.trigger import ThreadedCronTrigger

EVERY_SECOND = "* * * * * *"


def test_fires_scheduled_callback():
    fired = threading.Event()
    trigger = ThreadedCronTrigger(max_workers=2)
    trigger.schedule(EVERY_SECOND, fired.set)
    trigger.start()
    try:
        assert fired.wait(3)
    finally:
        assert trigger.stop(2)


def test_next_fire_time_and_cancel():
    trigger = ThreadedCronTrigger(clock=lambda: datetime(2026, 3, 1, 10, 7, tzinfo=UTC))
    handle = trigger.schedule("0 12 * * *", lambda: None)
    assert trigger.next_fire_time(handle) == datetime(2026, 3, 1, 12, 0, tzinfo=UTC)
    trigger.cancel(handle)
    assert trigger.next_fire_time(handle) is None


def test_cancelled_job_does_not_fire():
    calls = []
    trigger = ThreadedCronTrigger(max_workers=1)
    handle = trigger.schedule(EVERY_SECOND, lambda: calls.append(1))
    trigger.cancel(handle)
    trigger.start()
    time.sleep(1.5)
    trigger.stop(1)
    assert calls == []


def test_start_twice_raises():
    trigger = ThreadedCronTrigger()
    trigger.start()
    try:
        assert trigger.running
        with pytest.raises(SchedulerError):
            trigger.start()
    finally:
        trigger.stop(1)
    assert not trigger.running


def test_stop_without_start_is_a_noop():
    assert ThreadedCronTrigger().stop(0.1)


def test_stop_reports_jobs_that_outlive_the_drain_timeout():
    entered = threading.Event()
    release = threading.Event()

    def slow():
        entered.set()
        release.wait(5)

    trigger = ThreadedCronTrigger(max_workers=1)
    trigger.schedule(EVERY_SECOND, slow)
    trigger.start()
    try:
        assert entered.wait(3)
        started = time.monotonic()
        assert trigger.stop(0.2) is False
        assert time.monotonic() - started < 2
    finally:
        release.set()


def test_failing_callback_does_not_stop_other_jobs():
    fired = threading.Event()

    def boom():
        raise RuntimeError("job failed")

    trigger = ThreadedCronTrigger(max_workers=2)
    trigger.schedule(EVERY_SECOND, boom)
    trigger.schedule(EVERY_SECOND, fired.set)
    trigger.start()
    try:
        assert fired.wait(3)
    finally:
        trigger.stop(2)
