from datetime import UTC, datetime, timedelta

import pytest

from roost.scheduler import Scheduler
from tests.factories import FakeClock


class _Owner:
    def __init__(self) -> None:
        self.posted = []

    def post(self, action, *, handle=None) -> None:
        self.posted.append((action, handle))


def test_after_fires_once_when_due() -> None:
    clock = FakeClock()
    scheduler = Scheduler(clock=clock)
    calls: list[str] = []
    scheduler.after(5, lambda: calls.append("a"))

    assert scheduler.run_due(4.9) == 0
    assert scheduler.run_due(5.0) == 1
    assert scheduler.run_due(100.0) == 0
    assert calls == ["a"]
    assert scheduler.pending() == 0


def test_run_due_defaults_to_clock() -> None:
    clock = FakeClock(10.0)
    scheduler = Scheduler(clock=clock)
    calls: list[int] = []
    scheduler.at(12.0, lambda: calls.append(1))

    scheduler.run_due()
    clock.advance(2)
    scheduler.run_due()

    assert calls == [1]


def test_equal_fire_times_keep_insertion_order() -> None:
    scheduler = Scheduler(clock=FakeClock())
    calls: list[str] = []
    for name in ("a", "b", "c"):
        scheduler.at(1.0, lambda name=name: calls.append(name))
    scheduler.at(0.5, lambda: calls.append("early"))

    scheduler.run_due(1.0)

    assert calls == ["early", "a", "b", "c"]


def test_cancel_before_fire_wins() -> None:
    scheduler = Scheduler(clock=FakeClock())
    calls: list[str] = []
    handle = scheduler.after(0, lambda: calls.append("x"))

    assert scheduler.cancel(handle) is True
    assert scheduler.cancel(handle) is False
    scheduler.run_due(10.0)

    assert calls == []
    assert not handle.active


def test_repeating_reschedules_until_cancelled() -> None:
    clock = FakeClock()
    scheduler = Scheduler(clock=clock)
    calls: list[float] = []
    handle = scheduler.repeating(2, lambda: calls.append(clock.now))

    for now in (1.0, 2.0, 3.0, 4.0, 6.0):
        clock.now = now
        scheduler.run_due()
    scheduler.cancel(handle)
    clock.now = 8.0
    scheduler.run_due()

    assert calls == [2.0, 4.0, 6.0]
    assert handle.fired == 3


def test_repeating_does_not_burst_after_a_gap() -> None:
    scheduler = Scheduler(clock=FakeClock())
    calls: list[int] = []
    handle = scheduler.repeating(1, lambda: calls.append(1))

    scheduler.run_due(10.0)

    assert calls == [1]
    assert handle.fire_at == 11.0


def test_action_can_cancel_its_own_repeat() -> None:
    scheduler = Scheduler(clock=FakeClock())
    calls: list[int] = []
    handles = []

    def _once() -> None:
        calls.append(1)
        scheduler.cancel(handles[0])

    handles.append(scheduler.repeating(1, _once))
    scheduler.run_due(1.0)
    scheduler.run_due(2.0)

    assert calls == [1]


def test_failing_action_does_not_stop_others() -> None:
    scheduler = Scheduler(clock=FakeClock())
    calls: list[str] = []

    def _boom() -> None:
        raise RuntimeError("boom")

    scheduler.at(1.0, _boom)
    scheduler.at(1.0, lambda: calls.append("after"))

    assert scheduler.run_due(1.0) == 2
    assert calls == ["after"]


def test_owned_events_are_posted_to_owner() -> None:
    scheduler = Scheduler(clock=FakeClock())
    owner = _Owner()
    handle = scheduler.after(1, lambda: None, owner=owner)

    scheduler.run_due(1.0)

    assert owner.posted == [(handle.action, handle)]
    assert handle.owner is owner


def test_events_of_collected_owner_are_dropped() -> None:
    scheduler = Scheduler(clock=FakeClock())
    owner = _Owner()
    calls: list[int] = []
    handle = scheduler.after(1, lambda: calls.append(1), owner=owner)

    del owner
    assert scheduler.run_due(1.0) == 0

    assert handle.owner is None
    assert handle.cancelled
    assert calls == []
    assert scheduler.pending() == 0


def test_cancel_owned() -> None:
    scheduler = Scheduler(clock=FakeClock())
    owner = _Owner()
    other = _Owner()
    scheduler.after(1, lambda: None, owner=owner)
    scheduler.repeating(1, lambda: None, owner=owner)
    scheduler.after(1, lambda: None, owner=other)

    assert scheduler.cancel_owned(owner) == 2
    scheduler.run_due(1.0)

    assert owner.posted == []
    assert len(other.posted) == 1


def test_next_fire_time_skips_cancelled() -> None:
    scheduler = Scheduler(clock=FakeClock())
    first = scheduler.at(1.0, lambda: None)
    scheduler.at(3.0, lambda: None)

    assert scheduler.next_fire_time() == 1.0
    scheduler.cancel(first)
    assert scheduler.next_fire_time() == 3.0
    scheduler.run_due(3.0)
    assert scheduler.next_fire_time() is None


def test_invalid_durations() -> None:
    scheduler = Scheduler(clock=FakeClock())

    with pytest.raises(ValueError):
        scheduler.after(-1, lambda: None)
    with pytest.raises(ValueError):
        scheduler.repeating(0, lambda: None)


def test_cancel_reports_whether_a_run_was_prevented() -> None:
    scheduler = Scheduler(clock=FakeClock())
    fired = scheduler.after(0, lambda: None)
    scheduler.run_due(0.0)
    repeating = scheduler.repeating(1, lambda: None)
    scheduler.run_due(1.0)

    assert scheduler.cancel(fired) is False
    assert scheduler.cancel(repeating) is True


def test_at_accepts_wall_clock_datetime() -> None:
    clock = FakeClock(100.0)
    scheduler = Scheduler(clock=clock)
    calls: list[str] = []

    when = datetime.now(UTC) + timedelta(seconds=30)
    handle = scheduler.at(when, lambda: calls.append("x"))

    assert handle.fire_at == pytest.approx(130.0, abs=1.0)
    assert scheduler.run_due(120.0) == 0
    assert scheduler.run_due(135.0) == 1
    assert calls == ["x"]


def test_at_float_uses_scheduler_clock() -> None:
    scheduler = Scheduler(clock=FakeClock(50.0))

    handle = scheduler.at(60.0, lambda: None)

    assert handle.fire_at == 60.0
