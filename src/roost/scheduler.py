"""Process-wide registry of delayed, timed and repeating actions.

The scheduler owns no thread or task. Due events fire when ``run_due`` is
called from the engine's own execution context (``Dispatcher.tick`` or the
anyio runtime ticker). Events with an owning session are handed to that
session's mailbox instead of being run directly, so they never race with
the session's update handling.
"""

from __future__ import annotations

import heapq
import itertools
import time
import weakref
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol

from .logging import get_logger

logger = get_logger(__name__)

__all__ = ["ScheduleHandle", "ScheduleOwner", "Scheduler", "fire"]

Action = Callable[[], object]


class ScheduleOwner(Protocol):
    def post(self, action: Action, *, handle: ScheduleHandle | None = None) -> None: ...


@dataclass(eq=False, slots=True)
class ScheduleHandle:
    id: int
    action: Action
    fire_at: float
    interval: float | None = None
    seq: int = 0
    cancelled: bool = False
    fired: int = 0
    _owner: weakref.ReferenceType[ScheduleOwner] | None = field(
        default=None, repr=False
    )

    @property
    def owner(self) -> ScheduleOwner | None:
        if self._owner is None:
            return None
        return self._owner()

    @property
    def repeating(self) -> bool:
        return self.interval is not None

    @property
    def active(self) -> bool:
        if self.cancelled:
            return False
        return self.repeating or self.fired == 0


def fire(handle: ScheduleHandle) -> bool:
    """Run a handle's action unless it was cancelled first.

    Failures are logged and swallowed so one broken action cannot stop the
    events behind it.
    """
    if handle.cancelled:
        return False
    handle.fired += 1
    try:
        handle.action()
    except Exception as exc:
        logger.exception(
            "scheduler.action_failed",
            handle_id=handle.id,
            error=str(exc),
            error_type=exc.__class__.__name__,
        )
    return True


class Scheduler:
    def __init__(self, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._heap: list[tuple[float, int, ScheduleHandle]] = []
        self._handles: dict[int, ScheduleHandle] = {}
        self._ids = itertools.count(1)
        self._seq = itertools.count()

    def _push(self, handle: ScheduleHandle, fire_at: float) -> None:
        handle.fire_at = fire_at
        handle.seq = next(self._seq)
        heapq.heappush(self._heap, (fire_at, handle.seq, handle))

    def _add(
        self,
        action: Action,
        fire_at: float,
        *,
        interval: float | None,
        owner: ScheduleOwner | None,
    ) -> ScheduleHandle:
        handle = ScheduleHandle(
            id=next(self._ids),
            action=action,
            fire_at=fire_at,
            interval=interval,
            _owner=weakref.ref(owner) if owner is not None else None,
        )
        self._handles[handle.id] = handle
        self._push(handle, fire_at)
        logger.debug(
            "scheduler.added",
            handle_id=handle.id,
            fire_at=fire_at,
            interval=interval,
            owned=owner is not None,
        )
        return handle

    def after(
        self, delay: float, action: Action, *, owner: ScheduleOwner | None = None
    ) -> ScheduleHandle:
        if delay < 0:
            raise ValueError("delay must be non-negative")
        return self._add(action, self._clock() + delay, interval=None, owner=owner)

    def at(
        self,
        when: float | datetime,
        action: Action,
        *,
        owner: ScheduleOwner | None = None,
    ) -> ScheduleHandle:
        """Fire once at ``when``.

        A float is an absolute time on the scheduler clock (``time.monotonic``
        unless another clock was injected). A ``datetime`` is wall-clock time;
        naive values are taken as local time. It is converted to the scheduler
        clock using the current offset from ``time.time()``.
        """
        if isinstance(when, datetime):
            when = self._clock() + (when.timestamp() - time.time())
        return self._add(action, when, interval=None, owner=owner)

    def repeating(
        self,
        interval: float,
        action: Action,
        *,
        owner: ScheduleOwner | None = None,
        start_after: float | None = None,
    ) -> ScheduleHandle:
        if interval <= 0:
            raise ValueError("interval must be positive")
        first = interval if start_after is None else start_after
        return self._add(
            action, self._clock() + first, interval=interval, owner=owner
        )

    def cancel(self, handle: ScheduleHandle) -> bool:
        """Cancel ``handle``; True when this prevented at least one run.

        A one-shot already queued on a busy owner's mailbox counts as
        prevented, since the cancellation is observed before it runs.
        """
        if handle.cancelled:
            return False
        handle.cancelled = True
        self._handles.pop(handle.id, None)
        logger.debug("scheduler.cancelled", handle_id=handle.id)
        return handle.repeating or handle.fired == 0

    def cancel_owned(self, owner: ScheduleOwner) -> int:
        owned = [
            handle for handle in self._handles.values() if handle.owner is owner
        ]
        for handle in owned:
            self.cancel(handle)
        return len(owned)

    def pending(self) -> int:
        return len(self._handles)

    def next_fire_time(self) -> float | None:
        while self._heap:
            fire_at, seq, handle = self._heap[0]
            if handle.cancelled or handle.seq != seq:
                heapq.heappop(self._heap)
                continue
            return fire_at
        return None

    def run_due(self, now: float | None = None) -> int:
        """Fire every event due at ``now``; returns how many were fired."""
        if now is None:
            now = self._clock()
        fired = 0
        while self._heap and self._heap[0][0] <= now:
            fire_at, seq, handle = heapq.heappop(self._heap)
            if handle.cancelled or handle.seq != seq:
                continue
            owner = handle.owner
            if owner is None and handle._owner is not None:
                # owner was garbage collected
                handle.cancelled = True
                self._handles.pop(handle.id, None)
                continue
            if handle.interval is not None:
                next_at = fire_at + handle.interval
                if next_at <= now:
                    next_at = now + handle.interval
                self._push(handle, next_at)
            else:
                self._handles.pop(handle.id, None)
            if owner is not None:
                owner.post(handle.action, handle=handle)
            else:
                fire(handle)
            fired += 1
        return fired
