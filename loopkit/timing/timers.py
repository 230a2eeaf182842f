"""
Timer sources.

A TimerSource runs a callback once, no sooner than a given delay, and can
cancel a callback that has not fired yet. The scheduler uses one to kick
off drains; debounce and trailing throttle use one to defer calls.
"""

from __future__ import annotations

import heapq
import itertools
import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from loopkit.exceptions import InvalidDurationError
from loopkit.timing.clock import ManualClock

logger = logging.getLogger(__name__)

_handle_ids = itertools.count(1)


@dataclass(eq=False)
class TimerHandle:
    """
    Handle for a scheduled callback.

    Attributes:
        id: Process-unique handle number.
        deadline: Time (in the source's clock) at which the callback is due.
        callback: The callback to run.
        cancelled: Set once cancel() has been called on the handle.
        fired: Set once the callback has been started.
    """

    deadline: float
    callback: Callable[[], Any] = field(repr=False)
    id: int = field(default_factory=lambda: next(_handle_ids))
    cancelled: bool = False
    fired: bool = False
    _native: Any = field(default=None, repr=False)

    @property
    def active(self) -> bool:
        """True while the callback may still run."""
        return not (self.cancelled or self.fired)


@runtime_checkable
class TimerSource(Protocol):
    """
    Protocol for one-shot timer facilities.

    Example:
        >>> handle = timers.schedule(lambda: print("hi"), 0.5)
        >>> timers.cancel(handle)
    """

    def schedule(self, callback: Callable[[], Any], delay: float) -> TimerHandle:
        """
        Run callback once, no sooner than delay seconds from now.

        Args:
            callback: Zero-argument callable.
            delay: Seconds to wait; 0 still defers the call.

        Returns:
            A handle that can be passed to cancel().
        """
        ...

    def cancel(self, handle: TimerHandle) -> None:
        """Cancel a pending callback. No-op if it already fired."""
        ...


class ThreadingTimerSource:
    """
    TimerSource backed by ``threading.Timer``.

    Callbacks run on short-lived daemon threads. Components fed by this
    source guard their own state with locks.

    Example:
        >>> timers = ThreadingTimerSource()
        >>> handle = timers.schedule(flush, 0.25)
        >>> timers.shutdown()
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._live: dict[int, TimerHandle] = {}

    def schedule(self, callback: Callable[[], Any], delay: float) -> TimerHandle:
        if delay < 0:
            raise InvalidDurationError(parameter="delay", value=delay)

        handle = TimerHandle(deadline=time.monotonic() + delay, callback=callback)

        def fire() -> None:
            with self._lock:
                if handle.cancelled:
                    return
                handle.fired = True
                self._live.pop(handle.id, None)
            callback()

        timer = threading.Timer(delay, fire)
        timer.daemon = True
        handle._native = timer

        with self._lock:
            self._live[handle.id] = handle
        timer.start()
        return handle

    def cancel(self, handle: TimerHandle) -> None:
        with self._lock:
            if not handle.active:
                return
            handle.cancelled = True
            self._live.pop(handle.id, None)
        if handle._native is not None:
            handle._native.cancel()

    def pending_count(self) -> int:
        """Number of timers that have neither fired nor been cancelled."""
        with self._lock:
            return len(self._live)

    def shutdown(self) -> int:
        """
        Cancel every outstanding timer.

        Returns:
            Number of timers cancelled.
        """
        with self._lock:
            handles = list(self._live.values())
        for handle in handles:
            self.cancel(handle)
        if handles:
            logger.debug(f"Cancelled {len(handles)} pending timers on shutdown")
        return len(handles)


class VirtualTimerSource:
    """
    Deterministic TimerSource driven by a ManualClock.

    Nothing fires until advance() or run_pending() is called. Due callbacks
    run in deadline order, ties broken by scheduling order. Callbacks that
    schedule new timers falling inside the advanced window run in the same
    call. Exceptions raised by callbacks propagate to the caller of
    advance().

    Example:
        >>> clock = ManualClock()
        >>> timers = VirtualTimerSource(clock)
        >>> fired = []
        >>> _ = timers.schedule(lambda: fired.append(clock.now()), 0.1)
        >>> timers.advance(0.5)
        1
        >>> fired
        [0.1]
    """

    def __init__(self, clock: ManualClock | None = None) -> None:
        self.clock = clock or ManualClock()
        self._heap: list[tuple[float, int, TimerHandle]] = []
        self._counter = itertools.count()
        self._lock = threading.RLock()

    def schedule(self, callback: Callable[[], Any], delay: float) -> TimerHandle:
        if delay < 0:
            raise InvalidDurationError(parameter="delay", value=delay)
        with self._lock:
            handle = TimerHandle(deadline=self.clock.now() + delay, callback=callback)
            heapq.heappush(self._heap, (handle.deadline, next(self._counter), handle))
            return handle

    def cancel(self, handle: TimerHandle) -> None:
        with self._lock:
            if handle.active:
                handle.cancelled = True

    def _pop_due(self, until: float) -> TimerHandle | None:
        with self._lock:
            while self._heap:
                deadline, _, handle = self._heap[0]
                if handle.cancelled:
                    heapq.heappop(self._heap)
                    continue
                if deadline > until:
                    return None
                heapq.heappop(self._heap)
                handle.fired = True
                return handle
            return None

    def advance(self, seconds: float) -> int:
        """
        Move the clock forward, firing every callback that falls due.

        Args:
            seconds: How far to advance.

        Returns:
            Number of callbacks fired.
        """
        if seconds < 0:
            raise InvalidDurationError(parameter="seconds", value=seconds)

        target = self.clock.now() + seconds
        fired = 0
        while True:
            handle = self._pop_due(target)
            if handle is None:
                break
            if handle.deadline > self.clock.now():
                self.clock.set(handle.deadline)
            handle.callback()
            fired += 1

        if target > self.clock.now():
            self.clock.set(target)
        return fired

    def run_pending(self) -> int:
        """Fire everything due at the current time."""
        return self.advance(0)

    def pending_count(self) -> int:
        """Number of timers that have neither fired nor been cancelled."""
        with self._lock:
            return sum(1 for _, _, handle in self._heap if handle.active)

    def next_deadline(self) -> float | None:
        """Deadline of the earliest live timer, or None."""
        with self._lock:
            live = [handle.deadline for _, _, handle in self._heap if handle.active]
            return min(live) if live else None
