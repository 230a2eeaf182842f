"""
Time collaborators for loopkit.

Everything time-dependent in loopkit reads the clock and defers work
through these protocols, so production code can use real timers while
tests drive a virtual clock.

Example:
    >>> from loopkit.timing import ManualClock, VirtualTimerSource
    >>>
    >>> clock = ManualClock()
    >>> timers = VirtualTimerSource(clock)
    >>> handle = timers.schedule(lambda: print("tick"), 1.0)
    >>> timers.advance(1.0)
    tick
    1
"""

from loopkit.timing.clock import (
    Clock,
    ManualClock,
    MonotonicClock,
)
from loopkit.timing.timers import (
    ThreadingTimerSource,
    TimerHandle,
    TimerSource,
    VirtualTimerSource,
)

__all__ = [
    # Clocks
    "Clock",
    "MonotonicClock",
    "ManualClock",
    # Timers
    "TimerSource",
    "TimerHandle",
    "ThreadingTimerSource",
    "VirtualTimerSource",
]
