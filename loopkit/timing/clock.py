"""
Clock sources.

Throttle windows, cache TTLs and virtual timers read time through the
Clock protocol so tests can drive it by hand.
"""

from __future__ import annotations

import threading
import time
from typing import Protocol, runtime_checkable

from loopkit.exceptions import InvalidDurationError


@runtime_checkable
class Clock(Protocol):
    """
    Protocol for time sources.

    Values are seconds as floats. Only differences between readings are
    meaningful; the epoch is implementation defined.

    Example:
        >>> class FixedClock:
        ...     def now(self):
        ...         return 42.0
        >>> isinstance(FixedClock(), Clock)
        True
    """

    def now(self) -> float:
        """Return the current time in seconds."""
        ...


class MonotonicClock:
    """Clock backed by ``time.monotonic``."""

    def now(self) -> float:
        return time.monotonic()


class ManualClock:
    """
    Clock that only moves when told to.

    Example:
        >>> clock = ManualClock()
        >>> clock.advance(1.5)
        1.5
        >>> clock.now()
        1.5
    """

    def __init__(self, start: float = 0.0) -> None:
        self._now = float(start)
        self._lock = threading.Lock()

    def now(self) -> float:
        with self._lock:
            return self._now

    def advance(self, seconds: float) -> float:
        """
        Move the clock forward.

        Args:
            seconds: Amount to advance by.

        Returns:
            The new time.

        Raises:
            InvalidDurationError: If seconds is negative.
        """
        if seconds < 0:
            raise InvalidDurationError(parameter="seconds", value=seconds)
        with self._lock:
            self._now += seconds
            return self._now

    def set(self, value: float) -> None:
        """Jump to an absolute time. Going backwards is rejected."""
        with self._lock:
            if value < self._now:
                raise InvalidDurationError(parameter="value", value=value)
            self._now = float(value)
