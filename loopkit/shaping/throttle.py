"""
Throttle: run a function at most once per window.

Leading-edge by default: the first call of a window runs immediately and
later calls in the same window are dropped. With ``trailing=True`` the last
dropped call also runs once the window closes.
"""

from __future__ import annotations

import functools
import logging
import threading
import types
from collections.abc import Callable
from typing import Any, Generic, ParamSpec, TypeVar

from loopkit.exceptions import ConfigurationError, RateLimitExceeded
from loopkit.scheduling.reporting import ErrorReporter, LoggingErrorReporter
from loopkit.shaping._common import func_name, require_non_negative, run_deferred
from loopkit.timing.clock import Clock, MonotonicClock
from loopkit.timing.timers import ThreadingTimerSource, TimerHandle, TimerSource

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")


class Throttler(Generic[P, T]):
    """
    Wrapper that admits at most one call per ``limit`` seconds.

    A call is admitted when no call has run yet or when at least ``limit``
    seconds have passed since the last admitted call. Admitted calls run
    synchronously and their result (or exception) goes to the caller.
    Dropped calls return None, or raise RateLimitExceeded when
    ``raise_on_drop`` is set. ``limit=0`` admits every call.

    Example:
        >>> clock = ManualClock()
        >>> throttled = Throttler(refresh, limit=100, clock=clock)
        >>> throttled()          # t=0 runs
        >>> clock.advance(30)
        >>> throttled()          # t=30 dropped
        >>> clock.advance(80)
        >>> throttled()          # t=110 runs
    """

    def __init__(
        self,
        func: Callable[P, T],
        limit: float = 0.1,
        *,
        trailing: bool = False,
        raise_on_drop: bool = False,
        clock: Clock | None = None,
        timer: TimerSource | None = None,
        reporter: ErrorReporter | None = None,
    ) -> None:
        """
        Initialize the throttler.

        Args:
            func: Function to wrap.
            limit: Window length in seconds.
            trailing: Also run the last dropped call when the window ends.
            raise_on_drop: Raise RateLimitExceeded instead of dropping.
            clock: Clock for window arithmetic. Defaults to the timer's
                clock when it has one, otherwise monotonic time.
            timer: Timer for trailing calls. Defaults to real timers.
            reporter: Sink for failures raised by trailing calls.

        Raises:
            InvalidDurationError: If limit is negative.
            ConfigurationError: If both trailing and raise_on_drop are set.
        """
        functools.update_wrapper(self, func)
        require_non_negative("limit", limit)
        if trailing and raise_on_drop:
            raise ConfigurationError(
                config_key="raise_on_drop",
                expected="False when trailing=True",
                received=raise_on_drop,
            )

        self.func = func
        self.limit = limit
        self.trailing = trailing
        self.raise_on_drop = raise_on_drop
        self._clock = clock or getattr(timer, "clock", None) or MonotonicClock()
        self._timer = timer
        self._reporter = reporter or LoggingErrorReporter()

        self._lock = threading.RLock()
        self._last_invocation: float | None = None
        self._trailing_args: tuple[tuple[Any, ...], dict[str, Any]] | None = None
        self._trailing_handle: TimerHandle | None = None
        self._generation = 0

        self.call_count = 0
        self.invocation_count = 0
        self.dropped_count = 0

    def __call__(self, *args: P.args, **kwargs: P.kwargs) -> T | None:
        with self._lock:
            now = self._clock.now()
            self.call_count += 1

            last = self._last_invocation
            if last is None or now - last >= self.limit:
                self._last_invocation = now
                self._cancel_trailing()
                self.invocation_count += 1
            else:
                self.dropped_count += 1
                retry_after = self.limit - (now - last)
                if self.trailing:
                    self._trailing_args = (args, kwargs)
                    if self._trailing_handle is None:
                        self._schedule_trailing(retry_after)
                    return None
                if self.raise_on_drop:
                    raise RateLimitExceeded(
                        limit_key=func_name(self.func),
                        limit=self.limit,
                        retry_after=retry_after,
                    )
                logger.debug(
                    f"Throttled call to {func_name(self.func)} dropped, "
                    f"retry_after={retry_after:.3f}"
                )
                return None

        return self.func(*args, **kwargs)

    def __get__(self, instance: Any, owner: type | None = None) -> Any:
        if instance is None:
            return self
        return types.MethodType(self, instance)

    def _schedule_trailing(self, delay: float) -> None:
        if self._timer is None:
            self._timer = ThreadingTimerSource()
        self._generation += 1
        generation = self._generation
        self._trailing_handle = self._timer.schedule(
            lambda: self._fire_trailing(generation), delay
        )

    def _cancel_trailing(self) -> None:
        if self._trailing_handle is not None and self._timer is not None:
            self._timer.cancel(self._trailing_handle)
        self._trailing_handle = None
        self._trailing_args = None
        self._generation += 1

    def _fire_trailing(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation or self._trailing_args is None:
                return
            args, kwargs = self._trailing_args
            self._trailing_args = None
            self._trailing_handle = None
            self._last_invocation = self._clock.now()
            self.invocation_count += 1
        logger.debug(f"Trailing call to {func_name(self.func)} firing")
        run_deferred(self.func, args, kwargs, self._reporter, "throttle")

    @property
    def last_invocation_time(self) -> float | None:
        """Clock reading of the last admitted call."""
        with self._lock:
            return self._last_invocation

    @property
    def pending(self) -> bool:
        """True if a trailing call is waiting to run."""
        with self._lock:
            return self._trailing_args is not None

    def retry_after(self) -> float:
        """Seconds until a call would be admitted. 0 if admitted now."""
        with self._lock:
            if self._last_invocation is None:
                return 0.0
            elapsed = self._clock.now() - self._last_invocation
            return max(0.0, self.limit - elapsed)

    def cancel(self) -> None:
        """Drop any trailing call and start a fresh window."""
        with self._lock:
            self._cancel_trailing()
            self._last_invocation = None


def throttle(
    func: Callable[P, T] | None = None,
    limit: float = 0.1,
    *,
    trailing: bool = False,
    raise_on_drop: bool = False,
    clock: Clock | None = None,
    timer: TimerSource | None = None,
    reporter: ErrorReporter | None = None,
) -> Any:
    """
    Throttle a function.

    Usable directly or as a decorator, with or without arguments.

    Args:
        func: Function to wrap.
        limit: Window length in seconds.
        trailing: Also run the last dropped call when the window ends.
        raise_on_drop: Raise RateLimitExceeded instead of dropping.
        clock: Clock for window arithmetic.
        timer: Timer for trailing calls.
        reporter: Sink for failures raised by trailing calls.

    Returns:
        A Throttler, or a decorator producing one.

    Example:
        >>> @throttle(limit=1.0)
        ... def report_progress(done, total):
        ...     print(f"{done}/{total}")
    """
    require_non_negative("limit", limit)

    def decorator(f: Callable[P, T]) -> Throttler[P, T]:
        return Throttler(
            f,
            limit,
            trailing=trailing,
            raise_on_drop=raise_on_drop,
            clock=clock,
            timer=timer,
            reporter=reporter,
        )

    if func is None:
        return decorator
    return decorator(func)
