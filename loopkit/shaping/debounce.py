"""
Debounce: coalesce bursts of calls into one call after a quiet period.
"""

from __future__ import annotations

import functools
import logging
import threading
import types
from collections.abc import Callable
from typing import Any, Generic, ParamSpec

from loopkit.scheduling.reporting import ErrorReporter, LoggingErrorReporter
from loopkit.shaping._common import func_name, require_non_negative, run_deferred
from loopkit.timing.timers import ThreadingTimerSource, TimerHandle, TimerSource

logger = logging.getLogger(__name__)

P = ParamSpec("P")


class Debouncer(Generic[P]):
    """
    Wrapper that runs ``func`` once, ``wait`` seconds after the last call.

    Every call cancels the pending run and schedules a new one with the
    call's arguments, so a burst of calls produces exactly one run carrying
    the last arguments. The run always happens on the TimerSource, never in
    the caller's stack, even with ``wait=0``.

    When used as a method decorator the instance is passed as the first
    argument, and all instances share one pending slot.

    Example:
        >>> saver = Debouncer(save_document, wait=0.5)
        >>> saver("draft 1")
        >>> saver("draft 2")   # cancels the first
        >>> # ~0.5s later: save_document("draft 2")
    """

    def __init__(
        self,
        func: Callable[P, Any],
        wait: float = 0.1,
        *,
        timer: TimerSource | None = None,
        reporter: ErrorReporter | None = None,
    ) -> None:
        """
        Initialize the debouncer.

        Args:
            func: Function to wrap.
            wait: Quiet period in seconds.
            timer: Timer used to defer the call. Defaults to real timers.
            reporter: Sink for failures raised by deferred runs.

        Raises:
            InvalidDurationError: If wait is negative.
        """
        functools.update_wrapper(self, func)
        require_non_negative("wait", wait)
        self.func = func
        self.wait = wait
        self._timer = timer or ThreadingTimerSource()
        self._reporter = reporter or LoggingErrorReporter()

        self._lock = threading.RLock()
        self._handle: TimerHandle | None = None
        self._pending: tuple[tuple[Any, ...], dict[str, Any]] | None = None
        self._generation = 0

        self.call_count = 0
        self.invocation_count = 0

    def __call__(self, *args: P.args, **kwargs: P.kwargs) -> None:
        with self._lock:
            self.call_count += 1
            self._cancel_timer()
            self._generation += 1
            generation = self._generation
            self._pending = (args, kwargs)
            self._handle = self._timer.schedule(lambda: self._fire(generation), self.wait)

    def __get__(self, instance: Any, owner: type | None = None) -> Any:
        if instance is None:
            return self
        return types.MethodType(self, instance)

    def _cancel_timer(self) -> None:
        if self._handle is not None:
            self._timer.cancel(self._handle)
            self._handle = None

    def _take_pending(self) -> tuple[tuple[Any, ...], dict[str, Any]] | None:
        pending = self._pending
        self._pending = None
        self._handle = None
        if pending is not None:
            self.invocation_count += 1
        return pending

    def _fire(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation:
                return
            pending = self._take_pending()
        if pending is None:
            return
        args, kwargs = pending
        logger.debug(f"Debounced call to {func_name(self.func)} firing")
        run_deferred(self.func, args, kwargs, self._reporter, "debounce")

    @property
    def pending(self) -> bool:
        """True if a call is waiting to run."""
        with self._lock:
            return self._pending is not None

    def cancel(self) -> bool:
        """
        Drop the pending call.

        Returns:
            True if a call was pending.
        """
        with self._lock:
            had_pending = self._pending is not None
            self._cancel_timer()
            self._pending = None
            self._generation += 1
        if had_pending:
            logger.debug(f"Debounced call to {func_name(self.func)} cancelled")
        return had_pending

    def flush(self) -> Any:
        """
        Run the pending call now, in the caller's stack.

        Exceptions propagate to the caller.

        Returns:
            The function's result, or None if nothing was pending.
        """
        with self._lock:
            self._cancel_timer()
            self._generation += 1
            pending = self._take_pending()
        if pending is None:
            return None
        args, kwargs = pending
        return self.func(*args, **kwargs)


def debounce(
    func: Callable[P, Any] | None = None,
    wait: float = 0.1,
    *,
    timer: TimerSource | None = None,
    reporter: ErrorReporter | None = None,
) -> Any:
    """
    Debounce a function.

    Usable directly or as a decorator, with or without arguments.

    Args:
        func: Function to wrap.
        wait: Quiet period in seconds.
        timer: Timer used to defer the call.
        reporter: Sink for failures raised by deferred runs.

    Returns:
        A Debouncer, or a decorator producing one.

    Raises:
        InvalidDurationError: If wait is negative.

    Example:
        >>> @debounce(wait=0.3)
        ... def on_resize(width, height):
        ...     relayout(width, height)
        >>>
        >>> search = debounce(run_search, 0.2)
    """
    require_non_negative("wait", wait)

    def decorator(f: Callable[P, Any]) -> Debouncer[P]:
        return Debouncer(f, wait, timer=timer, reporter=reporter)

    if func is None:
        return decorator
    return decorator(func)
