"""
Error reporters for deferred work.

Failures inside drained tasks, debounced calls and trailing throttle calls
are never raised into the caller that scheduled them. They are wrapped in
TaskExecutionError and handed to an ErrorReporter.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import Any, Protocol, runtime_checkable

from loopkit.exceptions import TaskExecutionError

logger = logging.getLogger(__name__)


@runtime_checkable
class ErrorReporter(Protocol):
    """
    Protocol for failure sinks.

    Example:
        >>> class SentryReporter:
        ...     def report(self, error, context):
        ...         sentry_sdk.capture_exception(error.original)
        >>>
        >>> scheduler = Scheduler(reporter=SentryReporter())
    """

    def report(self, error: TaskExecutionError, context: dict[str, Any]) -> None:
        """
        Receive one failure.

        Args:
            error: The wrapped failure; ``error.original`` is the raw exception.
            context: Task metadata (id, tier, name, sequence).
        """
        ...


class LoggingErrorReporter:
    """
    Default reporter: one ERROR record with traceback per failure.

    Example:
        >>> reporter = LoggingErrorReporter()
        >>> reporter.report(error, {"task_id": "abc"})
        ERROR:loopkit.scheduling.reporting:Task 'abc' failed: ...
    """

    def __init__(self, logger: logging.Logger | None = None, level: int = logging.ERROR):
        """
        Initialize the logging reporter.

        Args:
            logger: Logger instance to use. Defaults to this module's logger.
            level: Logging level for failure records.
        """
        self.logger = logger or logging.getLogger(__name__)
        self.level = level

    def report(self, error: TaskExecutionError, context: dict[str, Any]) -> None:
        original = error.original
        self.logger.log(
            self.level,
            f"{error.message} context={context}",
            exc_info=(type(original), original, original.__traceback__),
        )


class CollectingErrorReporter:
    """
    Reporter that keeps every failure in memory.

    Useful in tests and for hosts that inspect failures after a drain.

    Example:
        >>> reporter = CollectingErrorReporter()
        >>> scheduler = Scheduler(reporter=reporter)
        >>> ...
        >>> [e.original for e in reporter.errors]
    """

    def __init__(self) -> None:
        self.reports: list[tuple[TaskExecutionError, dict[str, Any]]] = []
        self._lock = threading.Lock()

    def report(self, error: TaskExecutionError, context: dict[str, Any]) -> None:
        with self._lock:
            self.reports.append((error, dict(context)))

    @property
    def errors(self) -> list[TaskExecutionError]:
        """Reported errors in arrival order."""
        with self._lock:
            return [error for error, _ in self.reports]

    def clear(self) -> None:
        """Forget all collected reports."""
        with self._lock:
            self.reports.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self.reports)


class CallbackErrorReporter:
    """
    Reporter that forwards to a plain function.

    Exceptions raised by the callback are logged and suppressed so a broken
    reporter cannot stop a drain.

    Example:
        >>> reporter = CallbackErrorReporter(lambda err, ctx: alerts.send(str(err)))
    """

    def __init__(
        self,
        callback: Callable[[TaskExecutionError, dict[str, Any]], Any],
    ) -> None:
        self._callback = callback

    def report(self, error: TaskExecutionError, context: dict[str, Any]) -> None:
        try:
            self._callback(error, context)
        except Exception as e:
            logger.error(f"Error reporter callback failed: {e}")
            logger.error(f"Unreported task failure: {error.message}")


def report_failure(
    reporter: ErrorReporter,
    error: TaskExecutionError,
    context: dict[str, Any],
) -> None:
    """
    Deliver a failure without letting the reporter break the caller.

    Used at every boundary where deferred work is run.
    """
    try:
        reporter.report(error, context)
    except Exception as e:
        logger.error(f"Error reporter {type(reporter).__name__} failed: {e}")
        logger.error(f"Unreported task failure: {error.message}")
