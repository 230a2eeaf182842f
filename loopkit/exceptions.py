"""
Custom exceptions for loopkit.

This module defines the exception hierarchy for the library. Errors raised
synchronously (bad constructor arguments, duplicate ids, unhashable cache
arguments) propagate to the caller. Errors raised by deferred work are
wrapped in TaskExecutionError and handed to an ErrorReporter instead.
"""

from __future__ import annotations

from typing import Any


class LoopkitError(Exception):
    """
    Base exception for all loopkit errors.

    Attributes:
        message: Human-readable error description.
        details: Additional context about the error.

    Example:
        >>> try:
        ...     scheduler.enqueue_high(callback, task_id="dup")
        ... except LoopkitError as e:
        ...     logger.error(f"loopkit error: {e}")
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


class TaskExecutionError(LoopkitError):
    """
    Raised (and reported) when a deferred callback fails.

    The drain loop never lets this escape; it is passed to the scheduler's
    ErrorReporter and stored in the DrainResult. The original exception is
    available as ``original`` and as ``__cause__``.

    Attributes:
        task_id: Id of the failing task.
        tier: Name of the tier the task ran on ("HIGH", "LOW"), or the
            shaper that invoked it ("debounce", "throttle").
        name: Optional task label.
        original: The exception raised by the callback.

    Example:
        >>> result = scheduler.drain()
        >>> for error in result.errors:
        ...     print(error.task_id, error.original)
    """

    def __init__(
        self,
        task_id: str,
        original: BaseException,
        tier: str | None = None,
        name: str | None = None,
    ) -> None:
        self.task_id = task_id
        self.original = original
        self.tier = tier
        self.name = name

        label = name or task_id
        message = f"Task '{label}' failed: {type(original).__name__}: {original}"

        details = {
            "task_id": task_id,
            "tier": tier,
            "name": name,
            "original_type": type(original).__name__,
        }
        super().__init__(message, details)
        self.__cause__ = original


class DuplicateTaskError(LoopkitError):
    """
    Raised when a caller-supplied task id is already queued.

    Attributes:
        task_id: The conflicting id.
    """

    def __init__(self, task_id: str) -> None:
        self.task_id = task_id
        super().__init__(
            f"Task with ID {task_id} already in queue",
            {"task_id": task_id},
        )


class InvalidDurationError(LoopkitError, ValueError):
    """
    Raised when a wait, limit, ttl or capacity argument is negative.

    These are programmer errors and are raised at construction time,
    never deferred into the scheduler.

    Attributes:
        parameter: Name of the offending parameter.
        value: The value that was rejected.

    Example:
        >>> raise InvalidDurationError(parameter="wait", value=-1)
    """

    def __init__(self, parameter: str, value: Any) -> None:
        self.parameter = parameter
        self.value = value
        super().__init__(
            f"'{parameter}' must be non-negative, got {value!r}",
            {"parameter": parameter, "value": value},
        )


class ConfigurationError(LoopkitError):
    """
    Raised when a component is configured with an unusable value.

    Attributes:
        config_key: The configuration key that has an issue.
        expected: What was expected for this configuration.
        received: What was actually provided.

    Example:
        >>> raise ConfigurationError(
        ...     config_key="concurrency",
        ...     expected="an integer >= 1",
        ...     received=0,
        ... )
    """

    def __init__(
        self,
        config_key: str,
        expected: str | None = None,
        received: Any = None,
    ) -> None:
        self.config_key = config_key
        self.expected = expected
        self.received = received

        message = f"Configuration error for '{config_key}'"
        if expected:
            message += f": expected {expected}"
        if received is not None:
            message += f", got {received!r}"

        details = {
            "config_key": config_key,
            "expected": expected,
            "received": str(received) if received is not None else None,
        }
        super().__init__(message, details)


class RateLimitExceeded(LoopkitError):
    """
    Raised by a throttled wrapper configured with ``raise_on_drop=True``.

    Attributes:
        limit_key: Name of the throttled function.
        limit: The throttle window in seconds.
        retry_after: Seconds until the next call would be admitted.

    Example:
        >>> raise RateLimitExceeded(
        ...     limit_key="refresh",
        ...     limit=1.0,
        ...     retry_after=0.4,
        ... )
    """

    def __init__(
        self,
        limit_key: str,
        limit: float | None = None,
        retry_after: float | None = None,
    ) -> None:
        self.limit_key = limit_key
        self.limit = limit
        self.retry_after = retry_after

        message = f"Rate limit exceeded for '{limit_key}'"
        if limit:
            message += f" (limit: one call per {limit}s)"
        if retry_after:
            message += f". Retry after {retry_after:.3f} seconds"

        details = {
            "limit_key": limit_key,
            "limit": limit,
            "retry_after": retry_after,
        }
        super().__init__(message, details)


class CacheKeyError(LoopkitError, TypeError):
    """
    Raised when memoized arguments cannot be turned into a canonical key.

    Attributes:
        argument: Repr of the offending argument.
        reason: Why the argument was rejected.
    """

    def __init__(self, argument: Any, reason: str | None = None) -> None:
        self.argument = repr(argument)
        self.reason = reason or "argument is not hashable"

        super().__init__(
            f"Cannot build cache key from {type(argument).__name__}: {self.reason}",
            {"argument": self.argument, "reason": self.reason},
        )


class SchedulerClosedError(LoopkitError):
    """Raised when enqueueing onto a scheduler that has been closed."""

    def __init__(self) -> None:
        super().__init__("Scheduler is closed")
