"""Shared helpers for call shapers."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from loopkit.exceptions import InvalidDurationError, TaskExecutionError
from loopkit.scheduling.reporting import ErrorReporter, report_failure


def require_non_negative(parameter: str, value: float | None) -> None:
    """Raise InvalidDurationError for negative values. None is allowed."""
    if value is not None and value < 0:
        raise InvalidDurationError(parameter=parameter, value=value)


def func_name(func: Callable[..., Any]) -> str:
    return getattr(func, "__qualname__", None) or getattr(func, "__name__", repr(func))


def run_deferred(
    func: Callable[..., Any],
    args: tuple[Any, ...],
    kwargs: dict[str, Any],
    reporter: ErrorReporter,
    kind: str,
) -> Any:
    """
    Invoke a deferred call, routing failures to the reporter.

    Returns:
        The function's result, or None if it raised.
    """
    try:
        return func(*args, **kwargs)
    except Exception as e:
        name = func_name(func)
        error = TaskExecutionError(task_id=name, original=e, tier=kind, name=name)
        report_failure(reporter, error, {"function": name, "shaper": kind})
        return None
