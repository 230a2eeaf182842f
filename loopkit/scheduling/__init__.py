"""
Task scheduling for loopkit.

This module provides a two-tier cooperative scheduler: HIGH tasks are
drained completely before a single LOW task is admitted, mirroring the
microtask/macrotask relationship of an event loop.

Example:
    >>> from loopkit.scheduling import Scheduler, SchedulerConfig
    >>> from loopkit.timing import VirtualTimerSource
    >>>
    >>> timers = VirtualTimerSource()
    >>> scheduler = Scheduler(timer=timers)
    >>>
    >>> order = []
    >>> _ = scheduler.enqueue_low(lambda: order.append("task"))
    >>> _ = scheduler.enqueue_high(lambda: order.append("micro"))
    >>>
    >>> # Nothing runs in the caller's stack; the drain starts on the timer
    >>> timers.run_pending()
    1
    >>> order
    ['micro', 'task']
"""

from loopkit.scheduling.async_queue import AsyncTaskQueue
from loopkit.scheduling.chunking import process_in_chunks
from loopkit.scheduling.reporting import (
    CallbackErrorReporter,
    CollectingErrorReporter,
    ErrorReporter,
    LoggingErrorReporter,
)
from loopkit.scheduling.scheduler import (
    DrainResult,
    Scheduler,
    SchedulerConfig,
    SchedulerStats,
    TaskOutcome,
)
from loopkit.scheduling.task_queue import (
    Task,
    TaskQueue,
    TaskTier,
)

__all__ = [
    # Tasks
    "TaskTier",
    "Task",
    "TaskQueue",
    # Scheduler
    "Scheduler",
    "SchedulerConfig",
    "SchedulerStats",
    "DrainResult",
    "TaskOutcome",
    # Error reporting
    "ErrorReporter",
    "LoggingErrorReporter",
    "CollectingErrorReporter",
    "CallbackErrorReporter",
    # Helpers
    "AsyncTaskQueue",
    "process_in_chunks",
]
