"""
loopkit: a two-tier cooperative task scheduler and call-shaping utilities.

loopkit models the microtask/macrotask relationship of an event loop as an
explicit, injectable Scheduler, and provides debounce, throttle and LRU
memoization built on the same timer and clock abstractions.

Basic Usage:
    >>> from loopkit import Scheduler, VirtualTimerSource, debounce
    >>>
    >>> timers = VirtualTimerSource()
    >>> scheduler = Scheduler(timer=timers)
    >>>
    >>> order = []
    >>> _ = scheduler.enqueue_low(lambda: order.append("timeout"))
    >>> _ = scheduler.enqueue_high(lambda: order.append("promise"))
    >>> _ = timers.run_pending()
    >>> order
    ['promise', 'timeout']
    >>>
    >>> # Coalesce bursts of calls
    >>> save = debounce(print, 0.5, timer=timers)
    >>> save("a"); save("b")
    >>> _ = timers.advance(0.5)
    b
"""

__version__ = "0.1.0"

from loopkit.exceptions import (
    CacheKeyError,
    ConfigurationError,
    DuplicateTaskError,
    InvalidDurationError,
    LoopkitError,
    RateLimitExceeded,
    SchedulerClosedError,
    TaskExecutionError,
)
from loopkit.scheduling import (
    AsyncTaskQueue,
    CallbackErrorReporter,
    CollectingErrorReporter,
    DrainResult,
    ErrorReporter,
    LoggingErrorReporter,
    Scheduler,
    SchedulerConfig,
    Task,
    TaskOutcome,
    TaskQueue,
    TaskTier,
    process_in_chunks,
)
from loopkit.shaping import (
    CacheConfig,
    CacheStats,
    Debouncer,
    LRUCache,
    Throttler,
    debounce,
    make_key,
    memoize,
    throttle,
)
from loopkit.timing import (
    Clock,
    ManualClock,
    MonotonicClock,
    ThreadingTimerSource,
    TimerHandle,
    TimerSource,
    VirtualTimerSource,
)

__all__ = [
    # Version
    "__version__",
    # Scheduling
    "Scheduler",
    "SchedulerConfig",
    "DrainResult",
    "TaskOutcome",
    "Task",
    "TaskQueue",
    "TaskTier",
    "AsyncTaskQueue",
    "process_in_chunks",
    # Error reporting
    "ErrorReporter",
    "LoggingErrorReporter",
    "CollectingErrorReporter",
    "CallbackErrorReporter",
    # Call shaping
    "debounce",
    "Debouncer",
    "throttle",
    "Throttler",
    "memoize",
    "make_key",
    "LRUCache",
    "CacheConfig",
    "CacheStats",
    # Timing
    "Clock",
    "MonotonicClock",
    "ManualClock",
    "TimerSource",
    "TimerHandle",
    "ThreadingTimerSource",
    "VirtualTimerSource",
    # Exceptions
    "LoopkitError",
    "TaskExecutionError",
    "DuplicateTaskError",
    "InvalidDurationError",
    "ConfigurationError",
    "RateLimitExceeded",
    "CacheKeyError",
    "SchedulerClosedError",
]
