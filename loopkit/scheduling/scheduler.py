"""
Two-tier cooperative task scheduler.

HIGH tasks behave like microtasks and LOW tasks like macrotasks: every
HIGH task, including ones enqueued while draining, runs before the next
LOW task is admitted, and only one LOW task runs between HIGH drains.
"""

from __future__ import annotations

import itertools
import logging
import threading
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from loopkit.exceptions import (
    DuplicateTaskError,
    InvalidDurationError,
    SchedulerClosedError,
    TaskExecutionError,
)
from loopkit.scheduling.reporting import (
    ErrorReporter,
    LoggingErrorReporter,
    report_failure,
)
from loopkit.scheduling.task_queue import Task, TaskQueue, TaskTier
from loopkit.timing.clock import Clock, MonotonicClock
from loopkit.timing.timers import ThreadingTimerSource, TimerHandle, TimerSource

logger = logging.getLogger(__name__)


@dataclass
class SchedulerConfig:
    """
    Configuration for the scheduler.

    Attributes:
        auto_drain: Start a drain through the TimerSource whenever the
            scheduler goes from idle to non-idle. When False the host
            calls drain() or run_once() itself.
        kick_delay: Delay handed to the TimerSource for the drain kick.

    Example:
        >>> config = SchedulerConfig(auto_drain=False)
        >>> scheduler = Scheduler(config)
    """

    auto_drain: bool = True
    kick_delay: float = 0.0

    def __post_init__(self) -> None:
        if self.kick_delay < 0:
            raise InvalidDurationError(parameter="kick_delay", value=self.kick_delay)

    def to_dict(self) -> dict[str, Any]:
        """Convert config to dictionary."""
        return {
            "auto_drain": self.auto_drain,
            "kick_delay": self.kick_delay,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SchedulerConfig:
        """Create config from dictionary."""
        return cls(
            auto_drain=data.get("auto_drain", True),
            kick_delay=data.get("kick_delay", 0.0),
        )


@dataclass
class TaskOutcome:
    """Result of running one task."""

    task_id: str
    tier: TaskTier
    ok: bool
    name: str | None = None
    error: TaskExecutionError | None = None
    duration: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "task_id": self.task_id,
            "tier": self.tier.name,
            "name": self.name,
            "ok": self.ok,
            "error": self.error.to_dict() if self.error else None,
            "duration": self.duration,
        }


@dataclass
class DrainResult:
    """
    Outcome of a drain or a single tick.

    Failures never escape the drain loop; they are collected here and
    passed to the ErrorReporter. Call raise_for_errors() to turn the first
    failure back into an exception.

    Example:
        >>> result = scheduler.drain()
        >>> print(f"{len(result.succeeded)} ok, {len(result.failed)} failed")
        >>> result.raise_for_errors()
    """

    executed: list[TaskOutcome] = field(default_factory=list)

    @property
    def succeeded(self) -> list[TaskOutcome]:
        return [o for o in self.executed if o.ok]

    @property
    def failed(self) -> list[TaskOutcome]:
        return [o for o in self.executed if not o.ok]

    @property
    def errors(self) -> list[TaskExecutionError]:
        return [o.error for o in self.executed if o.error is not None]

    @property
    def task_ids(self) -> list[str]:
        """Ids in execution order."""
        return [o.task_id for o in self.executed]

    def raise_for_errors(self) -> None:
        """
        Raise the first failure, if any.

        Raises:
            TaskExecutionError: The first task failure of this drain.
        """
        errors = self.errors
        if errors:
            raise errors[0]

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "executed": [o.to_dict() for o in self.executed],
            "succeeded": len(self.succeeded),
            "failed": len(self.failed),
        }

    def __len__(self) -> int:
        return len(self.executed)


@dataclass
class SchedulerStats:
    """Statistics for the scheduler."""

    tasks_enqueued: int = 0
    tasks_completed: int = 0
    tasks_failed: int = 0
    tasks_cancelled: int = 0
    drains: int = 0
    total_processing_time: float = 0.0


class Scheduler:
    """
    Cooperative scheduler with a HIGH and a LOW tier.

    Tasks are zero-argument callables that run to completion on whichever
    thread drives the drain. Within a tier tasks run in enqueue order.
    Across tiers, the HIGH queue is emptied before one LOW task runs, and
    control returns to HIGH after every LOW task.

    Collaborators are injected: a TimerSource to start drains, a Clock for
    timestamps and an ErrorReporter for task failures.

    Example:
        >>> order = []
        >>> scheduler = Scheduler(timer=timers)
        >>> scheduler.enqueue_low(lambda: order.append("low"))
        >>> scheduler.enqueue_high(lambda: order.append("high"))
        >>> timers.run_pending()
        >>> order
        ['high', 'low']
    """

    def __init__(
        self,
        config: SchedulerConfig | None = None,
        *,
        timer: TimerSource | None = None,
        clock: Clock | None = None,
        reporter: ErrorReporter | None = None,
    ) -> None:
        """
        Initialize the scheduler.

        Args:
            config: Scheduler configuration.
            timer: Timer used to kick off drains. Defaults to real timers.
            clock: Clock for task timestamps and durations.
            reporter: Sink for task failures. Defaults to logging them.
        """
        self.config = config or SchedulerConfig()
        self._timer = timer or ThreadingTimerSource()
        self._clock = clock or MonotonicClock()
        self._reporter = reporter or LoggingErrorReporter()

        self._high = TaskQueue(TaskTier.HIGH)
        self._low = TaskQueue(TaskTier.LOW)
        self._queues = {TaskTier.HIGH: self._high, TaskTier.LOW: self._low}

        self._lock = threading.RLock()
        self._sequence = itertools.count()
        self._draining = False
        self._closed = False
        self._kick: TimerHandle | None = None
        self._current: Task | None = None
        self._stats = SchedulerStats()

    # ------------------------------------------------------------------
    # Enqueue / cancel
    # ------------------------------------------------------------------

    def enqueue(
        self,
        callback: Callable[[], Any],
        tier: TaskTier = TaskTier.LOW,
        *,
        name: str | None = None,
        task_id: str | None = None,
    ) -> str:
        """
        Queue a callback on a tier.

        Never blocks and never runs the callback in the caller's stack.

        Args:
            callback: Zero-argument callable.
            tier: Tier to queue on. Plain ints are accepted.
            name: Optional label for diagnostics.
            task_id: Caller-supplied id. Generated when omitted.

        Returns:
            The task id.

        Raises:
            DuplicateTaskError: If task_id is already queued on either tier.
            SchedulerClosedError: If the scheduler has been closed.
        """
        tier = TaskTier(tier)
        with self._lock:
            if self._closed:
                raise SchedulerClosedError()

            tid = task_id if task_id is not None else str(uuid.uuid4())
            if tid in self._high or tid in self._low:
                raise DuplicateTaskError(tid)

            task = Task(
                id=tid,
                callback=callback,
                tier=tier,
                sequence=next(self._sequence),
                name=name,
                created_at=self._clock.now(),
            )
            self._queues[tier].push(task)
            self._stats.tasks_enqueued += 1
            logger.debug(f"Enqueued {tier.name} task {task.label} (seq={task.sequence})")

            self._ensure_kick()
            return tid

    def enqueue_high(
        self,
        callback: Callable[[], Any],
        *,
        name: str | None = None,
        task_id: str | None = None,
    ) -> str:
        """Queue a callback on the HIGH tier. See enqueue()."""
        return self.enqueue(callback, TaskTier.HIGH, name=name, task_id=task_id)

    def enqueue_low(
        self,
        callback: Callable[[], Any],
        *,
        name: str | None = None,
        task_id: str | None = None,
    ) -> str:
        """Queue a callback on the LOW tier. See enqueue()."""
        return self.enqueue(callback, TaskTier.LOW, name=name, task_id=task_id)

    def cancel(self, task_id: str) -> bool:
        """
        Remove a task that has not started.

        Args:
            task_id: Id returned by enqueue.

        Returns:
            True if the task was removed. False if it already ran, is
            running, or never existed.
        """
        with self._lock:
            removed = self._high.remove(task_id) or self._low.remove(task_id)
            if removed:
                self._stats.tasks_cancelled += 1
                logger.debug(f"Cancelled task {task_id}")
                if self._is_empty() and self._kick is not None:
                    self._timer.cancel(self._kick)
                    self._kick = None
            return removed

    # ------------------------------------------------------------------
    # Draining
    # ------------------------------------------------------------------

    def _ensure_kick(self) -> None:
        """Schedule a drain if idle. Caller holds the lock."""
        if not self.config.auto_drain or self._closed or self._draining:
            return
        if self._kick is not None and self._kick.active:
            return
        if self._is_empty():
            return
        self._kick = self._timer.schedule(self._on_kick, self.config.kick_delay)

    def _on_kick(self) -> None:
        with self._lock:
            self._kick = None
        self.drain()

    def drain(self) -> DrainResult:
        """
        Run tasks until both tiers are empty.

        Returns:
            The outcome of every task run. Empty if a drain was already in
            progress (drains are not re-entrant).
        """
        return self._drain(single_tick=False)

    def run_once(self) -> DrainResult:
        """
        Run one event-loop tick: every HIGH task, then at most one LOW task.

        Returns:
            The outcome of every task run during the tick.
        """
        return self._drain(single_tick=True)

    def _drain(self, single_tick: bool) -> DrainResult:
        result = DrainResult()

        with self._lock:
            if self._draining:
                logger.debug("Drain already in progress, ignoring nested drain")
                return result
            self._draining = True
            if self._kick is not None:
                self._timer.cancel(self._kick)
                self._kick = None
            self._stats.drains += 1

        try:
            while True:
                with self._lock:
                    task = self._high.pop()
                    if task is None:
                        task = self._low.pop()
                    if task is None:
                        break
                    self._current = task

                result.executed.append(self._run(task))

                with self._lock:
                    self._current = None

                if single_tick and task.tier is TaskTier.LOW:
                    break
        finally:
            with self._lock:
                self._draining = False
                self._current = None
                self._ensure_kick()

        if result.executed:
            logger.debug(
                f"Drain finished: {len(result.succeeded)} ok, "
                f"{len(result.failed)} failed"
            )
        return result

    def _run(self, task: Task) -> TaskOutcome:
        """Run one task, reporting any failure."""
        start = self._clock.now()
        try:
            task.callback()
        except Exception as e:
            duration = self._clock.now() - start
            error = TaskExecutionError(
                task_id=task.id,
                original=e,
                tier=task.tier.name,
                name=task.name,
            )
            report_failure(self._reporter, error, task.to_dict())
            with self._lock:
                self._stats.tasks_failed += 1
                self._stats.total_processing_time += duration
            return TaskOutcome(
                task_id=task.id,
                tier=task.tier,
                ok=False,
                name=task.name,
                error=error,
                duration=duration,
            )

        duration = self._clock.now() - start
        with self._lock:
            self._stats.tasks_completed += 1
            self._stats.total_processing_time += duration
        return TaskOutcome(
            task_id=task.id,
            tier=task.tier,
            ok=True,
            name=task.name,
            duration=duration,
        )

    # ------------------------------------------------------------------
    # Introspection / lifecycle
    # ------------------------------------------------------------------

    def _is_empty(self) -> bool:
        return not self._high and not self._low

    @property
    def is_draining(self) -> bool:
        """True while a drain is running."""
        with self._lock:
            return self._draining

    @property
    def current_task(self) -> Task | None:
        """The task being run, if any."""
        with self._lock:
            return self._current

    def is_idle(self) -> bool:
        """True when nothing is queued or running."""
        with self._lock:
            return not self._draining and self._is_empty()

    def is_pending(self, task_id: str) -> bool:
        """True if the task is queued and has not started."""
        with self._lock:
            return task_id in self._high or task_id in self._low

    def pending_count(self) -> int:
        """Number of queued tasks across both tiers."""
        with self._lock:
            return len(self._high) + len(self._low)

    def pending_by_tier(self) -> dict[TaskTier, int]:
        """Queued task counts per tier."""
        with self._lock:
            return {tier: len(queue) for tier, queue in self._queues.items()}

    def pending_ids(self, tier: TaskTier) -> list[str]:
        """Queued ids of one tier in execution order."""
        with self._lock:
            return self._queues[tier].ids()

    def clear(self) -> int:
        """
        Drop every queued task.

        Returns:
            Number of tasks dropped.
        """
        with self._lock:
            count = self._high.clear() + self._low.clear()
            self._stats.tasks_cancelled += count
            if self._kick is not None:
                self._timer.cancel(self._kick)
                self._kick = None
            return count

    def close(self) -> int:
        """
        Clear the queues and refuse further work.

        Returns:
            Number of queued tasks dropped.
        """
        with self._lock:
            if self._closed:
                return 0
            self._closed = True
            dropped = self.clear()
        logger.info(f"Scheduler closed, dropped {dropped} pending tasks")
        return dropped

    @property
    def closed(self) -> bool:
        return self._closed

    def get_stats(self) -> dict[str, Any]:
        """
        Get scheduler statistics.

        Returns:
            Dictionary with queue and scheduler statistics.
        """
        with self._lock:
            return {
                "draining": self._draining,
                "closed": self._closed,
                "queues": {
                    tier.name: queue.get_stats()
                    for tier, queue in self._queues.items()
                },
                "scheduler": {
                    "tasks_enqueued": self._stats.tasks_enqueued,
                    "tasks_completed": self._stats.tasks_completed,
                    "tasks_failed": self._stats.tasks_failed,
                    "tasks_cancelled": self._stats.tasks_cancelled,
                    "drains": self._stats.drains,
                    "total_processing_time": self._stats.total_processing_time,
                },
                "config": self.config.to_dict(),
            }

    def __len__(self) -> int:
        return self.pending_count()

    def __enter__(self) -> Scheduler:
        """Context manager entry."""
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Context manager exit."""
        self.close()
