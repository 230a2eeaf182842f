"""
Bounded-concurrency async task queue.

Runs coroutine factories in FIFO start order with at most ``concurrency``
in flight. Useful for respecting API rate limits or other constrained
resources from asyncio code.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections import deque
from collections.abc import Awaitable, Callable
from typing import Any

from loopkit.exceptions import ConfigurationError, TaskExecutionError
from loopkit.scheduling.reporting import (
    ErrorReporter,
    LoggingErrorReporter,
    report_failure,
)

logger = logging.getLogger(__name__)


class AsyncTaskQueue:
    """
    Serial or bounded-parallel processor for async jobs.

    Each job is a zero-argument callable returning an awaitable. Jobs start
    in push order; a failing job is reported and the queue moves on.

    Example:
        >>> queue = AsyncTaskQueue(concurrency=2)
        >>> for i in range(5):
        ...     queue.push(lambda i=i: fetch(i), name=f"fetch-{i}")
        >>> await queue.join()
        >>> queue.completed
        5
    """

    def __init__(
        self,
        concurrency: int = 1,
        reporter: ErrorReporter | None = None,
    ) -> None:
        """
        Initialize the queue.

        Args:
            concurrency: Maximum number of jobs in flight.
            reporter: Sink for job failures. Defaults to logging them.

        Raises:
            ConfigurationError: If concurrency is below 1.
        """
        if not isinstance(concurrency, int) or concurrency < 1:
            raise ConfigurationError(
                config_key="concurrency",
                expected="an integer >= 1",
                received=concurrency,
            )
        self.concurrency = concurrency
        self._reporter = reporter or LoggingErrorReporter()

        self._waiting: deque[tuple[str, Callable[[], Awaitable[Any]]]] = deque()
        self._active: set[asyncio.Task[Any]] = set()
        self._ids = itertools.count(1)
        self._idle: asyncio.Event | None = None

        self.running = 0
        self.completed = 0
        self.failed = 0
        self.peak_running = 0

    @property
    def pending(self) -> int:
        """Jobs waiting for a free slot."""
        return len(self._waiting)

    def push(
        self,
        factory: Callable[[], Awaitable[Any]],
        *,
        name: str | None = None,
    ) -> str:
        """
        Add a job.

        Must be called while an event loop is running.

        Args:
            factory: Zero-argument callable returning an awaitable.
            name: Optional label for diagnostics.

        Returns:
            The job label.

        Raises:
            RuntimeError: If no event loop is running. The queue is left
                unchanged.
        """
        asyncio.get_running_loop()

        label = name or f"job-{next(self._ids)}"
        self._waiting.append((label, factory))
        self._idle_event().clear()
        self._next()
        return label

    def _idle_event(self) -> asyncio.Event:
        if self._idle is None:
            self._idle = asyncio.Event()
            self._idle.set()
        return self._idle

    def _next(self) -> None:
        while self.running < self.concurrency and self._waiting:
            label, factory = self._waiting.popleft()
            self.running += 1
            self.peak_running = max(self.peak_running, self.running)
            task = asyncio.get_running_loop().create_task(self._run(label, factory))
            self._active.add(task)
            task.add_done_callback(self._active.discard)

        if self.running == 0 and not self._waiting:
            self._idle_event().set()

    async def _run(self, label: str, factory: Callable[[], Awaitable[Any]]) -> None:
        try:
            await factory()
        except asyncio.CancelledError:
            logger.debug(f"Async job {label} cancelled")
            raise
        except Exception as e:
            self.failed += 1
            error = TaskExecutionError(task_id=label, original=e, tier="async")
            report_failure(self._reporter, error, {"task_id": label})
        else:
            self.completed += 1
        finally:
            self.running -= 1
            self._next()

    async def join(self) -> None:
        """Wait until every pushed job has finished."""
        await self._idle_event().wait()

    async def cancel_all(self) -> int:
        """
        Drop waiting jobs and cancel running ones.

        Returns:
            Number of jobs dropped or cancelled.
        """
        dropped = len(self._waiting)
        self._waiting.clear()
        active = list(self._active)
        for task in active:
            task.cancel()
        if active:
            await asyncio.gather(*active, return_exceptions=True)
        # Tasks cancelled before their first step never reach _run's finally
        self.running = 0
        self._idle_event().set()
        return dropped + len(active)

    def get_stats(self) -> dict[str, Any]:
        """Get queue statistics."""
        return {
            "concurrency": self.concurrency,
            "running": self.running,
            "pending": self.pending,
            "completed": self.completed,
            "failed": self.failed,
            "peak_running": self.peak_running,
        }
