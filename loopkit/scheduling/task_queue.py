"""
Tasks and per-tier task queues.

A TaskQueue holds ready-to-run tasks of a single tier in enqueue order.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any

from loopkit.exceptions import DuplicateTaskError

logger = logging.getLogger(__name__)


class TaskTier(IntEnum):
    """
    Task priority tiers.

    Lower values = higher priority.

    Attributes:
        HIGH: Immediate jobs, drained completely before any LOW job runs.
        LOW: Deferred jobs, admitted one at a time between HIGH drains.
    """

    HIGH = 0
    LOW = 1


@dataclass(frozen=True)
class Task:
    """
    A unit of deferred work.

    Attributes:
        id: Opaque unique identifier.
        callback: Zero-argument callable to execute.
        tier: Tier the task was enqueued on.
        sequence: Enqueue counter value, used for FIFO ordering.
        name: Optional label used in diagnostics.
        created_at: Clock reading at enqueue time.

    Example:
        >>> task = Task(
        ...     id="task-1",
        ...     callback=lambda: None,
        ...     tier=TaskTier.HIGH,
        ...     sequence=0,
        ... )
    """

    id: str
    callback: Callable[[], Any] = field(repr=False, compare=False)
    tier: TaskTier
    sequence: int
    name: str | None = None
    created_at: float = 0.0

    @property
    def label(self) -> str:
        """Name if set, otherwise id."""
        return self.name or self.id

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "id": self.id,
            "tier": self.tier.name,
            "sequence": self.sequence,
            "name": self.name,
            "created_at": self.created_at,
        }


class TaskQueue:
    """
    FIFO queue of tasks for one tier.

    Tasks come out in enqueue order. Lookup and removal by id are O(1).
    Not locked; the owning Scheduler serializes access.

    Example:
        >>> queue = TaskQueue(TaskTier.LOW)
        >>> queue.push(Task(id="a", callback=print, tier=TaskTier.LOW, sequence=0))
        >>> queue.push(Task(id="b", callback=print, tier=TaskTier.LOW, sequence=1))
        >>> queue.pop().id
        'a'
    """

    def __init__(self, tier: TaskTier) -> None:
        self.tier = tier
        self._tasks: OrderedDict[str, Task] = OrderedDict()

        # Statistics
        self._total_pushed = 0
        self._total_popped = 0
        self._total_removed = 0

    def push(self, task: Task) -> None:
        """
        Append a task.

        Raises:
            DuplicateTaskError: If a task with the same id is queued.
            ValueError: If the task belongs to another tier.
        """
        if task.tier != self.tier:
            raise ValueError(
                f"Task {task.id} is {task.tier.name}, queue is {self.tier.name}"
            )
        if task.id in self._tasks:
            raise DuplicateTaskError(task.id)

        self._tasks[task.id] = task
        self._total_pushed += 1

    def pop(self) -> Task | None:
        """Remove and return the earliest task, or None if empty."""
        if not self._tasks:
            return None
        _, task = self._tasks.popitem(last=False)
        self._total_popped += 1
        return task

    def peek(self) -> Task | None:
        """View the earliest task without removing it."""
        if not self._tasks:
            return None
        return next(iter(self._tasks.values()))

    def get(self, task_id: str) -> Task | None:
        """Get a queued task by id."""
        return self._tasks.get(task_id)

    def remove(self, task_id: str) -> bool:
        """
        Remove a specific task.

        Returns:
            True if removed, False if not queued.
        """
        if self._tasks.pop(task_id, None) is None:
            return False
        self._total_removed += 1
        return True

    def clear(self) -> int:
        """
        Drop all tasks.

        Returns:
            Number of tasks dropped.
        """
        count = len(self._tasks)
        self._tasks.clear()
        if count:
            logger.debug(f"Cleared {count} {self.tier.name} tasks")
        self._total_removed += count
        return count

    def ids(self) -> list[str]:
        """Queued ids in execution order."""
        return list(self._tasks)

    def get_stats(self) -> dict[str, Any]:
        """Get queue statistics."""
        return {
            "tier": self.tier.name,
            "current_size": len(self._tasks),
            "total_pushed": self._total_pushed,
            "total_popped": self._total_popped,
            "total_removed": self._total_removed,
        }

    def __len__(self) -> int:
        return len(self._tasks)

    def __bool__(self) -> bool:
        return bool(self._tasks)

    def __iter__(self) -> Iterator[Task]:
        return iter(list(self._tasks.values()))

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._tasks
