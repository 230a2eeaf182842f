"""
Chunked processing on top of the scheduler.

Long loops are split into LOW tasks of ``chunk_size`` items. Because HIGH
work is drained between LOW tasks, urgent callbacks are never stuck behind
the whole loop.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from typing import Any, TypeVar

from loopkit.exceptions import ConfigurationError
from loopkit.scheduling.scheduler import Scheduler

logger = logging.getLogger(__name__)

T = TypeVar("T")


def process_in_chunks(
    scheduler: Scheduler,
    items: Sequence[T],
    fn: Callable[[T, int], Any],
    chunk_size: int = 100,
    *,
    on_done: Callable[[], Any] | None = None,
    name: str | None = None,
) -> str:
    """
    Process items in LOW-tier chunks.

    Each chunk calls ``fn(item, index)`` for up to chunk_size items, then
    queues the remainder as a new LOW task. If fn raises, the chunk fails
    through the scheduler's ErrorReporter and the remaining items are not
    processed.

    Args:
        scheduler: Scheduler to queue chunks on.
        items: Items to process.
        fn: Called with each item and its index.
        chunk_size: Items per chunk.
        on_done: Called after the last item has been processed.
        name: Label prefix for the chunk tasks.

    Returns:
        Id of the first chunk task.

    Raises:
        ConfigurationError: If chunk_size is below 1.

    Example:
        >>> process_in_chunks(scheduler, rows, lambda row, i: index(row), 500)
    """
    if chunk_size < 1:
        raise ConfigurationError(
            config_key="chunk_size",
            expected="an integer >= 1",
            received=chunk_size,
        )

    label = name or "chunk"
    total = len(items)

    def run_chunk(start: int) -> None:
        end = min(start + chunk_size, total)
        for index in range(start, end):
            fn(items[index], index)

        if end < total:
            scheduler.enqueue_low(lambda: run_chunk(end), name=f"{label}[{end}:]")
        else:
            logger.debug(f"Finished processing {total} items in chunks of {chunk_size}")
            if on_done is not None:
                on_done()

    return scheduler.enqueue_low(lambda: run_chunk(0), name=f"{label}[0:]")
