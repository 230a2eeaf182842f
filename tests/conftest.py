"""
Pytest fixtures for loopkit tests.

Provides common fixtures used across all test modules.
"""

from __future__ import annotations

import pytest

from loopkit.scheduling import (
    CollectingErrorReporter,
    Scheduler,
    SchedulerConfig,
)
from loopkit.timing import ManualClock, VirtualTimerSource


# ============================================================================
# Timing Fixtures
# ============================================================================


@pytest.fixture
def manual_clock() -> ManualClock:
    """Create a clock starting at t=0."""
    return ManualClock()


@pytest.fixture
def virtual_timers(manual_clock: ManualClock) -> VirtualTimerSource:
    """Create a virtual timer source driven by the manual clock."""
    return VirtualTimerSource(manual_clock)


# ============================================================================
# Scheduler Fixtures
# ============================================================================


@pytest.fixture
def collecting_reporter() -> CollectingErrorReporter:
    """Create a reporter that records failures."""
    return CollectingErrorReporter()


@pytest.fixture
def scheduler(
    virtual_timers: VirtualTimerSource,
    manual_clock: ManualClock,
    collecting_reporter: CollectingErrorReporter,
) -> Scheduler:
    """Create an auto-draining scheduler on virtual timers."""
    return Scheduler(
        timer=virtual_timers,
        clock=manual_clock,
        reporter=collecting_reporter,
    )


@pytest.fixture
def manual_scheduler(
    virtual_timers: VirtualTimerSource,
    manual_clock: ManualClock,
    collecting_reporter: CollectingErrorReporter,
) -> Scheduler:
    """Create a scheduler that only drains when told to."""
    return Scheduler(
        SchedulerConfig(auto_drain=False),
        timer=virtual_timers,
        clock=manual_clock,
        reporter=collecting_reporter,
    )
