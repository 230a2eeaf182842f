"""
Tests for task queues and the two-tier scheduler.
"""

import logging
import threading

import pytest

from loopkit.exceptions import (
    DuplicateTaskError,
    InvalidDurationError,
    SchedulerClosedError,
    TaskExecutionError,
)
from loopkit.scheduling import (
    DrainResult,
    Scheduler,
    SchedulerConfig,
    Task,
    TaskOutcome,
    TaskQueue,
    TaskTier,
)
from loopkit.timing import ThreadingTimerSource


def make_task(task_id, tier=TaskTier.HIGH, sequence=0):
    return Task(id=task_id, callback=lambda: None, tier=tier, sequence=sequence)


class TestTaskTier:
    """Tests for TaskTier enum."""

    def test_tier_ordering(self):
        """Test that HIGH sorts before LOW."""
        assert TaskTier.HIGH < TaskTier.LOW

    def test_tier_values(self):
        """Test tier integer values."""
        assert TaskTier.HIGH.value == 0
        assert TaskTier.LOW.value == 1


class TestTask:
    """Tests for Task dataclass."""

    def test_task_is_frozen(self):
        """Test that tasks cannot be mutated after creation."""
        task = make_task("t1")
        with pytest.raises(AttributeError):
            task.tier = TaskTier.LOW

    def test_label_prefers_name(self):
        """Test label falls back to id."""
        assert make_task("t1").label == "t1"
        named = Task(id="t2", callback=print, tier=TaskTier.LOW, sequence=1, name="flush")
        assert named.label == "flush"

    def test_to_dict(self):
        """Test dictionary conversion."""
        d = make_task("t1", TaskTier.LOW, 7).to_dict()
        assert d["id"] == "t1"
        assert d["tier"] == "LOW"
        assert d["sequence"] == 7
        assert "callback" not in d


class TestTaskQueue:
    """Tests for TaskQueue."""

    def test_fifo_order(self):
        """Test tasks come out in push order."""
        queue = TaskQueue(TaskTier.HIGH)
        for i in range(3):
            queue.push(make_task(f"t{i}", sequence=i))

        assert [queue.pop().id for _ in range(3)] == ["t0", "t1", "t2"]
        assert queue.pop() is None

    def test_duplicate_id_rejected(self):
        """Test that duplicate IDs are rejected."""
        queue = TaskQueue(TaskTier.HIGH)
        queue.push(make_task("same-id"))

        with pytest.raises(DuplicateTaskError):
            queue.push(make_task("same-id", sequence=1))
        assert len(queue) == 1

    def test_wrong_tier_rejected(self):
        """Test that a LOW task cannot enter a HIGH queue."""
        queue = TaskQueue(TaskTier.HIGH)
        with pytest.raises(ValueError):
            queue.push(make_task("t1", TaskTier.LOW))

    def test_peek(self):
        """Test peeking at the queue."""
        queue = TaskQueue(TaskTier.LOW)
        assert queue.peek() is None

        queue.push(make_task("first", TaskTier.LOW, 0))
        queue.push(make_task("second", TaskTier.LOW, 1))
        assert queue.peek().id == "first"
        assert len(queue) == 2

    def test_remove(self):
        """Test removing a specific task."""
        queue = TaskQueue(TaskTier.HIGH)
        queue.push(make_task("to-remove"))
        queue.push(make_task("keep", sequence=1))

        assert queue.remove("to-remove")
        assert not queue.remove("to-remove")
        assert not queue.remove("nonexistent")
        assert queue.ids() == ["keep"]

    def test_clear(self):
        """Test clearing the queue."""
        queue = TaskQueue(TaskTier.HIGH)
        queue.push(make_task("a"))
        queue.push(make_task("b", sequence=1))

        assert queue.clear() == 2
        assert not queue
        assert "a" not in queue

    def test_stats(self):
        """Test queue statistics."""
        queue = TaskQueue(TaskTier.HIGH)
        queue.push(make_task("a"))
        queue.push(make_task("b", sequence=1))
        queue.pop()
        queue.remove("b")

        stats = queue.get_stats()
        assert stats["tier"] == "HIGH"
        assert stats["total_pushed"] == 2
        assert stats["total_popped"] == 1
        assert stats["total_removed"] == 1
        assert stats["current_size"] == 0


class TestSchedulerConfig:
    """Tests for SchedulerConfig."""

    def test_defaults(self):
        """Test default values."""
        config = SchedulerConfig()
        assert config.auto_drain is True
        assert config.kick_delay == 0.0

    def test_negative_kick_delay(self):
        """Test negative kick delay is rejected."""
        with pytest.raises(InvalidDurationError):
            SchedulerConfig(kick_delay=-1)

    def test_round_trip(self):
        """Test dict conversion."""
        config = SchedulerConfig(auto_drain=False, kick_delay=0.5)
        assert SchedulerConfig.from_dict(config.to_dict()) == config


class TestSchedulerOrdering:
    """Tests for tier and FIFO ordering."""

    def test_high_runs_before_low(self, scheduler, virtual_timers):
        """A HIGH task enqueued after a LOW task still runs first."""
        order = []
        scheduler.enqueue_low(lambda: order.append("a"))
        scheduler.enqueue_high(lambda: order.append("b"))

        virtual_timers.run_pending()
        assert order == ["b", "a"]

    def test_fifo_within_tier(self, scheduler, virtual_timers):
        """Tasks on one tier run in enqueue order."""
        order = []
        for i in (1, 2, 3):
            scheduler.enqueue_high(lambda i=i: order.append(i))

        virtual_timers.run_pending()
        assert order == [1, 2, 3]

    def test_enqueue_never_runs_in_caller_stack(self, scheduler, virtual_timers):
        """Callbacks only run once the timer fires the drain."""
        ran = []
        scheduler.enqueue_high(lambda: ran.append(True))

        assert ran == []
        assert scheduler.pending_count() == 1
        virtual_timers.run_pending()
        assert ran == [True]

    def test_high_enqueued_during_drain_runs_first(self, scheduler, virtual_timers):
        """HIGH tasks added by a HIGH task run before any LOW task."""
        order = []

        def first():
            order.append("h1")
            scheduler.enqueue_high(lambda: order.append("h2"))

        scheduler.enqueue_low(lambda: order.append("low"))
        scheduler.enqueue_high(first)

        virtual_timers.run_pending()
        assert order == ["h1", "h2", "low"]

    def test_low_task_enqueuing_high(self, scheduler, virtual_timers):
        """HIGH work created by a LOW task runs before the next LOW task."""
        order = []

        def low_one():
            order.append("L1")
            scheduler.enqueue_high(lambda: order.append("H"))

        scheduler.enqueue_low(low_one)
        scheduler.enqueue_low(lambda: order.append("L2"))

        virtual_timers.run_pending()
        assert order == ["L1", "H", "L2"]

    def test_one_low_per_cycle(self, manual_scheduler):
        """Exactly one LOW task runs between HIGH drains."""
        order = []

        def low(name):
            def run():
                order.append(name)
                manual_scheduler.enqueue_high(lambda: order.append(f"after-{name}"))
            return run

        manual_scheduler.enqueue_low(low("L1"))
        manual_scheduler.enqueue_low(low("L2"))

        result = manual_scheduler.drain()
        assert order == ["L1", "after-L1", "L2", "after-L2"]
        assert len(result) == 4

    def test_single_kick_outstanding(self, scheduler, virtual_timers):
        """Several enqueues schedule one drain."""
        for _ in range(5):
            scheduler.enqueue_low(lambda: None)

        assert virtual_timers.pending_count() == 1
        assert virtual_timers.run_pending() == 1
        assert scheduler.is_idle()


class TestSchedulerCancel:
    """Tests for cancellation."""

    def test_cancelled_task_never_runs(self, scheduler, virtual_timers):
        """A task cancelled before the drain does not run."""
        ran = []
        task_id = scheduler.enqueue_low(lambda: ran.append(True))

        assert scheduler.cancel(task_id)
        virtual_timers.run_pending()
        assert ran == []

    def test_cancel_twice(self, scheduler):
        """Cancelling an already cancelled id returns False."""
        task_id = scheduler.enqueue_high(lambda: None)
        assert scheduler.cancel(task_id)
        assert not scheduler.cancel(task_id)

    def test_cancel_after_run(self, scheduler, virtual_timers):
        """Cancelling a task that already ran returns False."""
        task_id = scheduler.enqueue_high(lambda: None)
        virtual_timers.run_pending()
        assert not scheduler.cancel(task_id)

    def test_cancel_unknown(self, scheduler):
        """Cancelling an unknown id returns False."""
        assert not scheduler.cancel("does-not-exist")

    def test_cancel_running_task(self, manual_scheduler):
        """A task cannot cancel itself once started."""
        results = []
        holder = {}

        def body():
            results.append(manual_scheduler.cancel(holder["id"]))

        holder["id"] = manual_scheduler.enqueue_high(body)
        manual_scheduler.drain()
        assert results == [False]

    def test_cancel_last_task_cancels_kick(self, scheduler, virtual_timers):
        """Emptying the queues by cancellation drops the pending kick."""
        task_id = scheduler.enqueue_low(lambda: None)
        assert virtual_timers.pending_count() == 1

        scheduler.cancel(task_id)
        assert virtual_timers.pending_count() == 0

    def test_cancel_from_earlier_task(self, manual_scheduler):
        """A running task can cancel one queued behind it."""
        order = []
        later = manual_scheduler.enqueue_low(lambda: order.append("later"), name="later")
        manual_scheduler.enqueue_high(lambda: order.append(manual_scheduler.cancel(later)))

        manual_scheduler.drain()
        assert order == [True]


class TestSchedulerErrors:
    """Tests for failure handling during drains."""

    def test_failure_does_not_halt_drain(self, manual_scheduler, collecting_reporter):
        """Tasks after a failing task still run."""
        log = []

        def boom():
            raise RuntimeError("boom")

        manual_scheduler.enqueue_high(boom, name="boom")
        manual_scheduler.enqueue_high(lambda: log.append("ran"))

        result = manual_scheduler.drain()

        assert log == ["ran"]
        assert len(result.succeeded) == 1
        assert len(result.failed) == 1
        assert len(collecting_reporter) == 1

    def test_error_is_wrapped(self, manual_scheduler, collecting_reporter):
        """Reported errors carry task metadata and the original exception."""
        original = ValueError("bad value")

        def fail():
            raise original

        task_id = manual_scheduler.enqueue_low(fail, name="parser")
        manual_scheduler.drain()

        error, context = collecting_reporter.reports[0]
        assert isinstance(error, TaskExecutionError)
        assert error.task_id == task_id
        assert error.tier == "LOW"
        assert error.name == "parser"
        assert error.original is original
        assert error.__cause__ is original
        assert context["id"] == task_id

    def test_raise_for_errors(self, manual_scheduler):
        """The advisory rethrow raises the first failure."""
        manual_scheduler.enqueue_high(lambda: 1 / 0)
        result = manual_scheduler.drain()

        with pytest.raises(TaskExecutionError) as exc_info:
            result.raise_for_errors()
        assert isinstance(exc_info.value.original, ZeroDivisionError)

    def test_raise_for_errors_noop_on_success(self, manual_scheduler):
        """No failures means nothing is raised."""
        manual_scheduler.enqueue_high(lambda: None)
        manual_scheduler.drain().raise_for_errors()

    def test_default_reporter_logs(self, virtual_timers, caplog):
        """Without a reporter, failures are logged once each."""
        scheduler = Scheduler(SchedulerConfig(auto_drain=False), timer=virtual_timers)
        scheduler.enqueue_high(lambda: 1 / 0, name="divide")
        scheduler.enqueue_high(lambda: None)

        with caplog.at_level(logging.ERROR):
            result = scheduler.drain()

        errors = [r for r in caplog.records if r.levelno == logging.ERROR]
        assert len(errors) == 1
        assert "divide" in errors[0].getMessage()
        assert errors[0].exc_info is not None
        assert len(result.succeeded) == 1

    def test_broken_reporter_does_not_halt_drain(self, virtual_timers, caplog):
        """A reporter that raises is logged and the drain continues."""

        class BrokenReporter:
            def report(self, error, context):
                raise RuntimeError("reporter down")

        scheduler = Scheduler(
            SchedulerConfig(auto_drain=False),
            timer=virtual_timers,
            reporter=BrokenReporter(),
        )
        log = []
        scheduler.enqueue_high(lambda: 1 / 0)
        scheduler.enqueue_high(lambda: log.append("ran"))

        with caplog.at_level(logging.ERROR):
            scheduler.drain()

        assert log == ["ran"]
        assert any("reporter down" in r.getMessage() for r in caplog.records)


class TestSchedulerDrain:
    """Tests for drain mechanics."""

    def test_drain_not_reentrant(self, manual_scheduler):
        """A nested drain call is ignored."""
        nested = []

        def body():
            nested.append(manual_scheduler.drain())

        manual_scheduler.enqueue_high(body)
        manual_scheduler.enqueue_high(lambda: None)
        result = manual_scheduler.drain()

        assert len(nested) == 1
        assert len(nested[0]) == 0
        assert len(result) == 2

    def test_is_draining_flag(self, manual_scheduler):
        """is_draining is set while a task runs."""
        seen = []
        manual_scheduler.enqueue_high(lambda: seen.append(manual_scheduler.is_draining))
        manual_scheduler.drain()

        assert seen == [True]
        assert not manual_scheduler.is_draining

    def test_current_task(self, manual_scheduler):
        """The running task is visible while it runs."""
        seen = []
        manual_scheduler.enqueue_high(
            lambda: seen.append(manual_scheduler.current_task.name), name="probe"
        )
        manual_scheduler.drain()

        assert seen == ["probe"]
        assert manual_scheduler.current_task is None

    def test_enqueue_during_drain_schedules_no_kick(self, scheduler, virtual_timers):
        """Work added mid-drain is picked up by the running drain."""
        order = []
        scheduler.enqueue_high(lambda: scheduler.enqueue_low(lambda: order.append("x")))

        virtual_timers.run_pending()
        assert order == ["x"]
        assert virtual_timers.pending_count() == 0

    def test_manual_mode_schedules_nothing(self, manual_scheduler, virtual_timers):
        """auto_drain=False never touches the timer."""
        manual_scheduler.enqueue_high(lambda: None)
        assert virtual_timers.pending_count() == 0

    def test_run_once(self, manual_scheduler):
        """A tick drains HIGH and runs at most one LOW task."""
        order = []
        manual_scheduler.enqueue_low(lambda: order.append("a"))
        manual_scheduler.enqueue_low(lambda: order.append("b"))
        manual_scheduler.enqueue_high(lambda: order.append("h"))

        first = manual_scheduler.run_once()
        assert order == ["h", "a"]
        assert len(first) == 2

        manual_scheduler.run_once()
        assert order == ["h", "a", "b"]
        assert manual_scheduler.is_idle()

    def test_run_once_reschedules_leftovers(self, scheduler, virtual_timers):
        """With auto_drain, leftovers after a tick get a new kick."""
        order = []
        scheduler.enqueue_low(lambda: order.append("a"))
        scheduler.enqueue_low(lambda: order.append("b"))

        scheduler.run_once()
        assert order == ["a"]
        assert virtual_timers.pending_count() == 1

        virtual_timers.run_pending()
        assert order == ["a", "b"]

    def test_drain_result_task_ids(self, manual_scheduler):
        """DrainResult lists ids in execution order."""
        low = manual_scheduler.enqueue_low(lambda: None)
        high = manual_scheduler.enqueue_high(lambda: None)

        result = manual_scheduler.drain()
        assert result.task_ids == [high, low]
        assert result.to_dict()["succeeded"] == 2

    def test_durations_use_clock(self, manual_scheduler, manual_clock):
        """Task durations are measured with the injected clock."""
        manual_scheduler.enqueue_high(lambda: manual_clock.advance(5))
        result = manual_scheduler.drain()
        assert result.executed[0].duration == 5


class TestSchedulerLifecycle:
    """Tests for ids, stats and shutdown."""

    def test_generated_ids_unique(self, scheduler):
        """Generated ids never repeat."""
        ids = {scheduler.enqueue_low(lambda: None) for _ in range(50)}
        assert len(ids) == 50

    def test_caller_supplied_id(self, scheduler):
        """A caller-supplied id is used as-is."""
        assert scheduler.enqueue_high(lambda: None, task_id="job-1") == "job-1"
        assert scheduler.is_pending("job-1")

    def test_empty_string_id_kept(self, scheduler):
        """An explicit empty id is used rather than replaced."""
        assert scheduler.enqueue_low(lambda: None, task_id="") == ""
        assert scheduler.is_pending("")
        assert scheduler.pending_ids(TaskTier.LOW) == [""]

    def test_int_tier_accepted(self, manual_scheduler):
        """A plain int tier is normalised to TaskTier."""
        order = []
        manual_scheduler.enqueue(lambda: order.append("low"), 1)
        manual_scheduler.enqueue(lambda: order.append("high"), 0)

        result = manual_scheduler.drain()
        assert order == ["high", "low"]
        assert result.executed[0].tier is TaskTier.HIGH

    def test_unknown_tier_rejected(self, scheduler):
        """An int that is not a tier raises ValueError."""
        with pytest.raises(ValueError):
            scheduler.enqueue(lambda: None, 5)
        assert scheduler.pending_count() == 0

    def test_duplicate_id_across_tiers(self, scheduler):
        """An id queued on one tier cannot be reused on the other."""
        scheduler.enqueue_high(lambda: None, task_id="job-1")
        with pytest.raises(DuplicateTaskError):
            scheduler.enqueue_low(lambda: None, task_id="job-1")

    def test_id_reusable_after_run(self, scheduler, virtual_timers):
        """Once a task has run its id can be used again."""
        scheduler.enqueue_high(lambda: None, task_id="job-1")
        virtual_timers.run_pending()
        scheduler.enqueue_high(lambda: None, task_id="job-1")

    def test_pending_by_tier(self, scheduler):
        """Counts are broken down per tier."""
        scheduler.enqueue_high(lambda: None)
        scheduler.enqueue_low(lambda: None)
        scheduler.enqueue_low(lambda: None)

        assert scheduler.pending_by_tier() == {TaskTier.HIGH: 1, TaskTier.LOW: 2}
        assert len(scheduler) == 3

    def test_stats(self, manual_scheduler):
        """Statistics track the task lifecycle."""
        manual_scheduler.enqueue_high(lambda: None)
        manual_scheduler.enqueue_high(lambda: 1 / 0)
        cancelled = manual_scheduler.enqueue_low(lambda: None)
        manual_scheduler.cancel(cancelled)
        manual_scheduler.drain()

        stats = manual_scheduler.get_stats()
        assert stats["scheduler"]["tasks_enqueued"] == 3
        assert stats["scheduler"]["tasks_completed"] == 1
        assert stats["scheduler"]["tasks_failed"] == 1
        assert stats["scheduler"]["tasks_cancelled"] == 1
        assert stats["queues"]["HIGH"]["total_popped"] == 2
        assert stats["config"]["auto_drain"] is False

    def test_clear(self, scheduler, virtual_timers):
        """clear() drops everything and the pending kick."""
        scheduler.enqueue_high(lambda: None)
        scheduler.enqueue_low(lambda: None)

        assert scheduler.clear() == 2
        assert virtual_timers.pending_count() == 0
        assert scheduler.is_idle()

    def test_close(self, scheduler):
        """A closed scheduler refuses work."""
        scheduler.enqueue_low(lambda: None)
        assert scheduler.close() == 1
        assert scheduler.closed

        with pytest.raises(SchedulerClosedError):
            scheduler.enqueue_high(lambda: None)
        assert scheduler.close() == 0

    def test_context_manager(self, virtual_timers):
        """Leaving the context closes the scheduler."""
        with Scheduler(timer=virtual_timers) as scheduler:
            scheduler.enqueue_low(lambda: None)
        assert scheduler.closed
        assert scheduler.pending_count() == 0

    def test_outcome_to_dict(self):
        """TaskOutcome serializes its error."""
        error = TaskExecutionError(task_id="t", original=KeyError("k"), tier="HIGH")
        outcome = TaskOutcome(task_id="t", tier=TaskTier.HIGH, ok=False, error=error)
        d = outcome.to_dict()
        assert d["tier"] == "HIGH"
        assert d["error"]["error_type"] == "TaskExecutionError"

    def test_empty_drain_result(self):
        """An empty result has no errors."""
        result = DrainResult()
        assert result.errors == []
        assert len(result) == 0


class TestSchedulerWithRealTimers:
    """Tests against threading timers."""

    def test_drains_on_timer_thread(self):
        """Tasks run without an explicit drain call."""
        done = threading.Event()
        order = []
        timers = ThreadingTimerSource()
        scheduler = Scheduler(SchedulerConfig(kick_delay=0.05), timer=timers)

        scheduler.enqueue_low(lambda: (order.append("low"), done.set()))
        scheduler.enqueue_high(lambda: order.append("high"))

        assert done.wait(timeout=2.0)
        assert order == ["high", "low"]
        timers.shutdown()
