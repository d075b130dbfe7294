"""
Tests for the bounded task engine: ordering, retries, timeouts,
cancellation and dependencies.
"""

import threading
import time
from unittest.mock import MagicMock

import pytest

from climate_stack.means.core.multiprocessing_engine import (
    MultiprocessingConfig,
    TaskEngine,
    WorkUnit,
    is_retryable,
)
from climate_stack.shared.exceptions import (
    EmptyAggregationInput,
    MisalignedSequence,
    RemoteComputeFailure,
)


def engine(**overrides) -> TaskEngine:
    settings = dict(max_workers=2, max_retries=2, backoff_seconds=0.0, timeout_per_task=10.0)
    settings.update(overrides)
    return TaskEngine(MultiprocessingConfig(**settings))


class Flaky:
    """Raises ``error`` for the first ``failures`` calls, then returns ``value``."""

    def __init__(self, failures, error, value="ok"):
        self.failures = failures
        self.error = error
        self.value = value
        self.calls = 0
        self._lock = threading.Lock()

    def __call__(self):
        with self._lock:
            self.calls += 1
            call = self.calls
        if call <= self.failures:
            raise self.error
        return self.value


class TestMultiprocessingConfig:

    def test_backoff_is_exponential(self):
        config = MultiprocessingConfig(backoff_seconds=1.0, backoff_factor=2.0)

        assert [config.backoff_delay(a) for a in (1, 2, 3)] == [1.0, 2.0, 4.0]

    def test_auto_detects_workers(self):
        assert MultiprocessingConfig(max_workers=0).max_workers >= 1

    @pytest.mark.parametrize("overrides", [
        {"max_retries": -1},
        {"backoff_seconds": -1.0},
        {"backoff_factor": 0.5},
        {"timeout_per_task": 0},
    ])
    def test_invalid_settings(self, overrides):
        with pytest.raises(ValueError):
            MultiprocessingConfig(**overrides)

    def test_retryable_classification(self):
        assert is_retryable(RemoteComputeFailure("boom"))
        assert is_retryable(TimeoutError())
        assert is_retryable(ConnectionResetError())
        assert not is_retryable(MisalignedSequence("bad"))
        assert not is_retryable(ValueError("bad"))


class TestTaskEngine:

    def test_results_follow_submission_order(self):
        def slow(value, delay):
            time.sleep(delay)
            return value

        units = [WorkUnit(f"u{i}", slow, (i, 0.05 * (3 - i))) for i in range(4)]

        results = engine(max_workers=4).run(units)

        assert list(results) == ["u0", "u1", "u2", "u3"]
        assert [r.result for r in results.values()] == [0, 1, 2, 3]
        assert all(r.success and r.attempts == 1 for r in results.values())

    def test_transient_failure_is_retried(self):
        flaky = Flaky(1, RemoteComputeFailure("connection dropped"))

        result = engine().run([WorkUnit("flaky", flaky)])["flaky"]

        assert result.success
        assert result.result == "ok"
        assert result.attempts == 2
        assert flaky.calls == 2

    def test_structural_failure_is_not_retried(self):
        flaky = Flaky(5, EmptyAggregationInput("month", 7))

        result = engine().run([WorkUnit("month=7", flaky)])["month=7"]

        assert not result.success
        assert result.error_type == "EmptyAggregationInput"
        assert result.attempts == 1
        assert not result.retryable
        assert flaky.calls == 1

    def test_retries_exhausted(self):
        flaky = Flaky(10, RemoteComputeFailure("still down"))

        result = engine(max_retries=2).run([WorkUnit("down", flaky)])["down"]

        assert not result.success
        assert result.retryable
        assert result.attempts == 3
        assert result.error_type == "RemoteComputeFailure"
        assert flaky.calls == 3

    def test_timeout_is_reported_as_remote_failure(self):
        result = engine(timeout_per_task=0.05, max_retries=0).run(
            [WorkUnit("slow", time.sleep, (0.5,))]
        )["slow"]

        assert not result.success
        assert result.error_type == "RemoteComputeFailure"
        assert result.retryable

    def test_failure_does_not_abort_siblings(self):
        flaky = Flaky(10, ValueError("broken"))
        units = [WorkUnit("bad", flaky), WorkUnit("good", lambda: 42)]

        results = engine().run(units)

        assert not results["bad"].success
        assert results["good"].result == 42

    def test_cancel_before_run(self):
        task_engine = engine()
        called = MagicMock(return_value=1)
        task_engine.cancel("skip")

        results = task_engine.run([WorkUnit("skip", called), WorkUnit("keep", lambda: 2)])

        assert results["skip"].cancelled
        assert results["skip"].error_type == "Cancelled"
        assert results["keep"].success
        called.assert_not_called()

    def test_cancel_running_unit(self):
        task_engine = engine(timeout_per_task=None)
        started = threading.Event()

        def blocking():
            started.set()
            time.sleep(0.5)

        def canceller():
            started.wait(1.0)
            task_engine.cancel("blocking")
            return "cancelled it"

        results = task_engine.run([WorkUnit("blocking", blocking), WorkUnit("canceller", canceller)])

        assert results["blocking"].cancelled
        assert results["canceller"].success

    def test_timed_out_attempt_keeps_its_worker(self):
        units = [WorkUnit("hung", time.sleep, (1.0,)), WorkUnit("quick", lambda: 42)]

        results = engine(max_workers=1, max_retries=0, timeout_per_task=0.3).run(units)

        assert results["hung"].error_type == "RemoteComputeFailure"
        assert results["quick"].success
        assert results["quick"].result == 42

    def test_cancelled_attempt_keeps_its_worker(self):
        task_engine = engine(max_workers=1, max_retries=0, timeout_per_task=0.5)
        started = threading.Event()

        def blocking():
            started.set()
            time.sleep(1.0)

        def cancel_when_started():
            started.wait(1.0)
            task_engine.cancel("blocking")

        watcher = threading.Thread(target=cancel_when_started)
        watcher.start()
        results = task_engine.run([WorkUnit("blocking", blocking), WorkUnit("quick", lambda: 42)])
        watcher.join()

        assert results["blocking"].cancelled
        assert results["quick"].result == 42

    def test_deadline_starts_when_the_worker_starts(self):
        def work():
            time.sleep(0.2)
            return "done"

        results = engine(max_workers=1, max_retries=0, timeout_per_task=0.35).run(
            [WorkUnit(f"u{i}", work) for i in range(3)]
        )

        assert all(r.success for r in results.values())

    def test_dependencies_run_first(self):
        order = []
        lock = threading.Lock()

        def record(name):
            with lock:
                order.append(name)
            return name

        units = [
            WorkUnit("combine", record, ("combine",), depends_on=("a", "b")),
            WorkUnit("a", record, ("a",)),
            WorkUnit("b", record, ("b",)),
        ]

        results = engine().run(units)

        assert order[-1] == "combine"
        assert list(results) == ["combine", "a", "b"]

    def test_failed_dependency_blocks_dependents(self):
        units = [
            WorkUnit("pr:year=2000", Flaky(10, ValueError("no data"))),
            WorkUnit("combine:year=2000", MagicMock(), depends_on=("pr:year=2000",)),
        ]

        results = engine().run(units)

        blocked = results["combine:year=2000"]
        assert not blocked.success
        assert blocked.error_type == "DependencyFailed"
        assert blocked.attempts == 0
        units[1].func.assert_not_called()

    def test_concurrency_is_bounded(self):
        active = 0
        peak = 0
        lock = threading.Lock()

        def work():
            nonlocal active, peak
            with lock:
                active += 1
                peak = max(peak, active)
            time.sleep(0.05)
            with lock:
                active -= 1

        engine(max_workers=2).run([WorkUnit(f"u{i}", work) for i in range(6)])

        assert 1 <= peak <= 2

    def test_invalid_units(self):
        with pytest.raises(ValueError):
            engine().run([WorkUnit("a", print), WorkUnit("a", print)])
        with pytest.raises(ValueError):
            engine().run([WorkUnit("a", print, depends_on=("missing",))])
        assert engine().run([]) == {}

    def test_progress_is_reported(self):
        tracker = MagicMock()
        task_engine = TaskEngine(MultiprocessingConfig(max_workers=1, backoff_seconds=0.0),
                                 rich_tracker=tracker, progress_stage=lambda uid: "monthly_means")

        task_engine.run([WorkUnit("month=1", lambda: 1), WorkUnit("month=2", Flaky(1, ValueError("x")))])

        tracker.advance.assert_any_call("monthly_means", "month=1", failed=False)
        tracker.advance.assert_any_call("monthly_means", "month=2", failed=True)
