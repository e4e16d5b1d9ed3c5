"""
Unit Tests for the Experiment Executor

Covers outcome accounting, metric derivation, bounded waits and the
submission failure path.
"""

import unittest
import time
from threading import Event
from typing import Optional

from schedbench import (
    BoundedPoolStrategy,
    PerTaskStrategy,
    ExperimentExecutor,
    ExecutorConfig,
    SubmissionRejectedError,
    Workload,
    WorkloadType,
)


class SleepWorkload(Workload):
    """Always succeeds after a fixed sleep."""

    workload_type = WorkloadType.IO_BOUND

    def __init__(self, delay_sec: float = 0.0):
        self.delay_sec = delay_sec

    def execute(self, cancel_event: Optional[Event] = None) -> None:
        if self.delay_sec:
            time.sleep(self.delay_sec)


class FailingWorkload(Workload):
    """Always raises."""

    workload_type = WorkloadType.CPU_BOUND

    def execute(self, cancel_event: Optional[Event] = None) -> None:
        raise RuntimeError("boom")


class Interrupted(BaseException):
    pass


class BaseExceptionWorkload(Workload):
    """Raises something that is not an Exception."""

    workload_type = WorkloadType.CPU_BOUND

    def execute(self, cancel_event: Optional[Event] = None) -> None:
        raise Interrupted()


class AlternatingWorkload(Workload):
    """Fails every other call."""

    workload_type = WorkloadType.CPU_BOUND

    def __init__(self):
        self._calls = 0

    def execute(self, cancel_event: Optional[Event] = None) -> None:
        # Only used with a single worker thread.
        self._calls += 1
        if self._calls % 2 == 0:
            raise ValueError("even call")


class TestExecutorConfig(unittest.TestCase):
    """Tests for ExecutorConfig."""

    def test_default_deadline(self):
        """Default deadline should sit at the top of the usual range."""
        self.assertEqual(ExecutorConfig().deadline_sec, 180.0)

    def test_rejects_non_positive_deadline(self):
        with self.assertRaises(ValueError):
            ExecutorConfig(deadline_sec=0)
        with self.assertRaises(ValueError):
            ExecutorConfig(deadline_sec=-1.0)


class TestExperimentExecutor(unittest.TestCase):
    """Tests for ExperimentExecutor.run."""

    def setUp(self):
        self.executor = ExperimentExecutor(ExecutorConfig(deadline_sec=30.0))

    def test_outcome_count_matches_requests(self):
        """Every submitted unit should produce exactly one outcome."""
        with BoundedPoolStrategy(capacity=8) as strategy:
            metrics = self.executor.run(strategy, SleepWorkload(), 200)

        self.assertEqual(metrics.total_requests, 200)
        self.assertEqual(metrics.completed_tasks, 200)
        self.assertEqual(metrics.succeeded_tasks + metrics.failed_tasks, 200)
        self.assertFalse(metrics.timed_out)
        self.assertFalse(metrics.degraded)

    def test_zero_requests(self):
        """An empty run is degenerate but not an error."""
        with BoundedPoolStrategy(capacity=2) as strategy:
            metrics = self.executor.run(strategy, SleepWorkload(), 0)

        self.assertEqual(metrics.completed_tasks, 0)
        self.assertEqual(metrics.p99_latency_ms, 0.0)
        self.assertEqual(metrics.throughput_per_sec, 0.0)
        self.assertEqual(metrics.success_rate_pct, 100.0)
        self.assertFalse(metrics.timed_out)

    def test_negative_requests_rejected(self):
        with BoundedPoolStrategy(capacity=2) as strategy:
            with self.assertRaises(ValueError):
                self.executor.run(strategy, SleepWorkload(), -1)

    def test_fixed_latency_scenario(self):
        """100 requests of 10 ms on a pool of 10."""
        with BoundedPoolStrategy(capacity=10) as strategy:
            metrics = self.executor.run(strategy, SleepWorkload(0.010), 100)

        self.assertEqual(metrics.success_rate_pct, 100.0)
        self.assertGreaterEqual(metrics.p99_latency_ms, 9.5)
        self.assertLess(metrics.p99_latency_ms, 200.0)
        self.assertAlmostEqual(
            metrics.throughput_per_sec, 100 / metrics.elapsed_sec, places=6
        )

    def test_all_failing_scenario(self):
        """50 failing requests give zero success and zero throughput."""
        with BoundedPoolStrategy(capacity=5) as strategy:
            metrics = self.executor.run(strategy, FailingWorkload(), 50)

        self.assertEqual(metrics.success_rate_pct, 0.0)
        self.assertEqual(metrics.throughput_per_sec, 0.0)
        self.assertEqual(metrics.failed_tasks, 50)
        self.assertEqual(metrics.completed_tasks, 50)
        self.assertGreaterEqual(metrics.p99_latency_ms, 0.0)

    def test_partial_failures(self):
        """Success rate should reflect the share of successful units."""
        with BoundedPoolStrategy(capacity=1) as strategy:
            metrics = self.executor.run(strategy, AlternatingWorkload(), 10)

        self.assertEqual(metrics.succeeded_tasks, 5)
        self.assertEqual(metrics.failed_tasks, 5)
        self.assertEqual(metrics.success_rate_pct, 50.0)
        self.assertGreaterEqual(metrics.success_rate_pct, 0.0)
        self.assertLessEqual(metrics.success_rate_pct, 100.0)

    def test_base_exception_still_records_outcome(self):
        """The completion guard must run even for non-Exception errors."""
        with BoundedPoolStrategy(capacity=4) as strategy:
            metrics = self.executor.run(strategy, BaseExceptionWorkload(), 20)

        self.assertEqual(metrics.completed_tasks, 20)
        self.assertEqual(metrics.failed_tasks, 20)
        self.assertFalse(metrics.timed_out)

    def test_short_deadline_returns_partial_metrics(self):
        """A deadline shorter than the work yields metrics over a subset."""
        executor = ExperimentExecutor(ExecutorConfig(deadline_sec=0.001))
        strategy = BoundedPoolStrategy(capacity=10)
        try:
            start = time.perf_counter()
            metrics = executor.run(strategy, SleepWorkload(0.100), 100)
            wall = time.perf_counter() - start
        finally:
            strategy.shutdown(wait=False)

        self.assertTrue(metrics.timed_out)
        self.assertTrue(metrics.degraded)
        self.assertLess(metrics.completed_tasks, 100)
        self.assertLess(metrics.success_rate_pct, 100.0)
        self.assertLess(wall, 2.0)

    def test_idempotent_success_rate(self):
        """Two runs of a no-failure workload both report 100%."""
        with BoundedPoolStrategy(capacity=4) as strategy:
            first = self.executor.run(strategy, SleepWorkload(0.001), 40)
            second = self.executor.run(strategy, SleepWorkload(0.001), 40)

        self.assertEqual(first.success_rate_pct, 100.0)
        self.assertEqual(second.success_rate_pct, 100.0)

    def test_runs_are_isolated(self):
        """A second run on the same strategy starts from fresh counters."""
        with BoundedPoolStrategy(capacity=4) as strategy:
            self.executor.run(strategy, SleepWorkload(), 30)
            metrics = self.executor.run(strategy, SleepWorkload(), 10)

        self.assertEqual(metrics.completed_tasks, 10)
        self.assertEqual(metrics.succeeded_tasks, 10)

    def test_per_task_strategy(self):
        """The per-task strategy should run every unit to completion."""
        with PerTaskStrategy() as strategy:
            metrics = self.executor.run(strategy, SleepWorkload(0.005), 100)

        self.assertEqual(metrics.completed_tasks, 100)
        self.assertEqual(metrics.success_rate_pct, 100.0)

    def test_submission_rejected_after_shutdown(self):
        """A shut down strategy makes the run fail instead of under-counting."""
        strategy = BoundedPoolStrategy(capacity=2)
        strategy.shutdown()

        with self.assertRaises(SubmissionRejectedError):
            self.executor.run(strategy, SleepWorkload(), 5)

        per_task = PerTaskStrategy()
        per_task.shutdown()
        with self.assertRaises(SubmissionRejectedError):
            self.executor.run(per_task, SleepWorkload(), 5)


class TestConcurrencySafety(unittest.TestCase):
    """Stress tests for the shared success counter."""

    TOTAL = 10_000

    def test_bounded_pool_stress(self):
        """Success count equals N regardless of the worker count."""
        executor = ExperimentExecutor(ExecutorConfig(deadline_sec=120.0))
        for workers in (1, 4, 32, 128):
            with self.subTest(workers=workers):
                with BoundedPoolStrategy(capacity=workers) as strategy:
                    metrics = executor.run(strategy, SleepWorkload(), self.TOTAL)

                self.assertFalse(metrics.timed_out)
                self.assertEqual(metrics.succeeded_tasks, self.TOTAL)
                self.assertEqual(metrics.completed_tasks, self.TOTAL)
                self.assertEqual(metrics.success_rate_pct, 100.0)

    def test_per_task_stress(self):
        executor = ExperimentExecutor(ExecutorConfig(deadline_sec=120.0))
        with PerTaskStrategy() as strategy:
            metrics = executor.run(strategy, SleepWorkload(), self.TOTAL)

        self.assertFalse(metrics.timed_out)
        self.assertEqual(metrics.succeeded_tasks, self.TOTAL)


if __name__ == "__main__":
    unittest.main(verbosity=2)
