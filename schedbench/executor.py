"""
Experiment Executor

Drives a fixed number of units of work through a scheduling strategy and
turns the observed per-task timings into RunMetrics.

Each unit is wrapped so that, whatever happens inside the workload, exactly
one TaskOutcome is recorded and the run's completion latch is counted down
exactly once. The control thread then blocks once on that latch, bounded by
a hard deadline. A run that hits the deadline is not an error: metrics are
computed over whatever outcomes arrived in time.
"""

from __future__ import annotations

from dataclasses import dataclass
from threading import Event
from typing import Callable, Optional
import logging
import time

from schedbench.metrics import RunContext, RunMetrics, TaskOutcome
from schedbench.strategies import SchedulingStrategy
from schedbench.workloads import Workload


# Configure module logger
logger = logging.getLogger(__name__)

DEFAULT_DEADLINE_SEC = 180.0


@dataclass
class ExecutorConfig:
    """
    Configuration for the experiment executor.

    Attributes:
        deadline_sec: Hard limit on the completion wait of a single run.
            Deployments typically use 60 to 180 seconds; the largest
            bounded-pool runs need the upper end to drain their queue.
    """
    deadline_sec: float = DEFAULT_DEADLINE_SEC

    def __post_init__(self):
        if self.deadline_sec <= 0:
            raise ValueError("deadline_sec must be positive")


class ExperimentExecutor:
    """
    Runs one experiment: submit, wait, aggregate.

    The executor holds no state between runs; every call to run() builds a
    fresh RunContext.

    Example:
        executor = ExperimentExecutor(ExecutorConfig(deadline_sec=60.0))
        with BoundedPoolStrategy(capacity=100) as strategy:
            metrics = executor.run(strategy, CpuBoundWorkload(), 1000)
        print(metrics.throughput_per_sec, metrics.p99_latency_ms)
    """

    def __init__(self, config: Optional[ExecutorConfig] = None):
        self.config = config or ExecutorConfig()

    def _wrap_task(
        self,
        workload: Workload,
        context: RunContext,
        cancel_event: Event,
    ) -> Callable[[], TaskOutcome]:
        """
        Wrap one execution of the workload with outcome bookkeeping.

        Failures are absorbed here and reported as succeeded=False. The
        finally block runs on every exit path, including BaseException.
        """
        def unit_of_work() -> TaskOutcome:
            start_ns = time.perf_counter_ns()
            succeeded = False
            try:
                workload.execute(cancel_event)
                succeeded = True
            except Exception as e:
                logger.debug(f"Task failed: {type(e).__name__}: {e}")
            finally:
                outcome = TaskOutcome(
                    latency_ns=time.perf_counter_ns() - start_ns,
                    succeeded=succeeded,
                )
                context.record(outcome)
            return outcome

        return unit_of_work

    def run(
        self,
        strategy: SchedulingStrategy,
        workload: Workload,
        total_requests: int,
    ) -> RunMetrics:
        """
        Execute total_requests units of the workload on the strategy.

        Args:
            strategy: Strategy that schedules the units.
            workload: Unit of work to execute.
            total_requests: Number of units to submit.

        Returns:
            RunMetrics over the outcomes collected before the deadline.

        Raises:
            ValueError: If total_requests is negative.
            SubmissionRejectedError: If the strategy refuses a submission.
        """
        if total_requests < 0:
            raise ValueError("total_requests must be non-negative")

        context = RunContext(total_requests)
        cancel_event = strategy.cancel_event

        start_ns = time.perf_counter_ns()

        for _ in range(total_requests):
            strategy.submit(self._wrap_task(workload, context, cancel_event))

        finished = context.latch.wait(timeout=self.config.deadline_sec)

        elapsed_ns = time.perf_counter_ns() - start_ns
        metrics = context.summarize(elapsed_ns, timed_out=not finished)

        if not finished:
            logger.warning(
                f"Run hit {self.config.deadline_sec:.1f}s deadline: "
                f"{metrics.completed_tasks}/{total_requests} outcomes collected, "
                f"{metrics.unfinished_tasks} abandoned"
            )

        return metrics
