"""
Run Metrics and Per-Run Outcome Collection

Every experiment run owns one RunContext. Worker threads record exactly one
TaskOutcome per unit of work into it; the control thread waits on the
context's completion latch and then derives RunMetrics from a snapshot:

    throughput  = succeeded / elapsed_sec
    success %   = 100 * succeeded / total_requests
    p99 latency = sorted_latencies[floor(0.99 * n)]

Outcomes arriving after the deadline still land in their own context and
never touch a later run.
"""

from __future__ import annotations

from dataclasses import dataclass
from threading import Condition, Lock
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np


NANOS_PER_MS = 1_000_000
NANOS_PER_SEC = 1_000_000_000
P99_PERCENT = 99


@dataclass(frozen=True)
class TaskOutcome:
    """
    Outcome of a single unit of work.

    Attributes:
        latency_ns: Elapsed time of the unit in nanoseconds.
        succeeded: Whether the workload returned normally.
    """
    latency_ns: int
    succeeded: bool

    def __post_init__(self):
        if self.latency_ns < 0:
            raise ValueError("latency_ns must be non-negative")


@dataclass(frozen=True)
class RunMetrics:
    """
    Aggregate metrics for one experiment run.

    The first three fields are the published measurements. The remaining
    fields keep "task failed" and "task never finished" apart: a run that
    hit its deadline has timed_out set and completed_tasks < total_requests.

    Attributes:
        throughput_per_sec: Successful tasks per second of wall time.
        p99_latency_ms: 99th percentile task latency in milliseconds.
        success_rate_pct: Percentage of requests that succeeded.
        total_requests: Units of work submitted.
        completed_tasks: Outcomes observed before the wait returned.
        succeeded_tasks: Outcomes that succeeded.
        failed_tasks: Outcomes that failed.
        elapsed_sec: Wall time from first submission to end of wait.
        timed_out: Whether the wait ended on the deadline.
    """
    throughput_per_sec: float
    p99_latency_ms: float
    success_rate_pct: float
    total_requests: int = 0
    completed_tasks: int = 0
    succeeded_tasks: int = 0
    failed_tasks: int = 0
    elapsed_sec: float = 0.0
    timed_out: bool = False

    @property
    def unfinished_tasks(self) -> int:
        return max(0, self.total_requests - self.completed_tasks)

    @property
    def degraded(self) -> bool:
        """True when some requests produced no outcome before the deadline."""
        return self.completed_tasks < self.total_requests

    def to_dict(self) -> Dict[str, Any]:
        """Convert metrics to dictionary for serialization."""
        return {
            "throughput_per_sec": self.throughput_per_sec,
            "p99_latency_ms": self.p99_latency_ms,
            "success_rate_pct": self.success_rate_pct,
            "total_requests": self.total_requests,
            "completed_tasks": self.completed_tasks,
            "succeeded_tasks": self.succeeded_tasks,
            "failed_tasks": self.failed_tasks,
            "elapsed_sec": self.elapsed_sec,
            "timed_out": self.timed_out,
        }


class CountDownLatch:
    """
    One-shot completion counter.

    count_down() decrements, wait() blocks on a condition variable until the
    count reaches zero or the timeout elapses. Never goes below zero.
    """

    def __init__(self, count: int):
        if count < 0:
            raise ValueError("count must be non-negative")
        self._count = count
        self._condition = Condition(Lock())

    @property
    def count(self) -> int:
        with self._condition:
            return self._count

    def count_down(self) -> None:
        with self._condition:
            if self._count > 0:
                self._count -= 1
                if self._count == 0:
                    self._condition.notify_all()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """
        Block until the count reaches zero.

        Args:
            timeout: Maximum seconds to wait, or None to wait forever.

        Returns:
            True if the count reached zero, False on timeout.
        """
        with self._condition:
            return self._condition.wait_for(lambda: self._count == 0, timeout=timeout)


def p99_latency_ms(latencies_ns: Sequence[int]) -> float:
    """
    Compute the p99 latency in milliseconds.

    Uses the nearest-rank index floor(0.99 * n) over the ascending sort.
    An empty sample yields 0.0, which marks a degenerate run.
    """
    count = len(latencies_ns)
    if count == 0:
        return 0.0
    ordered = np.sort(np.asarray(latencies_ns, dtype=np.int64))
    index = count * P99_PERCENT // 100
    return float(ordered[index]) / NANOS_PER_MS


class RunContext:
    """
    Shared state for a single experiment run.

    Workers append latencies and bump counters concurrently through
    record(); only the control thread reads, and only through snapshot().
    The latch is counted down on every record() call, including when the
    bookkeeping itself raises.

    Example:
        context = RunContext(total_requests=100)
        context.record(TaskOutcome(latency_ns=1_000_000, succeeded=True))
        context.latch.wait(timeout=60.0)
        metrics = context.summarize(elapsed_ns, timed_out=False)
    """

    def __init__(self, total_requests: int):
        if total_requests < 0:
            raise ValueError("total_requests must be non-negative")
        self.total_requests = total_requests
        self.latch = CountDownLatch(total_requests)
        self._lock = Lock()
        self._latencies_ns: List[int] = []
        self._succeeded = 0
        self._failed = 0

    def record(self, outcome: TaskOutcome) -> None:
        """Record one outcome and signal its completion."""
        try:
            with self._lock:
                self._latencies_ns.append(outcome.latency_ns)
                if outcome.succeeded:
                    self._succeeded += 1
                else:
                    self._failed += 1
        finally:
            self.latch.count_down()

    @property
    def succeeded(self) -> int:
        with self._lock:
            return self._succeeded

    def snapshot(self) -> Tuple[List[int], int, int]:
        """Copy of (latencies_ns, succeeded, failed) taken under the lock."""
        with self._lock:
            return list(self._latencies_ns), self._succeeded, self._failed

    def summarize(self, elapsed_ns: int, timed_out: bool = False) -> RunMetrics:
        """
        Derive RunMetrics from the outcomes collected so far.

        Late outcomes may keep arriving while this runs; they are simply not
        part of the snapshot.

        Args:
            elapsed_ns: Wall time of the run in nanoseconds.
            timed_out: Whether the completion wait hit its deadline.

        Returns:
            Immutable RunMetrics for the run.
        """
        latencies, succeeded, failed = self.snapshot()
        elapsed_sec = elapsed_ns / NANOS_PER_SEC

        throughput = succeeded / elapsed_sec if elapsed_sec > 0 else 0.0
        if self.total_requests > 0:
            success_rate = 100.0 * succeeded / self.total_requests
        else:
            success_rate = 100.0

        return RunMetrics(
            throughput_per_sec=throughput,
            p99_latency_ms=p99_latency_ms(latencies),
            success_rate_pct=success_rate,
            total_requests=self.total_requests,
            completed_tasks=len(latencies),
            succeeded_tasks=succeeded,
            failed_tasks=failed,
            elapsed_sec=elapsed_sec,
            timed_out=timed_out,
        )
