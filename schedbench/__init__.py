"""
SchedBench: Bounded Pool vs Per-Task Thread Scheduling Benchmark

A harness that measures how a fixed-size worker pool and a thread-per-task
scheduler behave as concurrent load grows, for CPU-bound and IO-bound work.
It emits raw per-iteration rows (throughput, p99 latency, success rate,
process memory and live thread count) for external analysis.

Key Features:
- ExperimentExecutor: submits N units of work, waits under a hard deadline
  and derives metrics from per-task timings, even from partial runs
- BoundedPoolStrategy and PerTaskStrategy behind one submit/shutdown contract
- CpuBoundWorkload and IoBoundWorkload (bounded store query plus fixed delay)
- BenchmarkRunner with the scalability and pool-size sensitivity suites

Example:
    from schedbench import BoundedPoolStrategy, CpuBoundWorkload, ExperimentExecutor

    executor = ExperimentExecutor()
    with BoundedPoolStrategy(capacity=100) as strategy:
        metrics = executor.run(strategy, CpuBoundWorkload(), total_requests=1000)
    print(metrics.throughput_per_sec, metrics.p99_latency_ms)

License: MIT
"""

from __future__ import annotations

from schedbench.executor import (
    ExperimentExecutor,
    ExecutorConfig,
)
from schedbench.metrics import (
    TaskOutcome,
    RunMetrics,
    RunContext,
    CountDownLatch,
)
from schedbench.strategies import (
    SchedulingStrategy,
    BoundedPoolStrategy,
    PerTaskStrategy,
    StrategyKind,
    SubmissionRejectedError,
    create_strategy,
)
from schedbench.workloads import (
    Workload,
    WorkloadType,
    CpuBoundWorkload,
    IoBoundWorkload,
    TaskError,
    TaskCancelledError,
    create_workload,
)
from schedbench.resources import (
    ResourceSampler,
    SystemSnapshot,
)
from schedbench.benchmark import (
    BenchmarkConfig,
    BenchmarkRunner,
    ExperimentRequest,
    ResultRecord,
    ScenarioDefinition,
    scalability_config,
    sensitivity_config,
)

__version__ = "1.0.0"
__license__ = "MIT"

__all__ = [
    # Core executor classes
    "ExperimentExecutor",
    "ExecutorConfig",
    # Metrics classes
    "TaskOutcome",
    "RunMetrics",
    "RunContext",
    "CountDownLatch",
    # Scheduling strategies
    "SchedulingStrategy",
    "BoundedPoolStrategy",
    "PerTaskStrategy",
    "StrategyKind",
    "SubmissionRejectedError",
    "create_strategy",
    # Workloads
    "Workload",
    "WorkloadType",
    "CpuBoundWorkload",
    "IoBoundWorkload",
    "TaskError",
    "TaskCancelledError",
    "create_workload",
    # Resource sampling
    "ResourceSampler",
    "SystemSnapshot",
    # Orchestration
    "BenchmarkConfig",
    "BenchmarkRunner",
    "ExperimentRequest",
    "ResultRecord",
    "ScenarioDefinition",
    "scalability_config",
    "sensitivity_config",
]
