"""
Benchmark Orchestration

Enumerates (scenario, concurrency) pairs, runs every iteration of each pair
on one strategy instance, drops warmup iterations and hands the remaining
records to the result sink.

Two presets reproduce the standard suites:

- scalability: concurrency 100..8000, bounded pool vs per-task threads,
  CPU and IO workloads, 10 iterations with 3 warmup rounds.
- sensitivity: IO workloads only at 4000 and 8000 users with a 100
  connection store pool, 5 iterations with 1 warmup round.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple
import gc
import logging
import time

from schedbench.executor import DEFAULT_DEADLINE_SEC, ExecutorConfig, ExperimentExecutor
from schedbench.metrics import RunMetrics
from schedbench.resources import ResourceSampler, SystemSnapshot
from schedbench.sink import CsvResultSink
from schedbench.store import InvoiceStore, MAX_PAGE_SIZE
from schedbench.strategies import (
    SchedulingStrategy,
    StrategyKind,
    SubmissionRejectedError,
    create_strategy,
)
from schedbench.workloads import (
    DEFAULT_CPU_ITERATIONS,
    DEFAULT_IO_DELAY_MS,
    DEFAULT_STORE_ID,
    Workload,
    WorkloadType,
    create_workload,
)


logger = logging.getLogger(__name__)

DEFAULT_REQUEST_MULTIPLIER = 10
LOOP_ORDERS = ("concurrency", "scenario")

ProgressCallback = Callable[[str, "ScenarioDefinition", int], None]


@dataclass(frozen=True)
class ScenarioDefinition:
    """A scheduling strategy paired with a workload type. Identity is name."""
    name: str
    strategy: StrategyKind
    workload: WorkloadType

    @property
    def type(self) -> str:
        return self.workload.value


SCALABILITY_SCENARIOS = (
    ScenarioDefinition("PT_CPU_Heavy", StrategyKind.BOUNDED_POOL, WorkloadType.CPU_BOUND),
    ScenarioDefinition("VT_CPU_Heavy", StrategyKind.PER_TASK, WorkloadType.CPU_BOUND),
    ScenarioDefinition("PT_IO_Wait", StrategyKind.BOUNDED_POOL, WorkloadType.IO_BOUND),
    ScenarioDefinition("VT_IO_Wait", StrategyKind.PER_TASK, WorkloadType.IO_BOUND),
)

SENSITIVITY_SCENARIOS = tuple(
    s for s in SCALABILITY_SCENARIOS if s.workload is WorkloadType.IO_BOUND
)


@dataclass(frozen=True)
class ExperimentRequest:
    """One (scenario, concurrency) pair and the request count of its runs."""
    scenario: ScenarioDefinition
    concurrency_level: int
    total_requests: int

    @classmethod
    def for_level(
        cls,
        scenario: ScenarioDefinition,
        concurrency_level: int,
        multiplier: int = DEFAULT_REQUEST_MULTIPLIER,
    ) -> "ExperimentRequest":
        if concurrency_level < 1:
            raise ValueError("concurrency_level must be at least 1")
        if multiplier < 1:
            raise ValueError("multiplier must be at least 1")
        return cls(scenario, concurrency_level, concurrency_level * multiplier)


@dataclass(frozen=True)
class ResultRecord:
    """
    One measured iteration, flattened for the result sink.

    Attributes:
        scenario: Scenario that was run.
        concurrency: Concurrency level of the run.
        iteration: 1-based iteration index within the pair.
        metrics: Metrics of the run.
        snapshot: Resource snapshot taken right after the run, if enabled.
        pool_size: Store connection pool size, for sensitivity sweeps.
    """
    scenario: ScenarioDefinition
    concurrency: int
    iteration: int
    metrics: RunMetrics
    snapshot: Optional[SystemSnapshot] = None
    pool_size: Optional[int] = None

    def to_row(self) -> Dict[str, Any]:
        row: Dict[str, Any] = {
            "Scenario": self.scenario.name,
            "Type": self.scenario.type,
            "Concurrency": self.concurrency,
            "Iteration": self.iteration,
            "Throughput_RPS": self.metrics.throughput_per_sec,
            "P99_ms": self.metrics.p99_latency_ms,
            "Success_Rate": self.metrics.success_rate_pct,
        }
        if self.snapshot is not None:
            row["Heap_MB"] = self.snapshot.heap_used_mb
            row["Thread_Count"] = self.snapshot.live_thread_count
        if self.pool_size is not None:
            row["Pool_Size"] = self.pool_size
        return row


@dataclass
class BenchmarkConfig:
    """
    Parameters of a benchmark sweep.

    Attributes:
        concurrency_levels: Concurrency levels in run order.
        total_iterations: Iterations per (scenario, concurrency) pair.
        warmup_rounds: Leading iterations whose results are discarded.
        request_multiplier: Requests per run = concurrency * multiplier.
        scenarios: Scenarios in run order.
        deadline_sec: Completion deadline of each run.
        settle_sec: Pause after garbage collection before each run.
        capture_system: Take a resource snapshot after each run.
        cpu_iterations: Cost of the CPU-bound workload.
        io_delay_ms: Artificial delay of the IO-bound workload.
        store_id: Store queried by the IO-bound workload.
        page_size: Rows per IO-bound query.
        pool_size: Store connection pool size; also written as Pool_Size.
        store_min_idle: Connections opened up front, defaults to none.
        loop_order: "concurrency" runs all scenarios per level,
            "scenario" runs all levels per scenario.
    """
    concurrency_levels: Sequence[int] = (100, 500, 1000, 2000, 4000, 8000)
    total_iterations: int = 10
    warmup_rounds: int = 3
    request_multiplier: int = DEFAULT_REQUEST_MULTIPLIER
    scenarios: Sequence[ScenarioDefinition] = field(default_factory=lambda: list(SCALABILITY_SCENARIOS))
    deadline_sec: float = DEFAULT_DEADLINE_SEC
    settle_sec: float = 0.5
    capture_system: bool = True
    cpu_iterations: int = DEFAULT_CPU_ITERATIONS
    io_delay_ms: float = DEFAULT_IO_DELAY_MS
    store_id: int = DEFAULT_STORE_ID
    page_size: int = MAX_PAGE_SIZE
    pool_size: Optional[int] = None
    store_min_idle: Optional[int] = None
    loop_order: str = "concurrency"

    def __post_init__(self):
        self.concurrency_levels = list(self.concurrency_levels)
        self.scenarios = list(self.scenarios)

        if not self.concurrency_levels:
            raise ValueError("at least one concurrency level is required")
        if any(level < 1 for level in self.concurrency_levels):
            raise ValueError("concurrency levels must be at least 1")
        if not self.scenarios:
            raise ValueError("at least one scenario is required")
        names = [s.name for s in self.scenarios]
        if len(set(names)) != len(names):
            raise ValueError("scenario names must be unique")
        if self.total_iterations < 1:
            raise ValueError("total_iterations must be at least 1")
        if not 0 <= self.warmup_rounds < self.total_iterations:
            raise ValueError("warmup_rounds must be between 0 and total_iterations - 1")
        if self.request_multiplier < 1:
            raise ValueError("request_multiplier must be at least 1")
        if self.deadline_sec <= 0:
            raise ValueError("deadline_sec must be positive")
        if self.settle_sec < 0:
            raise ValueError("settle_sec must be non-negative")
        if self.pool_size is not None and self.pool_size < 1:
            raise ValueError("pool_size must be at least 1")
        if self.loop_order not in LOOP_ORDERS:
            raise ValueError(f"loop_order must be one of {LOOP_ORDERS}")

    @property
    def needs_store(self) -> bool:
        return any(s.workload is WorkloadType.IO_BOUND for s in self.scenarios)

    def pairs(self) -> Iterator[Tuple[ScenarioDefinition, int]]:
        """Yield (scenario, concurrency) pairs in run order."""
        if self.loop_order == "concurrency":
            for level in self.concurrency_levels:
                for scenario in self.scenarios:
                    yield scenario, level
        else:
            for scenario in self.scenarios:
                for level in self.concurrency_levels:
                    yield scenario, level

    def select_scenarios(self, names: Sequence[str]) -> "BenchmarkConfig":
        """Return a copy restricted to the named scenarios, keeping order."""
        known = {s.name: s for s in self.scenarios}
        unknown = [n for n in names if n not in known]
        if unknown:
            raise ValueError(f"unknown scenarios: {unknown}; known: {sorted(known)}")
        return replace(self, scenarios=[s for s in self.scenarios if s.name in names])


def scalability_config(**overrides: Any) -> BenchmarkConfig:
    """Full-metrics scalability sweep across both strategies and workloads."""
    return replace(BenchmarkConfig(), **overrides)


def sensitivity_config(**overrides: Any) -> BenchmarkConfig:
    """IO-only sweep at high concurrency with a fixed 100-connection pool."""
    base = BenchmarkConfig(
        concurrency_levels=[4000, 8000],
        total_iterations=5,
        warmup_rounds=1,
        scenarios=list(SENSITIVITY_SCENARIOS),
        pool_size=100,
        store_min_idle=50,
        loop_order="scenario",
    )
    return replace(base, **overrides)


class BenchmarkRunner:
    """
    Wires workloads, strategies, executor, sampler and sink together.

    Example:
        config = scalability_config(concurrency_levels=[100], total_iterations=3, warmup_rounds=1)
        with CsvResultSink("results.csv") as sink:
            records = BenchmarkRunner(config, sink, store=store).run()
    """

    def __init__(
        self,
        config: BenchmarkConfig,
        sink: Optional[CsvResultSink] = None,
        store: Optional[InvoiceStore] = None,
        executor: Optional[ExperimentExecutor] = None,
        sampler: Optional[ResourceSampler] = None,
        strategy_factory: Callable[[StrategyKind, int], SchedulingStrategy] = create_strategy,
        progress: Optional[ProgressCallback] = None,
    ):
        """
        Initialize the runner.

        Args:
            config: Sweep parameters.
            sink: Receives one row per measured iteration. Optional.
            store: Store for IO-bound scenarios.
            executor: Defaults to one built from config.deadline_sec.
            sampler: Defaults to ResourceSampler when capture_system is set.
            strategy_factory: Builds the strategy for each pair.
            progress: Called with ("start" | "done" | "aborted", scenario, level).

        Raises:
            ValueError: If IO-bound scenarios are configured without a store.
        """
        if config.needs_store and store is None:
            raise ValueError("IO-bound scenarios require a store")

        self.config = config
        self.sink = sink
        self.store = store
        self.executor = executor or ExperimentExecutor(ExecutorConfig(config.deadline_sec))
        if sampler is None and config.capture_system:
            sampler = ResourceSampler()
        self.sampler = sampler if config.capture_system else None
        self.strategy_factory = strategy_factory
        self.progress = progress
        self.aborted_pairs: List[Tuple[str, int]] = []
        self._workloads: Dict[WorkloadType, Workload] = {}

    def _notify(self, event: str, scenario: ScenarioDefinition, level: int) -> None:
        if self.progress is not None:
            self.progress(event, scenario, level)

    def _workload_for(self, workload_type: WorkloadType) -> Workload:
        if workload_type not in self._workloads:
            if workload_type is WorkloadType.CPU_BOUND:
                tuning = {"iterations": self.config.cpu_iterations}
            else:
                tuning = {
                    "store_id": self.config.store_id,
                    "page_size": self.config.page_size,
                    "delay_ms": self.config.io_delay_ms,
                }
            self._workloads[workload_type] = create_workload(workload_type, self.store, **tuning)
        return self._workloads[workload_type]

    def _settle(self) -> None:
        gc.collect()
        if self.config.settle_sec > 0:
            time.sleep(self.config.settle_sec)

    def run_pair(
        self,
        scenario: ScenarioDefinition,
        concurrency: int,
        records: Optional[List[ResultRecord]] = None,
    ) -> List[ResultRecord]:
        """
        Run every iteration of one (scenario, concurrency) pair.

        Args:
            scenario: Scenario to run.
            concurrency: Concurrency level; sizes the bounded pool.
            records: List to append measured records to as they are
                written. A new list is used when omitted.

        Returns:
            Records of the measured (non-warmup) iterations.

        Raises:
            SubmissionRejectedError: If the strategy refuses work mid-pair.
        """
        request = ExperimentRequest.for_level(
            scenario, concurrency, self.config.request_multiplier
        )
        workload = self._workload_for(scenario.workload)
        strategy = self.strategy_factory(scenario.strategy, concurrency)
        if records is None:
            records = []

        try:
            for iteration in range(1, self.config.total_iterations + 1):
                self._settle()
                metrics = self.executor.run(strategy, workload, request.total_requests)
                snapshot = self.sampler.capture() if self.sampler is not None else None

                if metrics.degraded:
                    logger.warning(
                        f"{scenario.name} @ {concurrency} iteration {iteration} degraded: "
                        f"{metrics.completed_tasks}/{metrics.total_requests} finished, "
                        f"{metrics.failed_tasks} failed"
                    )

                if iteration <= self.config.warmup_rounds:
                    logger.debug(f"{scenario.name} @ {concurrency} warmup {iteration} discarded")
                    continue

                record = ResultRecord(
                    scenario=scenario,
                    concurrency=concurrency,
                    iteration=iteration,
                    metrics=metrics,
                    snapshot=snapshot,
                    pool_size=self.config.pool_size,
                )
                if self.sink is not None:
                    self.sink.write(record.to_row())
                records.append(record)
        finally:
            strategy.shutdown(wait=False)

        return records

    def run(self) -> List[ResultRecord]:
        """
        Run the whole sweep.

        A pair whose strategy rejects submissions is logged and skipped;
        the sweep carries on with the next pair.

        Returns:
            Every record written, in run order.
        """
        records: List[ResultRecord] = []
        for scenario, level in self.config.pairs():
            logger.info(f"Running {scenario.name} - Users: {level}")
            self._notify("start", scenario, level)
            try:
                self.run_pair(scenario, level, records)
            except SubmissionRejectedError as e:
                logger.error(f"{scenario.name} @ {level} aborted: {e}")
                self.aborted_pairs.append((scenario.name, level))
                self._notify("aborted", scenario, level)
                continue
            self._notify("done", scenario, level)
        return records
