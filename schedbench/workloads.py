"""
Workload Primitives for Scheduler Benchmarking

Provides the two interchangeable units of work driven through the
scheduling strategies: a CPU-bound computation of fixed, deterministic cost
and an IO-bound operation made of one bounded store read followed by a
fixed artificial delay.

Both primitives share one contract: execute() returns None on success and
raises on failure. Timing is measured by the caller, never by the workload.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum
from threading import Event
from typing import Any, Optional
import math
import time

from schedbench.store import InvoiceStore, StoreError, MAX_PAGE_SIZE


DEFAULT_CPU_ITERATIONS = 2000
DEFAULT_IO_DELAY_MS = 50.0
DEFAULT_STORE_ID = 1

# How often the CPU loop looks at the cancel event.
CANCEL_CHECK_INTERVAL = 256


class WorkloadType(str, Enum):
    """Workload label as written to result rows."""
    CPU_BOUND = "CPU_BOUND"
    IO_BOUND = "IO_BOUND"


class TaskError(Exception):
    """Raised by a workload when one unit of work fails."""


class TaskCancelledError(TaskError):
    """Raised when a unit of work is interrupted by strategy shutdown."""


class Workload(ABC):
    """Base class for a unit of work submitted to a scheduling strategy."""

    workload_type: WorkloadType

    @abstractmethod
    def execute(self, cancel_event: Optional[Event] = None) -> None:
        """
        Perform one unit of work.

        Args:
            cancel_event: Set by the owning strategy on shutdown. Workloads
                poll or wait on it so that in-flight work can be interrupted.

        Raises:
            TaskError: If the unit of work fails or is cancelled.
        """


class CpuBoundWorkload(Workload):
    """
    Fixed, input-independent floating point computation.

    Sums sin(i) * cos(i) over a constant number of iterations. The loop
    holds the GIL for its whole duration, so it exposes how each strategy
    copes with pure interpreter contention.

    Example:
        workload = CpuBoundWorkload(iterations=2000)
        workload.execute()
    """

    workload_type = WorkloadType.CPU_BOUND

    def __init__(self, iterations: int = DEFAULT_CPU_ITERATIONS):
        if iterations < 0:
            raise ValueError("iterations must be non-negative")
        self.iterations = iterations

    def compute(self, cancel_event: Optional[Event] = None) -> float:
        """Run the computation and return its (meaningless) result."""
        result = 0.0
        for i in range(self.iterations):
            if (
                cancel_event is not None
                and i % CANCEL_CHECK_INTERVAL == 0
                and cancel_event.is_set()
            ):
                raise TaskCancelledError("CPU task cancelled")
            result += math.sin(i) * math.cos(i)
        return result

    def execute(self, cancel_event: Optional[Event] = None) -> None:
        self.compute(cancel_event)

    def __repr__(self) -> str:
        return f"CpuBoundWorkload(iterations={self.iterations})"


class IoBoundWorkload(Workload):
    """
    One bounded, read-only store query plus a fixed artificial delay.

    The delay emulates network or database latency on top of whatever the
    real store exhibits. Under high concurrency the query may fail (pool
    exhaustion, timeouts); such failures surface as TaskError and are
    recorded by the executor rather than propagated.

    Example:
        store = SqliteInvoiceStore("bench_store.db")
        workload = IoBoundWorkload(store, delay_ms=50.0)
        workload.execute()
    """

    workload_type = WorkloadType.IO_BOUND

    def __init__(
        self,
        store: InvoiceStore,
        store_id: int = DEFAULT_STORE_ID,
        page_size: int = MAX_PAGE_SIZE,
        delay_ms: float = DEFAULT_IO_DELAY_MS,
    ):
        """
        Initialize the IO workload.

        Args:
            store: Store providing the bounded page query.
            store_id: Store whose invoices are read.
            page_size: Rows requested per query (at most MAX_PAGE_SIZE).
            delay_ms: Artificial delay after the query in milliseconds.

        Raises:
            ValueError: If page_size is out of range or delay_ms is negative.
        """
        if not 1 <= page_size <= MAX_PAGE_SIZE:
            raise ValueError(f"page_size must be between 1 and {MAX_PAGE_SIZE}")
        if delay_ms < 0:
            raise ValueError("delay_ms must be non-negative")
        self.store = store
        self.store_id = store_id
        self.page_size = page_size
        self.delay_ms = delay_ms

    def execute(self, cancel_event: Optional[Event] = None) -> None:
        try:
            self.store.fetch_bounded_page(self.store_id, self.page_size)
        except StoreError as e:
            raise TaskError(f"store query failed: {e}") from e

        delay_sec = self.delay_ms / 1000.0
        if cancel_event is None:
            time.sleep(delay_sec)
        elif cancel_event.wait(delay_sec):
            raise TaskCancelledError("IO task cancelled")

    def __repr__(self) -> str:
        return (
            f"IoBoundWorkload(store_id={self.store_id}, "
            f"page_size={self.page_size}, delay_ms={self.delay_ms})"
        )


def create_workload(
    workload_type: WorkloadType,
    store: Optional[InvoiceStore] = None,
    **tuning: Any,
) -> Workload:
    """
    Build the workload for a scenario.

    Args:
        workload_type: Which primitive to build.
        store: Required for IO-bound workloads.
        **tuning: Keyword arguments forwarded to the workload constructor.

    Returns:
        A ready-to-execute workload.

    Raises:
        ValueError: If an IO-bound workload is requested without a store.
    """
    if workload_type is WorkloadType.CPU_BOUND:
        return CpuBoundWorkload(**tuning)
    if store is None:
        raise ValueError("IO-bound workload requires a store")
    return IoBoundWorkload(store, **tuning)
