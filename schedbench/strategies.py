"""
Scheduling Strategies

Two interchangeable execution backends behind one submit/shutdown contract:

- BoundedPoolStrategy: a fixed number of reusable worker threads. Work
  beyond capacity waits in an unbounded queue; there is no admission
  control or rejection while the pool is open.
- PerTaskStrategy: every submission gets its own freshly started thread.
  Nothing is queued; the only limit is what the host lets us start.

Both hand a shared cancel event to running work so that shutdown can
interrupt it on a best-effort basis.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from enum import Enum
from threading import Event, Lock, Thread, current_thread
from typing import Any, Callable, Set
import logging


logger = logging.getLogger(__name__)

UnitOfWork = Callable[[], Any]


class StrategyKind(str, Enum):
    """Runtime tag selecting a scheduling strategy."""
    BOUNDED_POOL = "bounded_pool"
    PER_TASK = "per_task"


class SubmissionRejectedError(RuntimeError):
    """Raised when a strategy cannot accept a unit of work."""


class SchedulingStrategy(ABC):
    """
    Base class for scheduling strategies.

    One instance serves every iteration of a single (scenario, concurrency)
    pair and is shut down once those iterations are done.
    """

    kind: StrategyKind

    def __init__(self):
        self._cancel_event = Event()
        self._state_lock = Lock()
        self._shutdown = False

    @property
    def cancel_event(self) -> Event:
        """Event set on shutdown; running work may wait on or poll it."""
        return self._cancel_event

    @property
    def is_shutdown(self) -> bool:
        with self._state_lock:
            return self._shutdown

    def _check_open(self) -> None:
        if self.is_shutdown:
            raise SubmissionRejectedError(f"{self.kind.value} strategy is shut down")

    @abstractmethod
    def submit(self, unit_of_work: UnitOfWork) -> None:
        """
        Schedule a unit of work for asynchronous execution.

        Args:
            unit_of_work: Zero-argument callable to run.

        Raises:
            SubmissionRejectedError: If the strategy no longer accepts work.
        """

    def shutdown(self, wait: bool = False) -> None:
        """
        Stop accepting work and interrupt in-flight work.

        Args:
            wait: If True, block until running work has finished.
        """
        with self._state_lock:
            already = self._shutdown
            self._shutdown = True
        self._cancel_event.set()
        if not already:
            self._release(wait)

    @abstractmethod
    def _release(self, wait: bool) -> None:
        """Release the strategy's threads after the shutdown flag is set."""

    def __enter__(self) -> "SchedulingStrategy":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> bool:
        self.shutdown(wait=False)
        return False


class BoundedPoolStrategy(SchedulingStrategy):
    """
    Fixed-capacity worker pool.

    Example:
        with BoundedPoolStrategy(capacity=16) as strategy:
            strategy.submit(unit_of_work)
    """

    kind = StrategyKind.BOUNDED_POOL

    def __init__(self, capacity: int):
        """
        Initialize the pool.

        Args:
            capacity: Number of worker threads.

        Raises:
            ValueError: If capacity < 1.
        """
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        super().__init__()
        self.capacity = capacity
        self._executor = ThreadPoolExecutor(
            max_workers=capacity,
            thread_name_prefix="bounded-pool",
        )

    def submit(self, unit_of_work: UnitOfWork) -> None:
        self._check_open()
        try:
            self._executor.submit(unit_of_work)
        except RuntimeError as e:
            raise SubmissionRejectedError(f"bounded pool rejected work: {e}") from e

    def _release(self, wait: bool) -> None:
        # Queued work that never started is dropped.
        self._executor.shutdown(wait=wait, cancel_futures=True)

    def __repr__(self) -> str:
        return f"BoundedPoolStrategy(capacity={self.capacity})"


class PerTaskStrategy(SchedulingStrategy):
    """
    One new thread per submitted unit of work.

    Threads are daemonic so that abandoned work never blocks interpreter
    exit. Live threads are tracked for shutdown(wait=True) and reporting.
    """

    kind = StrategyKind.PER_TASK

    def __init__(self):
        super().__init__()
        self._live: Set[Thread] = set()
        self._live_lock = Lock()
        self._started = 0

    def _run(self, unit_of_work: UnitOfWork) -> None:
        try:
            unit_of_work()
        except Exception as e:
            logger.error(f"Unhandled error in per-task thread: {e}")
        finally:
            with self._live_lock:
                self._live.discard(current_thread())

    def submit(self, unit_of_work: UnitOfWork) -> None:
        self._check_open()
        with self._live_lock:
            self._started += 1
            name = f"per-task-{self._started}"
        thread = Thread(target=self._run, args=(unit_of_work,), name=name, daemon=True)
        with self._live_lock:
            self._live.add(thread)
        try:
            thread.start()
        except RuntimeError as e:
            with self._live_lock:
                self._live.discard(thread)
            raise SubmissionRejectedError(f"could not start thread: {e}") from e

    def live_count(self) -> int:
        """Number of per-task threads still running."""
        with self._live_lock:
            return len(self._live)

    def _release(self, wait: bool) -> None:
        if not wait:
            return
        with self._live_lock:
            threads = list(self._live)
        for thread in threads:
            thread.join()

    def __repr__(self) -> str:
        return "PerTaskStrategy()"


def create_strategy(kind: StrategyKind, concurrency_level: int) -> SchedulingStrategy:
    """
    Build the strategy for one (scenario, concurrency) pair.

    The concurrency level sizes the bounded pool 1:1; the per-task strategy
    ignores it.
    """
    if concurrency_level < 1:
        raise ValueError("concurrency_level must be at least 1")
    if kind is StrategyKind.BOUNDED_POOL:
        return BoundedPoolStrategy(concurrency_level)
    return PerTaskStrategy()
