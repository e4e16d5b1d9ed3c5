"""Point-in-time process resource snapshots taken after each run."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional
import logging
import os
import threading

import psutil


logger = logging.getLogger(__name__)

BYTES_PER_MB = 1024 * 1024


@dataclass(frozen=True)
class SystemSnapshot:
    """
    Process resource usage at one instant.

    Attributes:
        heap_used_mb: Resident set size of the process in whole MiB.
        live_thread_count: Python threads alive at capture time.
    """
    heap_used_mb: int
    live_thread_count: int


class ResourceSampler:
    """
    Reads process memory and live thread count.

    Pure observation. Memory readings that the host refuses fall back to 0
    so that capture() never raises.
    """

    def __init__(self, pid: Optional[int] = None):
        self.pid = pid or os.getpid()
        self._process = None

    def _memory_mb(self) -> int:
        try:
            if self._process is None:
                self._process = psutil.Process(self.pid)
            return self._process.memory_info().rss // BYTES_PER_MB
        except psutil.Error as e:
            logger.debug(f"Memory reading unavailable: {e}")
            return 0

    def capture(self) -> SystemSnapshot:
        return SystemSnapshot(
            heap_used_mb=self._memory_mb(),
            live_thread_count=threading.active_count(),
        )
