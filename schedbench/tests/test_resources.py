"""
Unit Tests for the Resource Sampler
"""

import unittest
import os
import threading
from unittest import mock

import psutil

from schedbench.resources import ResourceSampler, SystemSnapshot


class TestResourceSampler(unittest.TestCase):
    """Tests for ResourceSampler."""

    def test_defaults_to_current_process(self):
        self.assertEqual(ResourceSampler().pid, os.getpid())
        self.assertEqual(ResourceSampler(pid=1234).pid, 1234)

    def test_capture(self):
        snapshot = ResourceSampler().capture()
        self.assertIsInstance(snapshot, SystemSnapshot)
        self.assertGreater(snapshot.heap_used_mb, 0)
        self.assertGreaterEqual(snapshot.live_thread_count, 1)

    def test_counts_live_threads(self):
        gate = threading.Event()
        threads = [threading.Thread(target=gate.wait) for _ in range(3)]
        sampler = ResourceSampler()
        before = sampler.capture().live_thread_count
        for t in threads:
            t.start()
        try:
            self.assertGreaterEqual(sampler.capture().live_thread_count, before + 3)
        finally:
            gate.set()
            for t in threads:
                t.join()

    def test_unreadable_memory_is_zero(self):
        """A refused memory reading yields 0 instead of raising."""
        with mock.patch("schedbench.resources.psutil.Process", side_effect=psutil.AccessDenied()):
            snapshot = ResourceSampler().capture()
        self.assertEqual(snapshot.heap_used_mb, 0)


if __name__ == "__main__":
    unittest.main(verbosity=2)
