"""
Unit Tests for the Invoice Store and Connection Pool
"""

import unittest
import os
import sqlite3
import tempfile
import threading

from schedbench.store import (
    ConnectionPool,
    SqliteInvoiceStore,
    StoreQueryError,
    StoreUnavailableError,
    open_store,
)


class TestConnectionPool(unittest.TestCase):
    """Tests for ConnectionPool."""

    def setUp(self):
        self.opened = 0

    def connect(self):
        self.opened += 1
        return sqlite3.connect(":memory:", check_same_thread=False)

    def test_parameter_validation(self):
        with self.assertRaises(ValueError):
            ConnectionPool(self.connect, max_size=0)
        with self.assertRaises(ValueError):
            ConnectionPool(self.connect, max_size=2, min_idle=3)
        with self.assertRaises(ValueError):
            ConnectionPool(self.connect, acquire_timeout_sec=-1.0)

    def test_lazy_growth_and_reuse(self):
        pool = ConnectionPool(self.connect, max_size=4)
        self.assertEqual(pool.size, 0)

        with pool.connection():
            pass
        with pool.connection():
            pass

        self.assertEqual(pool.size, 1)
        self.assertEqual(self.opened, 1)
        pool.close()

    def test_min_idle_preopens(self):
        pool = ConnectionPool(self.connect, max_size=10, min_idle=5)
        self.assertEqual(pool.size, 5)
        pool.close()

    def test_exhaustion_times_out(self):
        """With every connection checked out, acquire fails after the timeout."""
        pool = ConnectionPool(self.connect, max_size=1, acquire_timeout_sec=0.05)
        held = pool.acquire()
        try:
            with self.assertRaises(StoreUnavailableError):
                pool.acquire()
        finally:
            pool.release(held)
        pool.close()

    def test_never_exceeds_max_size(self):
        pool = ConnectionPool(self.connect, max_size=3, acquire_timeout_sec=5.0)
        barrier = threading.Barrier(8)

        def worker():
            barrier.wait()
            for _ in range(20):
                with pool.connection():
                    pass

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertLessEqual(pool.size, 3)
        self.assertLessEqual(self.opened, 3)
        pool.close()

    def test_connect_failure(self):
        def broken():
            raise OSError("refused")

        pool = ConnectionPool(broken, max_size=1)
        with self.assertRaises(StoreUnavailableError):
            pool.acquire()
        self.assertEqual(pool.size, 0)

    def test_closed_pool(self):
        pool = ConnectionPool(self.connect)
        pool.close()
        with self.assertRaises(StoreUnavailableError):
            pool.acquire()


class TestSqliteInvoiceStore(unittest.TestCase):
    """Tests for SqliteInvoiceStore."""

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.path = os.path.join(self.tmp.name, "store.db")
        self.store = SqliteInvoiceStore(self.path, pool_size=4)

    def tearDown(self):
        self.store.close()
        self.tmp.cleanup()

    def test_seed_and_fetch(self):
        """A page holds at most page_size rows, newest first."""
        self.assertEqual(self.store.seed(store_id=1, rows=50), 50)

        rows = self.store.fetch_bounded_page(1, 20)

        self.assertEqual(len(rows), 20)
        created = [r.created_at for r in rows]
        self.assertEqual(created, sorted(created, reverse=True))

    def test_seed_is_idempotent(self):
        self.store.seed(store_id=1, rows=30)
        self.assertEqual(self.store.seed(store_id=1, rows=30), 0)
        self.assertEqual(self.store.seed(store_id=1, rows=35), 5)

    def test_other_store_is_empty(self):
        self.store.seed(store_id=1, rows=10)
        self.assertEqual(self.store.fetch_bounded_page(2, 20), [])

    def test_page_size_bounds(self):
        self.store.seed(store_id=1, rows=10)
        with self.assertRaises(ValueError):
            self.store.fetch_bounded_page(1, 0)
        with self.assertRaises(ValueError):
            self.store.fetch_bounded_page(1, 21)

    def test_missing_table_is_query_error(self):
        with self.assertRaises(StoreQueryError):
            self.store.fetch_bounded_page(1, 5)

    def test_concurrent_reads(self):
        """Reads from many threads share the pooled connections."""
        self.store.seed(store_id=1, rows=100)
        errors = []
        counts = []

        def reader():
            try:
                for _ in range(10):
                    counts.append(len(self.store.fetch_bounded_page(1, 20)))
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=reader) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(errors, [])
        self.assertEqual(counts, [20] * 80)
        self.assertLessEqual(self.store.pool.size, 4)


class TestOpenStore(unittest.TestCase):
    """Tests for open_store."""

    def test_sqlite_paths(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "a.db")
            for dsn in (path, "sqlite:///" + path):
                store = open_store(dsn, pool_size=2)
                try:
                    self.assertIsInstance(store, SqliteInvoiceStore)
                    self.assertEqual(store.path, path)
                    self.assertEqual(store.pool.max_size, 2)
                finally:
                    store.close()


if __name__ == "__main__":
    unittest.main(verbosity=2)
