"""
Invoice Store Query Primitive

The IO-bound workload treats the store as an opaque blocking call: one
bounded, read-only page query per unit of work. Connections come from a
fixed-size pool, so under heavy concurrency the pool itself becomes the
contended resource and acquisition can time out.

Two backends are provided: SQLite (stdlib, used for local runs and tests)
and PostgreSQL through psycopg.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from queue import Empty, LifoQueue
from threading import Lock
from typing import Any, Callable, Iterator, List
import logging
import random
import sqlite3
import time


logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 20
DEFAULT_POOL_SIZE = 10
DEFAULT_ACQUIRE_TIMEOUT_SEC = 30.0

PAGE_QUERY_SQLITE = """
SELECT id, customer_name, total_amount, created_at
FROM invoices
WHERE store_id = ?
ORDER BY created_at DESC
LIMIT ?
"""

PAGE_QUERY_POSTGRES = """
SELECT id, customer_name, total_amount, created_at
FROM invoices
WHERE store_id = %s
ORDER BY created_at DESC
LIMIT %s
"""

INVOICES_DDL = """
CREATE TABLE IF NOT EXISTS invoices (
    id INTEGER PRIMARY KEY,
    store_id INTEGER NOT NULL,
    customer_name TEXT NOT NULL,
    total_amount REAL NOT NULL,
    created_at REAL NOT NULL
)
"""

INVOICES_INDEX_DDL = """
CREATE INDEX IF NOT EXISTS idx_invoices_store_created
ON invoices (store_id, created_at)
"""


class StoreError(Exception):
    """Base class for store failures."""


class StoreUnavailableError(StoreError):
    """Raised when no pooled connection becomes free before the timeout."""


class StoreQueryError(StoreError):
    """Raised when the page query itself fails."""


@dataclass(frozen=True)
class InvoiceRow:
    """Lightweight invoice projection returned by the page query."""
    invoice_id: int
    customer_name: str
    total_amount: float
    created_at: Any


class ConnectionPool:
    """
    Fixed-capacity pool of reusable database connections.

    Connections are opened lazily up to max_size; min_idle of them are
    opened up front. When every connection is checked out, callers wait up
    to acquire_timeout_sec and then fail with StoreUnavailableError.

    Example:
        pool = ConnectionPool(lambda: sqlite3.connect(path), max_size=10)
        with pool.connection() as conn:
            conn.execute("SELECT 1")
    """

    def __init__(
        self,
        connect: Callable[[], Any],
        max_size: int = DEFAULT_POOL_SIZE,
        min_idle: int = 0,
        acquire_timeout_sec: float = DEFAULT_ACQUIRE_TIMEOUT_SEC,
    ):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        if not 0 <= min_idle <= max_size:
            raise ValueError("min_idle must be between 0 and max_size")
        if acquire_timeout_sec < 0:
            raise ValueError("acquire_timeout_sec must be non-negative")

        self._connect = connect
        self.max_size = max_size
        self.min_idle = min_idle
        self.acquire_timeout_sec = acquire_timeout_sec

        self._idle: LifoQueue = LifoQueue()
        self._all: List[Any] = []
        self._reserved = 0
        self._lock = Lock()
        self._closed = False

        for _ in range(min_idle):
            self._reserve_slot()
            self._idle.put(self._open())

    def _reserve_slot(self) -> bool:
        with self._lock:
            if self._reserved >= self.max_size:
                return False
            self._reserved += 1
            return True

    def _open(self) -> Any:
        # Caller must hold a reserved slot.
        try:
            conn = self._connect()
        except Exception as e:
            with self._lock:
                self._reserved -= 1
            raise StoreUnavailableError(f"could not open connection: {e}") from e
        with self._lock:
            self._all.append(conn)
        return conn

    @property
    def size(self) -> int:
        """Number of connections opened so far."""
        with self._lock:
            return len(self._all)

    def acquire(self) -> Any:
        """
        Check out a connection, opening a new one while below capacity.

        Raises:
            StoreUnavailableError: If the pool is closed or exhausted.
        """
        if self._closed:
            raise StoreUnavailableError("connection pool is closed")

        try:
            return self._idle.get_nowait()
        except Empty:
            pass

        if self._reserve_slot():
            return self._open()

        try:
            return self._idle.get(timeout=self.acquire_timeout_sec)
        except Empty:
            raise StoreUnavailableError(
                f"connection not available after {self.acquire_timeout_sec:.1f}s "
                f"(pool size {self.max_size})"
            ) from None

    def release(self, conn: Any) -> None:
        """Return a connection to the pool."""
        if self._closed:
            conn.close()
            return
        self._idle.put(conn)

    @contextmanager
    def connection(self) -> Iterator[Any]:
        conn = self.acquire()
        try:
            yield conn
        finally:
            self.release(conn)

    def close(self) -> None:
        """Close every connection the pool has opened."""
        self._closed = True
        with self._lock:
            conns = list(self._all)
            self._all.clear()
            self._reserved = 0
        for conn in conns:
            try:
                conn.close()
            except Exception as e:
                logger.debug(f"Error closing pooled connection: {e}")


class InvoiceStore(ABC):
    """Read-only store answering bounded invoice page queries."""

    def __init__(self, pool: ConnectionPool):
        self.pool = pool

    @staticmethod
    def _check_page_size(page_size: int) -> None:
        if not 1 <= page_size <= MAX_PAGE_SIZE:
            raise ValueError(f"page_size must be between 1 and {MAX_PAGE_SIZE}")

    @abstractmethod
    def fetch_bounded_page(self, store_id: int, page_size: int) -> List[InvoiceRow]:
        """
        Fetch the newest invoices of a store.

        Args:
            store_id: Store to read.
            page_size: Maximum rows returned, between 1 and MAX_PAGE_SIZE.

        Returns:
            At most page_size rows, newest first.

        Raises:
            ValueError: If page_size is out of range.
            StoreUnavailableError: If no connection could be obtained.
            StoreQueryError: If the query failed.
        """

    def close(self) -> None:
        self.pool.close()

    def __enter__(self) -> "InvoiceStore":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> bool:
        self.close()
        return False


class SqliteInvoiceStore(InvoiceStore):
    """
    SQLite-backed store.

    Each pooled connection is opened with check_same_thread=False because
    connections migrate between worker threads; the pool guarantees a
    connection is used by one thread at a time.
    """

    def __init__(
        self,
        path: str,
        pool_size: int = DEFAULT_POOL_SIZE,
        min_idle: int = 0,
        acquire_timeout_sec: float = DEFAULT_ACQUIRE_TIMEOUT_SEC,
    ):
        self.path = path

        def connect() -> sqlite3.Connection:
            return sqlite3.connect(path, timeout=acquire_timeout_sec, check_same_thread=False)

        super().__init__(ConnectionPool(connect, pool_size, min_idle, acquire_timeout_sec))

    def fetch_bounded_page(self, store_id: int, page_size: int) -> List[InvoiceRow]:
        self._check_page_size(page_size)
        with self.pool.connection() as conn:
            try:
                rows = conn.execute(PAGE_QUERY_SQLITE, (store_id, page_size)).fetchall()
            except sqlite3.Error as e:
                raise StoreQueryError(str(e)) from e
        return [InvoiceRow(*row) for row in rows]

    def seed(self, store_id: int = 1, rows: int = 5000, seed: int = 17) -> int:
        """
        Create the invoices table and top it up to the requested row count.

        Args:
            store_id: Store the generated invoices belong to.
            rows: Target number of invoices for that store.
            seed: Random seed for reproducible amounts.

        Returns:
            Number of rows inserted.
        """
        rng = random.Random(seed)
        with self.pool.connection() as conn:
            conn.execute(INVOICES_DDL)
            conn.execute(INVOICES_INDEX_DDL)
            existing = conn.execute(
                "SELECT COUNT(*) FROM invoices WHERE store_id = ?", (store_id,)
            ).fetchone()[0]
            missing = max(0, rows - existing)
            now = time.time()
            batch = [
                (store_id, f"customer-{existing + i:06d}", round(rng.uniform(1.0, 500.0), 2), now - i)
                for i in range(missing)
            ]
            conn.executemany(
                "INSERT INTO invoices (store_id, customer_name, total_amount, created_at) "
                "VALUES (?, ?, ?, ?)",
                batch,
            )
            conn.commit()
        logger.info(f"Seeded {missing} invoices for store {store_id} in {self.path}")
        return missing


class PostgresInvoiceStore(InvoiceStore):
    """PostgreSQL-backed store using psycopg, one pooled connection per query."""

    def __init__(
        self,
        dsn: str,
        pool_size: int = DEFAULT_POOL_SIZE,
        min_idle: int = 0,
        acquire_timeout_sec: float = DEFAULT_ACQUIRE_TIMEOUT_SEC,
    ):
        import psycopg

        self.dsn = dsn
        self._psycopg = psycopg

        def connect() -> Any:
            return psycopg.connect(dsn, autocommit=True)

        super().__init__(ConnectionPool(connect, pool_size, min_idle, acquire_timeout_sec))

    def fetch_bounded_page(self, store_id: int, page_size: int) -> List[InvoiceRow]:
        self._check_page_size(page_size)
        with self.pool.connection() as conn:
            try:
                with conn.cursor() as cur:
                    cur.execute(PAGE_QUERY_POSTGRES, (store_id, page_size))
                    rows = cur.fetchall()
            except self._psycopg.Error as e:
                raise StoreQueryError(str(e)) from e
        return [InvoiceRow(*row) for row in rows]


def open_store(
    dsn: str,
    pool_size: int = DEFAULT_POOL_SIZE,
    min_idle: int = 0,
    acquire_timeout_sec: float = DEFAULT_ACQUIRE_TIMEOUT_SEC,
) -> InvoiceStore:
    """
    Open a store from a DSN.

    postgresql:// and postgres:// DSNs select PostgreSQL; anything else is
    treated as a SQLite database path (sqlite:/// prefix optional).
    """
    if dsn.startswith(("postgresql://", "postgres://")):
        return PostgresInvoiceStore(dsn, pool_size, min_idle, acquire_timeout_sec)

    path = dsn[len("sqlite:///"):] if dsn.startswith("sqlite:///") else dsn
    return SqliteInvoiceStore(path, pool_size, min_idle, acquire_timeout_sec)
