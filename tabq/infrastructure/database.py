"""Database configuration and connection pooling

tabq keeps its durable state (URL records, open/close events, rules) in one
SQLite file. The engine gets a DatabaseConnectionPool injected; only the
application wiring uses the process-wide get_pool() helper.

Provides:
- Thread-safe connection pool (WAL mode, foreign keys on) with bounded overflow
- Lock-retry decorator with exponential backoff and jitter
- Transaction context manager (commit on success, rollback on error)
- Pool health metrics
"""

from __future__ import annotations

import atexit
import os
import random
import sqlite3
import time
from collections.abc import Callable, Generator
from contextlib import contextmanager
from functools import lru_cache, wraps
from pathlib import Path
from queue import Empty, Full, Queue
from threading import Lock
from typing import Any, TypeVar

from tabq.config import (
    DB_CONNECT_TIMEOUT,
    DB_POOL_SIZE,
    DB_POOL_TIMEOUT,
    DB_RETRY_BASE_DELAY,
    DB_RETRY_JITTER,
    DB_RETRY_MAX,
    DB_RETRY_MAX_DELAY,
    DB_TEMP_CONN_MAX,
)
from tabq.observability.logging import get_logger
from tabq.observability.telemetry import counter, log_event

F = TypeVar("F", bound=Callable[..., Any])

DB_PATH = Path(__file__).parent.parent / "data" / "tabq.db"

logger = get_logger(__name__)

_BUSY_MARKERS = ("locked", "busy")


def _is_busy(error: sqlite3.OperationalError) -> bool:
    message = str(error).lower()
    return any(marker in message for marker in _BUSY_MARKERS)


def retry_on_db_lock(
    max_retries: int = DB_RETRY_MAX,
    base_delay: float = DB_RETRY_BASE_DELAY,
    max_delay: float = DB_RETRY_MAX_DELAY,
) -> Callable[[F], F]:
    """
    Retry a storage write while SQLite reports the database as locked/busy.

    The reconciler and the sync service write from different worker threads,
    so short lock waits are expected. Any other OperationalError is raised
    on the first attempt.

    Usage:
        @retry_on_db_lock()
        def save_category(self, address, category):
            with self.pool.transaction() as conn:
                conn.execute("UPDATE urls SET category = ? WHERE address = ?", ...)

    Side Effects:
        - Sleeps between attempts (exponential backoff plus jitter)
        - Increments database.lock_retry / database.lock_retry_exhausted counters
    """

    def decorator(func: F) -> F:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            attempt = 0
            while True:
                try:
                    return func(*args, **kwargs)
                except sqlite3.OperationalError as e:
                    if not _is_busy(e):
                        raise
                    if attempt >= max_retries:
                        counter("database.lock_retry_exhausted")
                        logger.error(
                            "%s still locked after %d retries: %s", func.__name__, max_retries, e
                        )
                        raise

                    delay = min(base_delay * (2**attempt), max_delay)
                    delay += random.uniform(0, delay * DB_RETRY_JITTER)
                    attempt += 1
                    counter("database.lock_retry")
                    logger.warning(
                        "%s hit a locked database (retry %d/%d in %.2fs)",
                        func.__name__,
                        attempt,
                        max_retries,
                        delay,
                    )
                    time.sleep(delay)

        return wrapper  # type: ignore[return-value]

    return decorator


class DatabaseConnectionPool:
    """
    Thread-safe connection pool for SQLite

    Storage calls run in worker threads (asyncio.to_thread), so connections
    are created with check_same_thread=False and handed out one per caller.
    When every pooled connection is busy for longer than acquire_timeout, an
    overflow connection is opened (up to overflow_max at a time) and closed
    again on release.
    """

    def __init__(
        self,
        db_path: Path | str,
        pool_size: int = DB_POOL_SIZE,
        acquire_timeout: float = DB_POOL_TIMEOUT,
        overflow_max: int = DB_TEMP_CONN_MAX,
    ) -> None:
        self.db_path = Path(db_path)
        self.pool_size = pool_size
        self.acquire_timeout = acquire_timeout
        self.overflow_max = overflow_max
        self.closed = False
        self._idle: Queue[sqlite3.Connection] = Queue(maxsize=pool_size)
        self._lock = Lock()
        self._overflow: set[int] = set()

        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        for _ in range(pool_size):
            try:
                self._idle.put(self._open())
            except (sqlite3.Error, RuntimeError) as e:
                logger.warning("Could not open pooled connection to %s: %s", self.db_path, e)

        atexit.register(self.close_all)

    @property
    def overflow_in_use(self) -> int:
        with self._lock:
            return len(self._overflow)

    def _open(self) -> sqlite3.Connection:
        """
        Open and configure one connection

        Raises:
            RuntimeError: If the integrity check fails
        """
        conn = sqlite3.connect(
            str(self.db_path),
            timeout=DB_CONNECT_TIMEOUT,
            check_same_thread=False,
        )
        try:
            status = conn.execute("PRAGMA quick_check(1)").fetchone()[0]
        except sqlite3.DatabaseError as e:
            status = str(e)
        if status != "ok":
            conn.close()
            counter("database.corruption_detected")
            logger.critical("Integrity check failed for %s: %s", self.db_path, status)
            raise RuntimeError(f"Database corruption detected: {status}")

        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA synchronous=NORMAL")
        conn.execute("PRAGMA foreign_keys=ON")
        conn.row_factory = sqlite3.Row
        return conn

    def acquire(self) -> sqlite3.Connection:
        """
        Take a connection, opening an overflow one if the pool stays empty

        Raises:
            RuntimeError: If the pool is closed or the overflow limit is reached
        """
        if self.closed:
            raise RuntimeError("Connection pool has been closed")

        try:
            return self._idle.get(timeout=self.acquire_timeout)
        except Empty:
            pass

        with self._lock:
            in_use = len(self._overflow)
            if in_use >= self.overflow_max:
                logger.critical(
                    "Connection pool exhausted: %d pooled, %d overflow in use",
                    self.pool_size,
                    in_use,
                )
                raise RuntimeError(
                    f"Database connection pool exhausted (pool_size={self.pool_size}, "
                    f"overflow_max={self.overflow_max})"
                )
            conn = self._open()
            self._overflow.add(id(conn))

        log_event("database.pool_overflow", pool_size=self.pool_size, overflow=in_use + 1)
        return conn

    def release(self, conn: sqlite3.Connection) -> None:
        with self._lock:
            overflow = id(conn) in self._overflow
            self._overflow.discard(id(conn))

        if overflow or self.closed:
            conn.close()
            return
        try:
            self._idle.put_nowait(conn)
        except Full:
            logger.warning("Released connection did not fit back in the pool, closing it")
            conn.close()

    @contextmanager
    def connection(self) -> Generator[sqlite3.Connection, None, None]:
        """
        Pooled connection for reads

        Usage:
            with pool.connection() as conn:
                rows = conn.execute("SELECT * FROM urls").fetchall()
        """
        conn = self.acquire()
        try:
            yield conn
        finally:
            self.release(conn)

    @contextmanager
    def transaction(self) -> Generator[sqlite3.Connection, None, None]:
        """
        Pooled connection for writes

        Side Effects:
            - Commits on success, rolls back on exception
        """
        with self.connection() as conn:
            try:
                yield conn
                conn.commit()
            except Exception:
                conn.rollback()
                raise

    def close_all(self) -> None:
        """
        Close every idle connection and refuse further acquires

        Side Effects:
            - Sets self.closed
            - Connections still checked out are closed when released
        """
        self.closed = True
        while True:
            try:
                self._idle.get_nowait().close()
            except Empty:
                break

    def stats(self) -> dict[str, Any]:
        """Connection pool health metrics"""
        available = self._idle.qsize()
        in_use = self.pool_size - available
        return {
            "pool_size": self.pool_size,
            "available": available,
            "in_use": in_use,
            "overflow_in_use": self.overflow_in_use,
            "usage_percent": round(in_use / self.pool_size * 100, 1) if self.pool_size else 0,
            "closed": self.closed,
        }


def get_db_path() -> Path:
    """Database file: TABQ_DB_PATH when set, else tabq/data/tabq.db"""
    if env_path := os.getenv("TABQ_DB_PATH"):
        return Path(env_path)
    return DB_PATH


@lru_cache(maxsize=1)
def get_pool() -> DatabaseConnectionPool:
    """
    Process-wide pool for the application entry point.

    Side Effects:
        - Creates the schema and the pool on first call
        - Raises ValueError if an existing database is missing tables
    """
    from tabq.infrastructure.database_schema import init_database, validate_schema

    db_path = get_db_path()
    init_database(db_path)
    pool = DatabaseConnectionPool(db_path, pool_size=DB_POOL_SIZE)
    with pool.connection() as conn:
        validate_schema(conn)
    return pool
