"""
URL Record Repository - durable per-address categories and open/close history.

The repository is synchronous; the engine calls it through asyncio.to_thread.
Every public method raises PersistenceError for storage failures, after
retry_on_db_lock has had its chance at SQLITE_BUSY.
"""

from __future__ import annotations

import functools
import sqlite3
import time
from collections.abc import Callable, Iterable
from typing import Any, Literal, TypeVar

from tabq.classification.merge import resolve
from tabq.errors import PersistenceError
from tabq.infrastructure.database import DatabaseConnectionPool, retry_on_db_lock
from tabq.observability.logging import get_logger
from tabq.observability.telemetry import counter
from tabq.storage.models import Category, InstanceId, Provenance, UrlEvent, UrlRecord
from tabq.utils.urls import extract_domain

logger = get_logger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

_IN_CHUNK = 500


def persistence_errors(func: F) -> F:
    """Translate storage failures into PersistenceError."""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except (sqlite3.Error, RuntimeError) as e:
            counter("storage.error")
            logger.warning("Storage operation %s failed: %s", func.__name__, e)
            raise PersistenceError(f"{func.__name__} failed: {e}") from e

    return wrapper  # type: ignore[return-value]


def _instance_id_from_db(value: str | None) -> InstanceId | None:
    if value is None:
        return None
    return int(value) if value.lstrip("-").isdigit() else value


def _record_from_row(row: sqlite3.Row, events: list[UrlEvent] | None = None) -> UrlRecord:
    return UrlRecord(
        address=row["address"],
        category=Category(row["category"]),
        provenance=Provenance(row["provenance"]) if row["provenance"] else None,
        title=row["title"],
        domain=row["domain"],
        favicon=row["favicon"],
        first_seen=row["first_seen"],
        last_categorized=row["last_categorized"],
        events=events or [],
    )


class UrlRecordRepository:
    """
    Repository for the urls and url_events tables.

    All methods use the injected connection pool.
    """

    def __init__(self, pool: DatabaseConnectionPool) -> None:
        self.pool = pool

    @persistence_errors
    def get(self, address: str, with_events: bool = False) -> UrlRecord | None:
        with self.pool.connection() as conn:
            row = conn.execute("SELECT * FROM urls WHERE address = ?", (address,)).fetchone()
            if row is None:
                return None
            events = None
            if with_events:
                events = [
                    UrlEvent(
                        instance_id=_instance_id_from_db(e["instance_id"]),
                        kind=e["kind"],
                        timestamp=e["timestamp"],
                    )
                    for e in conn.execute(
                        "SELECT instance_id, kind, timestamp FROM url_events "
                        "WHERE address = ? ORDER BY timestamp, id",
                        (address,),
                    ).fetchall()
                ]
        return _record_from_row(row, events)

    @persistence_errors
    def get_many(self, addresses: Iterable[str]) -> dict[str, UrlRecord]:
        unique = list(dict.fromkeys(addresses))
        records: dict[str, UrlRecord] = {}
        with self.pool.connection() as conn:
            for start in range(0, len(unique), _IN_CHUNK):
                chunk = unique[start : start + _IN_CHUNK]
                placeholders = ",".join("?" * len(chunk))
                rows = conn.execute(
                    f"SELECT * FROM urls WHERE address IN ({placeholders})", chunk
                ).fetchall()
                for row in rows:
                    records[row["address"]] = _record_from_row(row)
        return records

    @persistence_errors
    def list_by_category(self, category: Category) -> list[UrlRecord]:
        with self.pool.connection() as conn:
            rows = conn.execute(
                "SELECT * FROM urls WHERE category = ? "
                "ORDER BY COALESCE(last_categorized, first_seen) DESC",
                (int(category),),
            ).fetchall()
        return [_record_from_row(row) for row in rows]

    @persistence_errors
    def category_counts(self) -> dict[Category, int]:
        """Stored records per category, zero for empty ones."""
        with self.pool.connection() as conn:
            rows = conn.execute(
                "SELECT category, COUNT(*) AS n FROM urls GROUP BY category"
            ).fetchall()
        counts = {category: 0 for category in Category}
        for row in rows:
            counts[Category(row["category"])] = row["n"]
        return counts

    @persistence_errors
    @retry_on_db_lock()
    def save_category(
        self,
        address: str,
        category: Category,
        provenance: Provenance | None,
        title: str = "",
        domain: str = "",
        favicon: str | None = None,
        timestamp: float | None = None,
    ) -> UrlRecord:
        """
        Upsert an address's category, applying merge precedence against what is stored.

        Returns:
            The record as stored after precedence was applied

        Side Effects:
            - Inserts or updates one row in urls
            - Commits transaction
        """
        now = timestamp if timestamp is not None else time.time()
        with self.pool.transaction() as conn:
            row = conn.execute("SELECT * FROM urls WHERE address = ?", (address,)).fetchone()
            existing = _record_from_row(row) if row else None

            if existing is None:
                final_category, final_provenance = category, provenance
            else:
                final_category, final_provenance = resolve(
                    category,
                    provenance,
                    existing.category if existing.category else None,
                    existing.provenance,
                )

            record = UrlRecord(
                address=address,
                category=final_category,
                provenance=final_provenance,
                title=title or (existing.title if existing else ""),
                domain=domain or (existing.domain if existing else extract_domain(address)),
                favicon=favicon or (existing.favicon if existing else None),
                first_seen=existing.first_seen if existing else now,
                last_categorized=now,
            )
            conn.execute(
                """
                INSERT INTO urls (
                    address, category, provenance, title, domain, favicon,
                    first_seen, last_categorized
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(address) DO UPDATE SET
                    category = excluded.category,
                    provenance = excluded.provenance,
                    title = excluded.title,
                    domain = excluded.domain,
                    favicon = excluded.favicon,
                    last_categorized = excluded.last_categorized
                """,
                (
                    record.address,
                    int(record.category),
                    record.provenance.value if record.provenance else None,
                    record.title,
                    record.domain,
                    record.favicon,
                    record.first_seen,
                    record.last_categorized,
                ),
            )

        if existing is not None and final_category != category:
            counter("storage.precedence_kept_existing")
        return record

    @persistence_errors
    @retry_on_db_lock()
    def record_event(
        self,
        address: str,
        kind: Literal["open", "close"],
        instance_id: InstanceId | None = None,
        title: str = "",
        timestamp: float | None = None,
    ) -> bool:
        """
        Append an open/close event.

        Open events are only kept for addresses that already have a record.
        Close events always are, creating an Uncategorized record if needed.

        Returns:
            True if the event was written
        """
        now = timestamp if timestamp is not None else time.time()
        with self.pool.transaction() as conn:
            exists = conn.execute(
                "SELECT 1 FROM urls WHERE address = ?", (address,)
            ).fetchone() is not None

            if not exists:
                if kind == "open":
                    return False
                conn.execute(
                    "INSERT INTO urls (address, category, title, domain, first_seen) "
                    "VALUES (?, 0, ?, ?, ?)",
                    (address, title, extract_domain(address), now),
                )

            conn.execute(
                "INSERT INTO url_events (address, instance_id, kind, timestamp) VALUES (?, ?, ?, ?)",
                (address, None if instance_id is None else str(instance_id), kind, now),
            )
        return True

    @persistence_errors
    @retry_on_db_lock()
    def delete(self, address: str) -> bool:
        """
        Remove a record and its whole event history.

        Side Effects:
            - Deletes from urls (url_events cascade)
        """
        with self.pool.transaction() as conn:
            cursor = conn.execute("DELETE FROM urls WHERE address = ?", (address,))
            deleted = cursor.rowcount > 0
        if deleted:
            logger.info("Deleted URL record and history")
        return deleted

    @persistence_errors
    def recent_sessions(self, limit: int = 20) -> list[dict[str, Any]]:
        """
        Close events grouped into sessions (same second), newest first.

        Returns:
            [{"closed_at": float, "urls": [{address, title, domain, category, instance_id}]}]
        """
        with self.pool.connection() as conn:
            buckets = conn.execute(
                """
                SELECT DISTINCT CAST(timestamp AS INTEGER) AS bucket
                FROM url_events WHERE kind = 'close'
                ORDER BY bucket DESC LIMIT ?
                """,
                (limit,),
            ).fetchall()
            if not buckets:
                return []

            oldest = buckets[-1]["bucket"]
            rows = conn.execute(
                """
                SELECT e.address, e.instance_id, e.timestamp,
                       u.title, u.domain, u.category
                FROM url_events e JOIN urls u ON u.address = e.address
                WHERE e.kind = 'close' AND e.timestamp >= ?
                ORDER BY e.timestamp DESC, e.id DESC
                """,
                (oldest,),
            ).fetchall()

        sessions: dict[int, dict[str, Any]] = {}
        for row in rows:
            bucket = int(row["timestamp"])
            session = sessions.setdefault(bucket, {"closed_at": row["timestamp"], "urls": []})
            session["urls"].append(
                {
                    "address": row["address"],
                    "title": row["title"],
                    "domain": row["domain"],
                    "category": row["category"],
                    "instance_id": _instance_id_from_db(row["instance_id"]),
                }
            )
        return list(sessions.values())[:limit]
