"""
Rule Repository - ordered static rules used by the first pipeline stage.
"""

from __future__ import annotations

from collections.abc import Iterable

from tabq.infrastructure.database import DatabaseConnectionPool, retry_on_db_lock
from tabq.observability.logging import get_logger
from tabq.storage.models import Category, Rule
from tabq.storage.url_records import persistence_errors

logger = get_logger(__name__)


class RuleRepository:
    def __init__(self, pool: DatabaseConnectionPool) -> None:
        self.pool = pool

    @persistence_errors
    def list_rules(self) -> list[Rule]:
        """Rules in declaration order, disabled ones included."""
        with self.pool.connection() as conn:
            rows = conn.execute(
                "SELECT kind, value, field, category, enabled FROM rules ORDER BY position, id"
            ).fetchall()
        return [
            Rule(
                kind=row["kind"],
                value=row["value"],
                field=row["field"],
                category=Category(row["category"]),
                enabled=bool(row["enabled"]),
            )
            for row in rows
        ]

    @persistence_errors
    @retry_on_db_lock()
    def replace_rules(self, rules: Iterable[Rule]) -> int:
        """
        Replace the whole rule list, keeping the given order.

        Side Effects:
            - Deletes and re-inserts all rows in rules
        """
        rules = list(rules)
        with self.pool.transaction() as conn:
            conn.execute("DELETE FROM rules")
            conn.executemany(
                "INSERT INTO rules (position, kind, value, field, category, enabled) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                [
                    (position, r.kind, r.value, r.field, int(r.category), int(r.enabled))
                    for position, r in enumerate(rules)
                ],
            )
        logger.info("Stored %d rules", len(rules))
        return len(rules)

    @persistence_errors
    @retry_on_db_lock()
    def seed_defaults(self, defaults: Iterable[Rule]) -> bool:
        """Install default rules when the table is empty. Returns True if seeded."""
        with self.pool.connection() as conn:
            has_rules = conn.execute("SELECT 1 FROM rules LIMIT 1").fetchone() is not None
        if has_rules:
            return False
        self.replace_rules(defaults)
        return True
