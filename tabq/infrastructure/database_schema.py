"""
Database schema initialization for tabq.
"""

from __future__ import annotations

import sqlite3
from pathlib import Path

from tabq.observability.logging import get_logger

logger = get_logger(__name__)

SCHEMA_VERSION = 3


def init_database(db_path: Path) -> None:
    """
    Initialize database with schema (idempotent)

    Safe to run multiple times - uses CREATE TABLE IF NOT EXISTS.

    Side Effects:
    - Creates tables and indexes if they don't exist
    - Creates the parent directory if needed
    """
    db_path.parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(db_path)

    conn.executescript("""
        CREATE TABLE IF NOT EXISTS urls (
            address TEXT PRIMARY KEY,
            category INTEGER NOT NULL DEFAULT 0 CHECK (category BETWEEN 0 AND 3),
            provenance TEXT,
            title TEXT NOT NULL DEFAULT '',
            domain TEXT NOT NULL DEFAULT '',
            favicon TEXT,
            first_seen REAL NOT NULL,
            last_categorized REAL
        );

        CREATE INDEX IF NOT EXISTS idx_urls_category ON urls(category);
        CREATE INDEX IF NOT EXISTS idx_urls_domain ON urls(domain);

        CREATE TABLE IF NOT EXISTS url_events (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            address TEXT NOT NULL REFERENCES urls(address) ON DELETE CASCADE,
            instance_id TEXT,
            kind TEXT NOT NULL CHECK (kind IN ('open', 'close')),
            timestamp REAL NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_url_events_address ON url_events(address);
        CREATE INDEX IF NOT EXISTS idx_url_events_timestamp ON url_events(kind, timestamp);

        CREATE TABLE IF NOT EXISTS rules (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            position INTEGER NOT NULL,
            kind TEXT NOT NULL,
            value TEXT NOT NULL,
            field TEXT NOT NULL DEFAULT 'url',
            category INTEGER NOT NULL,
            enabled INTEGER NOT NULL DEFAULT 1
        );

        CREATE TABLE IF NOT EXISTS metadata (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL
        );
    """)
    conn.execute(
        "INSERT OR IGNORE INTO metadata (key, value) VALUES ('schema_version', ?)",
        (str(SCHEMA_VERSION),),
    )

    conn.commit()
    conn.close()

    logger.info("Database initialized: %s", db_path)


def validate_schema(conn: sqlite3.Connection) -> bool:
    """
    Validate database has expected schema

    Raises:
        ValueError: If tables or columns are missing
    """
    required_tables = {
        "urls": ["address", "category", "provenance", "title", "first_seen"],
        "url_events": ["address", "instance_id", "kind", "timestamp"],
        "rules": ["position", "kind", "value", "field", "category", "enabled"],
    }

    cursor = conn.cursor()
    cursor.execute("SELECT name FROM sqlite_master WHERE type='table'")
    existing_tables = {row[0] for row in cursor.fetchall()}

    missing_tables = set(required_tables.keys()) - existing_tables
    if missing_tables:
        raise ValueError(f"Database missing tables: {missing_tables}")

    for table, required_cols in required_tables.items():
        # Table names come from the dict above; identifiers cannot be parameterized
        cursor.execute(f"PRAGMA table_info({table})")
        existing_cols = {row[1] for row in cursor.fetchall()}

        missing_cols = set(required_cols) - existing_cols
        if missing_cols:
            raise ValueError(f"Table '{table}' missing columns: {missing_cols}")

    return True
