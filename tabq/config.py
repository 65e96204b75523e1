"""Centralized configuration for the tabq engine.

Re-exports everything from tabq.infrastructure.settings, then adds typed
constants for the database, pipeline, LLM, and API. Environment overrides use
safe defaults so the engine starts without extra configuration.
"""

from __future__ import annotations

import os

from tabq.infrastructure.settings import *  # noqa: F401, F403

# --- App ---
APP_VERSION: str = "0.1.0"

# --- Database ---
DB_POOL_SIZE: int = int(os.getenv("TABQ_DB_POOL_SIZE", "3"))
DB_POOL_TIMEOUT: float = float(os.getenv("TABQ_DB_POOL_TIMEOUT", "5.0"))
DB_CONNECT_TIMEOUT: float = float(os.getenv("TABQ_DB_CONNECT_TIMEOUT", "30.0"))
DB_TEMP_CONN_MAX: int = int(os.getenv("TABQ_DB_TEMP_CONN_MAX", "10"))
DB_RETRY_MAX: int = int(os.getenv("TABQ_DB_RETRY_MAX", "5"))
DB_RETRY_BASE_DELAY: float = float(os.getenv("TABQ_DB_RETRY_BASE_DELAY", "0.1"))
DB_RETRY_MAX_DELAY: float = float(os.getenv("TABQ_DB_RETRY_MAX_DELAY", "2.0"))
DB_RETRY_JITTER: float = float(os.getenv("TABQ_DB_RETRY_JITTER", "0.1"))

# Failed writes held for replay before the next write
DEFERRED_WRITES_MAX: int = int(os.getenv("TABQ_DEFERRED_WRITES_MAX", "500"))

# --- Classification Pipeline ---
ADDRESS_TRUNCATION: int = 128
CLASSIFY_BATCH_MAX: int = int(os.getenv("TABQ_CLASSIFY_BATCH_MAX", "500"))
LEARNED_MIN_EXAMPLES: int = int(os.getenv("TABQ_LEARNED_MIN_EXAMPLES", "20"))
LEARNED_CORRECTION_WEIGHT: int = 3

# --- LLM ---
LLM_TIMEOUT_SECONDS: int = int(os.getenv("TABQ_LLM_TIMEOUT", "60"))
LLM_MAX_TOKENS: int = int(os.getenv("TABQ_LLM_MAX_TOKENS", "4096"))
LLM_CIRCUIT_WINDOW: int = 20
LLM_CIRCUIT_THRESHOLD: float = 0.5
LLM_CIRCUIT_COOLDOWN: float = float(os.getenv("TABQ_LLM_CIRCUIT_COOLDOWN", "300"))

# --- Sync ---
SUBSCRIBER_QUEUE_MAX: int = int(os.getenv("TABQ_SUBSCRIBER_QUEUE_MAX", "100"))
EVENT_QUEUE_MAX: int = int(os.getenv("TABQ_EVENT_QUEUE_MAX", "1000"))
SESSIONS_LIMIT_DEFAULT: int = 20
VERDICT_LEDGER_MAX: int = 5000
