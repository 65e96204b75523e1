"""
In-process telemetry for the engine.

Events go to the "tabq.telemetry" logger; counters and latency samples stay in
memory and are read back by /health and by tests. Storage calls run in worker
threads, so every update goes through one lock.
"""

from __future__ import annotations

import contextlib
import threading
import time
from collections.abc import Iterator
from typing import Any

from tabq.observability.logging import get_logger

logger = get_logger("tabq.telemetry")

_LOCK = threading.Lock()
_COUNTERS: dict[str, int] = {}
_LATENCIES: dict[str, list[float]] = {}

# Oldest samples are discarded past this many per metric
MAX_LATENCY_SAMPLES = 1000


def _metric_ms(metric_name: str) -> str:
    """
    Latency metrics are stored under a "_ms" name.

    Examples:
        >>> _metric_ms("pipeline.remote.latency")
        'pipeline.remote.latency_ms'

        >>> _metric_ms("provider.claude_ms")
        'provider.claude_ms'
    """
    return metric_name if metric_name.endswith("_ms") else f"{metric_name}_ms"


def log_event(event_name: str, **fields: Any) -> None:
    """
    Structured log line. Fields carry ids and counts, never page titles or addresses.

    Side Effects:
        - Writes to logger (info level)
    """
    rendered = " ".join(f"{key}={value}" for key, value in sorted(fields.items()))
    logger.info("event=%s %s", event_name, rendered)


def counter(name: str, increment: int = 1) -> int:
    """
    Increment an in-memory counter and return its new value.

    Side Effects:
        - Modifies _COUNTERS (in-memory state)
    """
    with _LOCK:
        value = _COUNTERS.get(name, 0) + increment
        _COUNTERS[name] = value
    logger.debug("counter=%s value=%s", name, value)
    return value


def get_counter(name: str) -> int:
    with _LOCK:
        return _COUNTERS.get(name, 0)


def counters(prefix: str = "") -> dict[str, int]:
    """Copy of every counter whose name starts with prefix."""
    with _LOCK:
        return {name: value for name, value in sorted(_COUNTERS.items()) if name.startswith(prefix)}


@contextlib.contextmanager
def time_block(metric_name: str) -> Iterator[None]:
    """
    Time a block in milliseconds, including blocks that raise.

    Side Effects:
        - Appends to _LATENCIES (in-memory state)
    """
    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed_ms = (time.perf_counter() - start) * 1000
        name = _metric_ms(metric_name)
        with _LOCK:
            samples = _LATENCIES.setdefault(name, [])
            samples.append(elapsed_ms)
            del samples[:-MAX_LATENCY_SAMPLES]
        logger.debug("timing=%s ms=%.2f", name, elapsed_ms)


def get_latency_stats(metric_name: str) -> dict[str, float]:
    """Count, min, max, avg, p50 and p95 for one latency metric (milliseconds)."""
    with _LOCK:
        samples = sorted(_LATENCIES.get(_metric_ms(metric_name), []))
    if not samples:
        return {"count": 0, "min": 0.0, "max": 0.0, "avg": 0.0, "p50": 0.0, "p95": 0.0}

    count = len(samples)
    return {
        "count": count,
        "min": samples[0],
        "max": samples[-1],
        "avg": sum(samples) / count,
        "p50": samples[int(count * 0.50)],
        "p95": samples[min(int(count * 0.95), count - 1)],
    }


def reset_counters() -> None:
    with _LOCK:
        _COUNTERS.clear()


def reset_latencies() -> None:
    with _LOCK:
        _LATENCIES.clear()
