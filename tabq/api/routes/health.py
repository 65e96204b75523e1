"""Health check endpoints for the tabq API.

- /health - Service health including remote provider credential presence
- /health/db - Database connection pool health
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter

from tabq import config
from tabq.api.routes._deps import get_engine
from tabq.observability.accuracy import accuracy_by_source
from tabq.observability.confidence import get_all_thresholds
from tabq.observability.telemetry import counters, get_counter

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check() -> dict[str, Any]:
    """Health check endpoint.

    Reports which remote providers have credentials configured (presence only,
    no API call), live engine counters and how often each classifier
    stage was overridden by user corrections.
    """
    engine = get_engine()
    credentials = {
        "claude": bool(config.ANTHROPIC_API_KEY),
        "openai": bool(config.OPENAI_API_KEY),
        "deepseek": bool(config.DEEPSEEK_API_KEY),
        "grok": bool(config.XAI_API_KEY),
        "gemini": bool(config.GOOGLE_CLOUD_PROJECT),
    }

    return {
        "status": "healthy",
        "service": "tabq API",
        "version": config.APP_VERSION,
        "timestamp": datetime.now(UTC).isoformat(),
        "remote": {
            "enabled": config.USE_REMOTE_CLASSIFIER,
            "default_provider": config.DEFAULT_PROVIDER,
            "credentials": credentials,
            "circuit_open": engine.pipeline.circuit_breaker.is_open,
        },
        "engine": {
            "units": sum(engine.store.counts().values()),
            "subscribers": engine.hub.subscriber_count,
            "pending_writes": len(engine.write_buffer),
            "learned_available": engine.learned_model.is_available,
            "notifications_dropped": get_counter("sync.notification_dropped"),
            "reconciler": counters("reconciler."),
        },
        "accuracy": accuracy_by_source(),
        "thresholds": get_all_thresholds(),
    }


@router.get("/health/db")
async def database_health() -> dict[str, Any]:
    """
    Database health check endpoint.

    Returns connection pool health metrics. Alerts if pool usage exceeds 80%.
    """
    stats = get_engine().pool.stats()
    usage_percent = stats["usage_percent"]

    return {
        "status": "degraded" if usage_percent > 80 else "healthy",
        "pool": stats,
        "warning": "Pool usage high" if usage_percent > 80 else None,
    }
