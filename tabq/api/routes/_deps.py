"""Engine handle shared by the route modules (injected at startup)."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import HTTPException

if TYPE_CHECKING:
    from tabq.engine import TabEngine

_engine: TabEngine | None = None


def set_engine(engine: TabEngine | None) -> None:
    """Inject the engine dependency.

    Side Effects:
        - Sets module-level _engine variable
    """
    global _engine
    _engine = engine


def get_engine() -> TabEngine:
    if _engine is None:
        raise HTTPException(status_code=500, detail="Engine not initialized")
    return _engine
