"""Sync protocol endpoints.

- GET /api/state - Canonical state snapshot
- POST /api/classify - Run the classification pipeline over a batch of tabs
- POST /api/correct - User category override
- POST /api/tabs/events - Host lifecycle events (queued for the reconciler)
- POST /api/tabs/bootstrap - Seed state from every open tab at startup
- GET/PUT /api/rules - Static rule list
- GET /api/urls - Stored URL records in one category, with per-category counts
- DELETE /api/urls - Delete one stored URL record and its history
- GET /api/sessions - Recently closed tabs grouped by close time
- POST /api/clear - Clear canonical state
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Query

from tabq.api.models import (
    BootstrapRequest,
    ClassifyRequest,
    ClassifyResponse,
    CorrectRequest,
    CorrectResponse,
    RulesPayload,
    SavedUrlsResponse,
    StateResponse,
    TabEventsRequest,
    TabEventsResponse,
)
from tabq.api.routes._deps import get_engine
from tabq.config import SESSIONS_LIMIT_DEFAULT
from tabq.observability.telemetry import log_event
from tabq.storage.models import Category

router = APIRouter(prefix="/api", tags=["tabs"])


@router.get("/state", response_model=StateResponse)
async def get_state() -> StateResponse:
    return StateResponse.from_snapshot(get_engine().sync.get_state())


@router.post("/classify", response_model=ClassifyResponse)
async def classify(request: ClassifyRequest) -> ClassifyResponse:
    """Classify tabs and install the result.

    A run that leaves units unresolved returns success=false with the error
    message instead of an HTTP error.

    Side Effects:
        - May call the remote provider
        - Writes category records
        - Publishes a refresh notification
    """
    outcome = await get_engine().sync.request_classification(
        request.tabs, request.exclude_addresses, request.policy
    )
    log_event("api.classify", success=outcome.success, tabs=len(request.tabs))
    if not outcome.success:
        return ClassifyResponse(success=False, error=outcome.error)

    return ClassifyResponse(
        success=True,
        data={int(c): units for c, units in outcome.categorized.items() if int(c) > 0},
        duplicate_index=outcome.duplicate_index,
        status=outcome.status,
        persistence_error=outcome.persistence_error,
        stages_run=outcome.stages_run,
    )


@router.post("/correct", response_model=CorrectResponse)
async def correct(request: CorrectRequest) -> CorrectResponse:
    ack = await get_engine().sync.correct_category(
        request.address, request.from_category, request.to_category
    )
    return CorrectResponse(ack=ack)


@router.post("/tabs/events", response_model=TabEventsResponse)
async def tab_events(request: TabEventsRequest) -> TabEventsResponse:
    """Queue host lifecycle events; handled in arrival order by the reconciler."""
    accepted = get_engine().sync.ingest(payload.to_event() for payload in request.events)
    return TabEventsResponse(accepted=accepted, dropped=len(request.events) - accepted)


@router.post("/tabs/bootstrap")
async def bootstrap(request: BootstrapRequest) -> dict[str, Any]:
    tracked = await get_engine().sync.bootstrap(request.tabs)
    return {"tracked": tracked}


@router.get("/rules", response_model=RulesPayload)
async def list_rules() -> RulesPayload:
    return RulesPayload(rules=await get_engine().sync.list_rules())


@router.put("/rules")
async def replace_rules(payload: RulesPayload) -> dict[str, Any]:
    stored = await get_engine().sync.replace_rules(payload.rules)
    log_event("api.rules_replaced", count=stored)
    return {"stored": stored}


@router.get("/urls", response_model=SavedUrlsResponse)
async def list_saved(category: int = Query(ge=0, le=3)) -> SavedUrlsResponse:
    tier = Category(category)
    records, counts = await get_engine().sync.list_saved(tier)
    return SavedUrlsResponse.build(tier, records, counts)


@router.delete("/urls")
async def delete_url(address: str = Query(min_length=1)) -> dict[str, Any]:
    deleted = await get_engine().sync.delete_url(address)
    return {"deleted": deleted}


@router.get("/sessions")
async def recent_sessions(
    limit: int = Query(default=SESSIONS_LIMIT_DEFAULT, ge=1, le=200),
) -> dict[str, Any]:
    sessions = await get_engine().sync.recent_sessions(limit)
    return {"sessions": sessions}


@router.post("/clear")
async def clear() -> dict[str, Any]:
    get_engine().sync.clear_all()
    return {"cleared": True}
