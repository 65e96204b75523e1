"""FastAPI server for the tabq engine"""

from __future__ import annotations

import re
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from tabq.api.routes._deps import set_engine
from tabq.api.routes.events import router as events_router
from tabq.api.routes.health import router as health_router
from tabq.api.routes.tabs import router as tabs_router
from tabq.config import API_HOST, API_PORT, APP_VERSION, ENV, LOG_LEVEL, UI_PAGE_PREFIX
from tabq.engine import TabEngine
from tabq.errors import PersistenceError, ValidationError
from tabq.observability.logging import get_logger
from tabq.observability.telemetry import counter

logger = get_logger(__name__)

# The engine's own UI pages plus local development servers
ALLOWED_ORIGIN_REGEX = (
    rf"^({re.escape(UI_PAGE_PREFIX)}.*|http://(localhost|127\.0\.0\.1)(:\d+)?)$"
)


def create_app(engine: TabEngine | None = None) -> FastAPI:
    """
    Build the API around one engine instance.

    The engine is created on startup when none is given, using the
    process-wide database pool.

    Side Effects:
        - Starts and stops the engine with the application lifespan
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        running = engine or TabEngine()
        set_engine(running)
        app.state.engine = running
        await running.start()
        logger.info("tabq API started (env=%s)", ENV)
        try:
            yield
        finally:
            await running.stop()
            set_engine(None)

    app = FastAPI(title="tabq API", version=APP_VERSION, lifespan=lifespan)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """
        Sanitized validation errors: field names only, no validation rules.

        Side Effects:
            - Logs the full error
            - Increments api.validation_errors counter
        """
        logger.warning("Validation error on %s: %s", request.url.path, exc.errors())
        counter("api.validation_errors")
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={
                "detail": "Invalid request format. Please check your request and try again.",
                "error_count": len(exc.errors()),
                "invalid_fields": [str(err["loc"][-1]) for err in exc.errors()],
            },
        )

    @app.exception_handler(ValidationError)
    async def engine_validation_handler(request: Request, exc: ValidationError) -> JSONResponse:
        logger.warning("Rejected input on %s: %s", request.url.path, exc)
        counter("api.validation_errors")
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={"detail": str(exc)},
        )

    @app.exception_handler(PersistenceError)
    async def persistence_handler(request: Request, exc: PersistenceError) -> JSONResponse:
        logger.error("Storage unavailable on %s: %s", request.url.path, exc)
        counter("api.persistence_errors")
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"detail": "Storage unavailable, try again later."},
        )

    app.add_middleware(
        CORSMiddleware,
        allow_origin_regex=ALLOWED_ORIGIN_REGEX,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type"],
    )

    app.include_router(health_router)
    app.include_router(tabs_router)
    app.include_router(events_router)
    return app


def main() -> None:
    """Console entry point: run the API with uvicorn."""
    import uvicorn

    uvicorn.run(create_app(), host=API_HOST, port=API_PORT, log_level=LOG_LEVEL.lower())


if __name__ == "__main__":
    main()
