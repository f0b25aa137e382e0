"""FastAPI application - Session API."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from backend.app.api.routes.health import router as health_router
from backend.app.api.routes.metrics import router as metrics_router
from backend.app.api.routes.sessions import router as sessions_router
from backend.app.config import get_settings
from backend.app.db.engine import create_schema, get_async_engine
from backend.app.errors import (
    AssistantError,
    DraftConflictError,
    DraftNotFound,
    ExtractionIncomplete,
    InvalidTransitionError,
    ModuleActionRequired,
    RefinementLoopExceeded,
    SessionBusyError,
    SessionNotFound,
    ToolInvocationFailure,
    ToolNotAllowedError,
    TurnCancelledError,
    VersionConflict,
)

logger = logging.getLogger(__name__)

ERROR_STATUS: dict[type[AssistantError], int] = {
    SessionNotFound: 404,
    DraftNotFound: 404,
    VersionConflict: 409,
    InvalidTransitionError: 409,
    DraftConflictError: 409,
    ModuleActionRequired: 409,
    SessionBusyError: 409,
    ExtractionIncomplete: 422,
    RefinementLoopExceeded: 429,
    TurnCancelledError: 499,
    ToolInvocationFailure: 502,
    ToolNotAllowedError: 502,
}


def status_for(error: AssistantError) -> int:
    for error_type in type(error).__mro__:
        if error_type in ERROR_STATUS:
            return ERROR_STATUS[error_type]
    return 500


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    if get_settings().database_url:
        await create_schema(get_async_engine())
    yield


app = FastAPI(title="Crew Assistant API", version="0.1.0", lifespan=lifespan)


@app.exception_handler(AssistantError)
async def assistant_error_handler(request: Request, exc: AssistantError) -> JSONResponse:
    status_code = status_for(exc)
    log = logger.warning if status_code < 500 else logger.error
    log(f"[api] {request.method} {request.url.path} -> {status_code} {exc.code}", extra={"structured": exc.to_dict()})
    return JSONResponse(status_code=status_code, content=exc.to_dict())


# Register routes
app.include_router(health_router, tags=["health"])
app.include_router(metrics_router, tags=["metrics"])
app.include_router(sessions_router)


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint."""
    return {"message": "Crew Assistant API", "version": "0.1.0"}
