"""
squadplanner.api.main — FastAPI application entry point
========================================================

Run with::

    uvicorn squadplanner.api.main:app --reload --port 8000
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

load_dotenv()

from squadplanner.api.deps import get_cache, get_engine  # noqa: E402
from squadplanner.api.routes.recurring import router as recurring_router  # noqa: E402
from squadplanner.api.routes.sessions import router as sessions_router  # noqa: E402
from squadplanner.errors import (  # noqa: E402
    NotFound,
    SquadPlannerError,
    StorageError,
    Unauthenticated,
    ValidationError,
)

logger = logging.getLogger(__name__)

# Most specific first; SquadPlannerError is the catch-all.
_ERROR_STATUS: list[tuple[type[SquadPlannerError], int]] = [
    (Unauthenticated, 401),
    (NotFound, 404),
    (ValidationError, 422),
    (StorageError, 503),
]


def _cors_origins() -> list[str]:
    """Resolve allowed CORS origins from env with safe defaults.

    Priority:
      1) CORS_ALLOW_ORIGINS (comma-separated)
      2) FRONTEND_URL (single origin)
    """
    raw = os.getenv("CORS_ALLOW_ORIGINS", "").strip()
    if raw:
        return [origin.strip().rstrip("/") for origin in raw.split(",") if origin.strip()]

    frontend_url = os.getenv("FRONTEND_URL", "").strip()
    if frontend_url:
        return [frontend_url.rstrip("/")]

    return []


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle — warm the DB engine, run the cache listener."""
    engine = get_engine()
    cache = get_cache()
    cache.start_listener(engine)
    logger.info("SquadPlanner API started — engine ready (%s)", engine.url.database)
    yield
    cache.stop_listener()
    logger.info("SquadPlanner API shutting down")


app = FastAPI(
    title="SquadPlanner API",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(SquadPlannerError)
async def squadplanner_error_handler(request: Request, exc: SquadPlannerError):
    code = status.HTTP_500_INTERNAL_SERVER_ERROR
    for error_type, error_code in _ERROR_STATUS:
        if isinstance(exc, error_type):
            code = error_code
            break
    if code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=code, content={"detail": str(exc)})


# Mount routers
app.include_router(sessions_router, prefix="/api")
app.include_router(recurring_router, prefix="/api")


@app.get("/api/health")
def health():
    return {"status": "ok"}
