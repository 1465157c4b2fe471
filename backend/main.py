"""
LifeOS FastAPI application.

Entry point for the API server.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from backend import db
from backend.config import settings
from backend.routes import kernel as kernel_routes
from lifeos.kernel.assembly import LifeKernel
from lifeos.kernel.errors import ValidationError
from lifeos.kernel.event_log import MemoryEventLog
from lifeos.kernel.postgres_storage import PostgresEventLog

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for FastAPI application.

    Handles startup and shutdown logic:
    - Initialize database pool when DATABASE_URL is set
    - Build the process-wide kernel on Postgres or the in-memory log
    - Close database pool on shutdown
    """
    # Startup
    if settings.USE_POSTGRES:
        pool = await db.init_pool()
        storage = PostgresEventLog(pool)
        logger.info("Database pool initialized")
    else:
        storage = MemoryEventLog()
        logger.warning("DATABASE_URL not set, events are kept in memory only")

    app.state.kernel = LifeKernel(storage, suggestion_cap=settings.DAILY_SUGGESTION_CAP)

    yield

    # Shutdown
    await db.close_pool()
    logger.info("Shutdown complete")


app = FastAPI(
    title="LifeOS",
    docs_url=None,
    redoc_url=None,
    lifespan=lifespan,
)

# Register routes
app.include_router(kernel_routes.router)


@app.exception_handler(RequestValidationError)
async def flatten_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed request bodies use the same flat {detail, code} shape as rejected commands."""
    problems = []
    for err in exc.errors():
        where = ".".join(str(part) for part in err.get("loc", ()) if part != "body")
        problems.append(f"{where}: {err.get('msg')}" if where else str(err.get("msg")))
    return JSONResponse(
        status_code=422,
        content={"detail": "; ".join(problems) or "Invalid request.", "code": ValidationError.code},
    )


@app.get("/health")
async def health():
    """Health check endpoint for uptime monitoring."""
    return {"status": "ok"}
