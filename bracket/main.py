"""FastAPI application entry point.

Tournament Bracket Progression API
"""

import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text
from starlette.middleware.base import BaseHTTPMiddleware

from bracket.config import get_settings
from bracket.logging_config import configure_logging, get_logger
from bracket.middleware.sentry import init_sentry
from bracket.tournament.api import admin_router, router, status_for_error
from bracket.utils.db import close_db, get_engine, init_db
from bracket.utils.errors import BracketError
from bracket.utils.redis_client import close_redis, init_redis

settings = get_settings()

configure_logging(
    log_level=settings.log_level,
    json_logs=settings.app_env == "production",
    app_env=settings.app_env,
)
logger = get_logger(__name__)

sentry_enabled = init_sentry(
    traces_sample_rate=settings.sentry_traces_sample_rate
    if settings.app_env == "production"
    else 0.0,
)
if sentry_enabled:
    logger.info("sentry_initialized")
elif settings.app_env == "production":
    logger.warning("sentry_dsn_missing")


# =============================================================================
# Lifespan Events
# =============================================================================


@asynccontextmanager
async def lifespan(_app: FastAPI):
    """Application lifespan handler for startup and shutdown events."""
    logger.info("application_starting")

    await init_db()
    logger.info("database_connected")

    await init_redis()
    logger.info("redis_connected")

    yield

    logger.info("application_stopping")
    try:
        await close_db()
        await close_redis()
    except Exception as e:
        logger.error("shutdown_error", error=str(e))


# =============================================================================
# FastAPI Application
# =============================================================================


app = FastAPI(
    title="Tournament Bracket API",
    version="0.1.0",
    description="Single-elimination bracket progression",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Add X-Request-ID to every response and log request completion."""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        started = datetime.now(timezone.utc)

        response = await call_next(request)

        response.headers["X-Request-ID"] = request_id
        logger.info(
            "request_completed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_s=round((datetime.now(timezone.utc) - started).total_seconds(), 3),
            request_id=request_id,
        )
        return response


app.add_middleware(RequestIDMiddleware)


# =============================================================================
# Error Handlers
# =============================================================================


def get_request_id(request: Request) -> str:
    if hasattr(request.state, "request_id"):
        return request.state.request_id
    return request.headers.get("X-Request-ID", str(uuid.uuid4()))


def create_error_response(
    code: str,
    message: str,
    details: dict[str, Any] | None = None,
    trace_id: str | None = None,
) -> dict[str, Any]:
    """Create standardized error response."""
    return {
        "error": {
            "code": code,
            "message": message,
            "details": details or {},
        },
        "traceId": trace_id,
    }


@app.exception_handler(BracketError)
async def bracket_error_handler(request: Request, exc: BracketError) -> JSONResponse:
    """Handle bracket domain errors."""
    trace_id = get_request_id(request)
    logger.warning("bracket_error", code=exc.code, message=exc.message, trace_id=trace_id)

    return JSONResponse(
        status_code=status_for_error(exc),
        content=create_error_response(
            code=exc.code,
            message=exc.message,
            details=exc.details,
            trace_id=trace_id,
        ),
    )


# =============================================================================
# Routes
# =============================================================================


app.include_router(router)
app.include_router(admin_router)


@app.get("/health")
async def health_check():
    """Liveness plus a database round trip."""
    db_ok = True
    try:
        async with get_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        db_ok = False
        logger.warning("health_check_db_failed", error=str(e))

    return {"status": "ok" if db_ok else "degraded", "database": db_ok}
