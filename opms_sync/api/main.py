"""FastAPI application for the OPMS sync service.

Hosts the NetSuite pricing webhook receiver and the operator API for
jobs, the work queue, dry-run captures, the catalog change log and the
NetSuite pricing pull.
"""

import logging
import os
import sys
import time as _time
from contextlib import asynccontextmanager
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as _pkg_version

from fastapi import FastAPI, Request

# Configure logging to stdout for uvicorn to capture
logging.basicConfig(
    level=logging.INFO,
    format="%(levelname)s:%(name)s:%(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)
# Ensure our application loggers are captured
logging.getLogger("opms_sync").setLevel(logging.INFO)
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from opms_sync.api.middleware.auth import maybe_require_api_key
from opms_sync.api.routes import changes, dry_run, jobs, pricing_pull, queue, webhook
from opms_sync.db.connection import check_database, init_db
from opms_sync.errors import (
    ConflictError,
    NotFoundError,
    SyncError,
    ValidationError,
)
from opms_sync.services.webhook_ingester import get_webhook_secret

logger = logging.getLogger(__name__)

_startup_time: float = 0.0


def _parse_allowed_origins() -> list[str]:
    """Parse comma-separated CORS allowlist from ALLOWED_ORIGINS env var."""
    raw = os.environ.get("ALLOWED_ORIGINS", "").strip()
    if not raw:
        return []
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables on startup and warn about missing secrets."""
    global _startup_time

    _startup_time = _time.time()
    init_db()
    if get_webhook_secret() is None:
        logger.warning(
            "OPMS_SYNC_WEBHOOK_SECRET is not set; all webhook deliveries "
            "will be rejected with 401."
        )
    yield


app = FastAPI(
    title="OPMS Sync API",
    description="OPMS <-> NetSuite synchronization job engine",
    version="0.1.0",
    lifespan=lifespan,
)

# Optional API auth for /api/* when OPMS_SYNC_API_KEY is configured.
app.middleware("http")(maybe_require_api_key)

# CORS allowlist is env-driven. If unset, CORS is disabled (same-origin only).
allowed_origins = _parse_allowed_origins()
if allowed_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "X-API-Key"],
    )


@app.exception_handler(SyncError)
async def sync_error_handler(request: Request, exc: SyncError) -> JSONResponse:
    """Handle SyncError exceptions with consistent format.

    Args:
        request: The incoming request.
        exc: The SyncError exception.

    Returns:
        JSONResponse with error details.
    """
    return JSONResponse(
        status_code=503 if exc.is_retryable else 400,
        content={
            "error_code": exc.code,
            "message": exc.message,
            "remediation": exc.remediation,
            "details": exc.details if exc.details else None,
        },
    )


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=400, content={"detail": str(exc), "field": exc.field}
    )


@app.exception_handler(ConflictError)
async def conflict_handler(request: Request, exc: ConflictError) -> JSONResponse:
    return JSONResponse(status_code=409, content={"detail": str(exc)})


# Include routers
app.include_router(webhook.router)
app.include_router(jobs.router, prefix="/api/v1")
app.include_router(queue.router, prefix="/api/v1")
app.include_router(dry_run.router, prefix="/api/v1")
app.include_router(changes.router, prefix="/api/v1")
app.include_router(pricing_pull.router, prefix="/api/v1")


@app.get("/health")
def health_check() -> dict:
    """Health check endpoint.

    Returns:
        Dictionary with status, version, uptime and database reachability.
    """
    database_ok = check_database()
    uptime = int(_time.time() - _startup_time) if _startup_time else 0
    try:
        version = _pkg_version("opms-sync")
    except PackageNotFoundError:
        version = "unknown"
    return {
        "status": "healthy" if database_ok else "degraded",
        "version": version,
        "uptime_seconds": uptime,
        "database": "ok" if database_ok else "unavailable",
        "webhook_secret_configured": get_webhook_secret() is not None,
    }
