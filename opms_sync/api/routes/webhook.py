"""FastAPI routes for the NetSuite pricing webhook.

NetSuite posts item.pricing.updated events here. Each delivery is
authenticated with the shared bearer secret, processed synchronously
through the pricing engine, and answered with the outcome.

Status codes:
    200: Processed (result updated, skipped or error).
    400: Unsupported eventType or missing itemData.itemid.
    401: Missing or invalid bearer secret.
    429: Too many failed authentications from this client.
    500: Unhandled failure; NetSuite may redeliver.
"""

import logging
from typing import Any

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from opms_sync.api.middleware.auth import (
    auth_failures,
    get_client_ip,
    too_many_failures_response,
)
from opms_sync.db.connection import get_db
from opms_sync.db.models import utc_now_iso
from opms_sync.errors import ValidationError
from opms_sync.services.webhook_ingester import (
    WebhookIngester,
    get_webhook_secret,
    get_webhook_stats,
    reset_webhook_stats,
    verify_webhook_secret,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sync/webhook", tags=["webhook"])


@router.post("")
async def receive_pricing_webhook(
    request: Request,
    db: Session = Depends(get_db),
) -> JSONResponse:
    """Process one NetSuite pricing webhook delivery.

    Args:
        request: The incoming request.
        db: Database session dependency.

    Returns:
        JSONResponse with the processing outcome.
    """
    client_ip = get_client_ip(request)
    if auth_failures.is_blocked(client_ip):
        return too_many_failures_response(client_ip, error_key="error")

    if not verify_webhook_secret(request.headers.get("Authorization")):
        auth_failures.record(client_ip)
        logger.warning(
            "Unauthorized webhook attempt from %s (user-agent=%s)",
            client_ip, request.headers.get("User-Agent"),
        )
        return JSONResponse(status_code=401, content={"error": "Unauthorized webhook"})

    try:
        payload: Any = await request.json()
    except ValueError:
        return JSONResponse(status_code=400, content={"error": "Body must be valid JSON"})

    try:
        result = await run_in_threadpool(WebhookIngester(db).ingest, payload)
    except ValidationError as e:
        logger.warning("Rejected webhook payload: %s", e)
        return JSONResponse(status_code=400, content={"error": str(e)})
    except Exception:
        logger.exception("Webhook processing error")
        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal server error",
                "message": "Failed to process webhook",
            },
        )

    return JSONResponse(status_code=200, content=result.to_response())


@router.get("/health")
def webhook_health() -> dict:
    """Webhook receiver status with delivery counters."""
    return {
        "status": "OK",
        "message": "NetSuite to OPMS sync service is running",
        "timestamp": utc_now_iso(),
        "secret_configured": get_webhook_secret() is not None,
        "stats": get_webhook_stats(),
    }


@router.get("/stats")
def webhook_stats() -> dict:
    """Delivery counters since process start or the last reset."""
    return get_webhook_stats()


@router.post("/reset-stats")
def webhook_reset_stats() -> dict:
    """Zero the delivery counters."""
    reset_webhook_stats()
    logger.info("Webhook stats reset")
    return {"success": True, "stats": get_webhook_stats()}
