"""FastAPI application receiving voice provider webhooks."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import Depends, FastAPI, HTTPException, Request, status

from ..core.config import get_settings
from ..core.db import close_store, get_store
from ..core.tracing import setup_logfire
from ..services.dedup import get_deduplicator
from ..services.job_queue import CALL_PROCESSING_QUEUE
from ..services.webhook_service import WebhookService

logger = logging.getLogger(__name__)

app = FastAPI(title="Voice CRM", version="0.1.0")

GENERIC_SIGNATURE_HEADER = "x-provider-signature"


def get_webhook_service(request: Request) -> WebhookService:
    service = getattr(request.app.state, "webhook_service", None)
    if service is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Service not initialized")
    return service


@app.get("/health")
async def health() -> Dict[str, str]:
    """Liveness check."""
    return {"status": "ok"}


@app.get("/status")
async def pipeline_status(service: WebhookService = Depends(get_webhook_service)) -> Dict[str, Any]:
    """Counters of recently handled events and configuration flags."""
    return service.status()


@app.post("/webhook")
async def webhook(request: Request, service: WebhookService = Depends(get_webhook_service)) -> Dict[str, bool]:
    """Receive webhook callbacks from the voice provider.

    The body is queued for background handling and acknowledged right away;
    processing failures only show up in logs and ``/status``.
    """
    raw_body = await request.body()
    header = service.settings.vapi_signature_header
    signature = request.headers.get(header) or request.headers.get(GENERIC_SIGNATURE_HEADER)
    service.submit(raw_body, signature, datetime.now(timezone.utc))
    return {"received": True}


@app.post("/process-call/{call_id}")
async def process_call(call_id: str, service: WebhookService = Depends(get_webhook_service)) -> Dict[str, Any]:
    """Queue post-call processing for a stored call."""
    logger.info(f"Manual processing requested for call {call_id}")
    service.schedule_processing(call_id)
    return {"status": "queued", "call_id": call_id, "queue": CALL_PROCESSING_QUEUE}


@app.on_event("startup")
async def startup_event() -> None:
    """Validate configuration and build the webhook pipeline."""
    settings = get_settings()
    logging.basicConfig(level=settings.log_level)

    setup_logfire(settings)
    settings.validate_required()

    app.state.webhook_service = WebhookService(
        settings,
        get_store(settings),
        deduplicator=get_deduplicator(settings),
    )
    app.state.webhook_service.start_recovery()
    if not settings.signature_configured:
        logger.warning("⚠️  VAPI_WEBHOOK_SECRET not set, webhook signatures are not verified")
    if not settings.llm_configured:
        logger.warning("⚠️  No LLM credential configured, using heuristic extraction")
    logger.info("✅ Webhook pipeline ready")


@app.on_event("shutdown")
async def shutdown_event() -> None:
    """Clean up resources on shutdown."""
    logger.info("Shutting down...")
    service = getattr(app.state, "webhook_service", None)
    if service is not None:
        await service.close()
    close_store()
    logger.info("✅ Webhook pipeline stopped")
