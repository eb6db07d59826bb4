"""Webhook intake endpoint for inbound leads on every channel."""

from fastapi import APIRouter, Body, Depends

from leadengine.api.deps import get_engine
from leadengine.api.health import ERRORS
from leadengine.errors import DuplicateError
from leadengine.middleware.auth import verify_webhook_token
from leadengine.schemas.webhook import EngagementEvent, EngagementResponse, WebhookResponse
from leadengine.services.engine import LeadEngine

import structlog

logger = structlog.get_logger()
router = APIRouter(prefix="/webhooks", tags=["webhooks"], dependencies=[Depends(verify_webhook_token)])


def _enqueue_pipeline(engine: LeadEngine, lead_id) -> None:
    if engine.scheduler is None:
        return
    try:
        engine.scheduler.enqueue_pipeline(lead_id)
    except Exception as e:
        logger.error("failed_to_enqueue_lead_pipeline", lead_id=str(lead_id), error=str(e))
        ERRORS.labels(type="queue").inc()


@router.post("/leads/{channel}", response_model=WebhookResponse)
def ingest_lead(
    channel: str,
    payload: dict = Body(...),
    engine: LeadEngine = Depends(get_engine),
):
    """Ingest a lead from any channel and queue it for scoring + auto-response."""
    try:
        lead = engine.intake(channel, payload, actor="webhook")
    except DuplicateError as e:
        logger.info("lead_duplicate_merged", channel=channel, lead_id=str(e.lead_id))
        return WebhookResponse(
            ok=True,
            id=str(e.lead_id),
            status=e.status or "new",
            duplicate=True,
            message="Submission merged into existing lead",
        )

    _enqueue_pipeline(engine, lead.id)
    logger.info("lead_ingested", channel=channel, lead_id=str(lead.id), source=lead.source.value)
    return WebhookResponse(
        ok=True,
        id=str(lead.id),
        status=lead.status.value,
        message="Lead queued for scoring and auto-response",
    )


@router.post("/responses/{response_id}/engagement", response_model=EngagementResponse)
def record_engagement(
    response_id: str,
    event: EngagementEvent,
    engine: LeadEngine = Depends(get_engine),
):
    """Open/reply tracking callback for a sent auto-response."""
    row = engine.record_engagement(response_id, opened=event.opened, replied=event.replied, actor="tracking")
    return EngagementResponse(
        ok=True,
        lead_id=str(row.lead_id),
        auto_response_id=str(row.id),
        opened=row.opened,
        replied=row.replied,
    )
