"""Health check and metrics endpoints."""

import redis as redis_lib
from fastapi import APIRouter, Response
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from sqlalchemy import text

from leadengine.config import settings
from leadengine.database import async_session
from leadengine.schemas.common import HealthResponse

router = APIRouter(tags=["health"])

# Prometheus metrics
LEADS_INGESTED = Counter("leads_ingested_total", "Leads accepted at intake", ["source"])
LEADS_DUPLICATE = Counter("leads_duplicate_total", "Submissions merged into an existing lead", ["source"])
LEADS_RATE_LIMITED = Counter("leads_rate_limited_total", "Submissions rejected by the intake rate limit", ["source"])
AUTO_RESPONSES = Counter("auto_responses_total", "Auto-response attempts", ["channel", "outcome"])
CONTENT_FALLBACKS = Counter("content_fallbacks_total", "Responses rendered from the template fallback")
SLA_MISSES = Counter("sla_misses_total", "First responses sent after the speed-to-lead SLA")
SPEED_TO_LEAD = Histogram(
    "speed_to_lead_seconds", "Time from lead receipt to first sent response",
    buckets=(1, 5, 10, 15, 30, 60, 120, 300),
)
SCORING_DURATION = Histogram("scoring_duration_seconds", "Scoring run duration", ["outcome"])
TRANSITIONS = Counter("lead_transitions_total", "Lifecycle transitions", ["from_status", "to_status"])
CONVERSIONS = Counter("lead_conversions_total", "Leads converted to account + deal", ["outcome"])
ERRORS = Counter("errors_total", "Total errors", ["type"])


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    db_status = "ok"
    redis_status = "ok"

    # Check DB
    try:
        async with async_session() as session:
            await session.execute(text("SELECT 1"))
    except Exception:
        db_status = "error"

    # Check Redis
    try:
        r = redis_lib.from_url(settings.redis_url, socket_timeout=2)
        r.ping()
    except Exception:
        redis_status = "error"

    overall = "healthy" if db_status == "ok" and redis_status == "ok" else "degraded"

    return HealthResponse(
        status=overall,
        db=db_status,
        redis=redis_status,
        content_model=settings.content_model if settings.anthropic_api_key else "template",
    )


@router.get("/metrics")
async def metrics():
    """Prometheus metrics endpoint."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
