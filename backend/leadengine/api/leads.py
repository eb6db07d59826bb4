"""Lead dashboard endpoints - list, detail, metrics and lifecycle actions.

Reads go through the async session. Actions go through the lead engine,
which serializes per lead, so they are plain ``def`` endpoints run in the
threadpool.
"""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from leadengine.api.deps import get_engine
from leadengine.database import get_db
from leadengine.errors import AlreadyConverted, LeadNotFound
from leadengine.middleware.auth import verify_admin_token
from leadengine.models.lead import Lead, LeadSource, LeadStatus
from leadengine.schemas.common import (
    ClaimRequest, ConversionResponse, DispatchResponse, LeadDetailResponse, LeadResponse, MetricsResponse,
    PaginatedLeads, QualifyRequest, ScoreEventOut, ScoreResponse, TransitionResponse,
)
from leadengine.services.engine import LeadEngine, TransitionOutcome
from leadengine.services.lifecycle import allowed_actions
from leadengine.services.metrics import compute_lead_metrics

router = APIRouter(prefix="/leads", tags=["leads"])

METRIC_COLUMNS = (
    Lead.status, Lead.source, Lead.region, Lead.score, Lead.received_at,
    Lead.response_time_ms, Lead.auto_response_sent,
)


@router.get("", response_model=PaginatedLeads)
async def list_leads(
    status: LeadStatus | None = None,
    source: LeadSource | None = None,
    region: str | None = None,
    search: str | None = Query(None, max_length=200),
    min_score: int | None = Query(None, ge=0, le=100),
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    admin: str = Depends(verify_admin_token),
    db: AsyncSession = Depends(get_db),
):
    """List leads, newest first."""
    query = select(Lead)
    if status:
        query = query.where(Lead.status == status)
    if source:
        query = query.where(Lead.source == source)
    if region:
        query = query.where(Lead.region == region)
    if min_score is not None:
        query = query.where(Lead.score >= min_score)
    if search:
        pattern = f"%{search.strip()}%"
        query = query.where(or_(
            Lead.first_name.ilike(pattern),
            Lead.last_name.ilike(pattern),
            Lead.email.ilike(pattern),
            Lead.company.ilike(pattern),
        ))

    total = (await db.execute(select(func.count()).select_from(query.subquery()))).scalar_one()
    result = await db.execute(
        query.order_by(Lead.received_at.desc()).offset((page - 1) * per_page).limit(per_page)
    )
    items = [LeadResponse.model_validate(lead) for lead in result.scalars().all()]
    return PaginatedLeads(items=items, total=total, page=page, per_page=per_page)


@router.get("/metrics", response_model=MetricsResponse)
async def lead_metrics(
    admin: str = Depends(verify_admin_token),
    db: AsyncSession = Depends(get_db),
):
    """Rolling speed-to-lead, qualification and conversion metrics."""
    rows = (await db.execute(select(*METRIC_COLUMNS))).all()
    return MetricsResponse(**compute_lead_metrics(rows, now=datetime.utcnow()).to_dict())


@router.get("/{lead_id}", response_model=LeadDetailResponse)
async def get_lead(
    lead_id: UUID,
    admin: str = Depends(verify_admin_token),
    db: AsyncSession = Depends(get_db),
):
    """Lead detail with every auto-response attempt and the score history."""
    result = await db.execute(
        select(Lead)
        .where(Lead.id == lead_id)
        .options(selectinload(Lead.auto_responses), selectinload(Lead.score_events))
    )
    lead = result.scalar_one_or_none()
    if not lead:
        raise LeadNotFound(lead_id)
    detail = LeadDetailResponse.model_validate(lead)
    detail.score_history = [ScoreEventOut.model_validate(e) for e in lead.score_events]
    detail.allowed_actions = allowed_actions(lead.status)
    return detail


@router.post("/{lead_id}/rescore", response_model=ScoreResponse)
def rescore_lead(
    lead_id: UUID,
    admin: str = Depends(verify_admin_token),
    engine: LeadEngine = Depends(get_engine),
):
    result = engine.rescore(lead_id, actor=admin)
    return ScoreResponse(
        id=lead_id,
        score=result.score,
        factors=result.factors,
        summary=result.summary,
        qualified=result.qualified,
        provisional=result.provisional,
    )


def _transition_response(outcome: TransitionOutcome) -> TransitionResponse:
    lead = outcome.lead
    return TransitionResponse(
        id=lead.id,
        from_status=outcome.from_status.value,
        status=outcome.to_status.value,
        assigned_sdr_id=lead.assigned_sdr_id,
        assigned_ae_id=lead.assigned_ae_id,
        qualified_at=lead.qualified_at,
        disqualified_at=lead.disqualified_at,
    )


@router.post("/{lead_id}/claim", response_model=TransitionResponse)
def claim_lead(
    lead_id: UUID,
    body: ClaimRequest,
    admin: str = Depends(verify_admin_token),
    engine: LeadEngine = Depends(get_engine),
):
    """SDR takes the lead into review."""
    return _transition_response(engine.claim(lead_id, body.sdr_id, actor=admin))


@router.post("/{lead_id}/qualify", response_model=TransitionResponse)
def qualify_lead(
    lead_id: UUID,
    body: QualifyRequest,
    admin: str = Depends(verify_admin_token),
    engine: LeadEngine = Depends(get_engine),
):
    """Qualify or disqualify. Notes are required either way."""
    outcome = engine.qualify(lead_id, body.qualified, body.notes, ae_id=body.assigned_ae_id, actor=admin)
    return _transition_response(outcome)


@router.post("/{lead_id}/convert", response_model=ConversionResponse)
def convert_lead(
    lead_id: UUID,
    admin: str = Depends(verify_admin_token),
    engine: LeadEngine = Depends(get_engine),
):
    """Create Account + Deal from a qualified lead. Repeating the call returns the same links."""
    try:
        result = engine.convert(lead_id, actor=admin)
    except AlreadyConverted as e:
        return ConversionResponse(**e.result.to_dict(), already_converted=True)
    return ConversionResponse(**result.to_dict())


@router.post("/{lead_id}/respond", response_model=DispatchResponse)
def respond_to_lead(
    lead_id: UUID,
    admin: str = Depends(verify_admin_token),
    engine: LeadEngine = Depends(get_engine),
):
    """Manually retry the auto-response. A lead that already got one is not contacted again."""
    result = engine.dispatch(lead_id, reason="manual", actor=admin)
    return DispatchResponse(
        id=lead_id,
        sent=result.sent,
        attempt=result.attempt,
        channel=result.channel,
        latency_ms=result.latency_ms,
        sla_met=result.sla_met,
        fallback_used=result.fallback_used,
        auto_response_id=result.auto_response_id,
        subject=result.content.subject if result.content else None,
        error=result.error,
        retry_in=result.retry_in,
        already_sent=result.reused,
    )
