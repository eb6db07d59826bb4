"""Common response and request schemas."""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class LeadResponse(BaseModel):
    id: uuid.UUID
    received_at: datetime
    source: str
    source_detail: Optional[str]
    first_name: Optional[str]
    last_name: Optional[str]
    email: str
    phone: Optional[str]
    title: Optional[str]
    company: str
    industry: Optional[str]
    employee_count: Optional[int]
    website: Optional[str]
    message: Optional[str]
    product_interest: Optional[str]
    region: Optional[str]
    submission_count: int
    score: Optional[int]
    score_factors: Optional[list[str]]
    ai_summary: Optional[str]
    ai_qualified: bool
    score_provisional: bool
    scored_at: Optional[datetime]
    auto_response_sent: bool
    auto_response_at: Optional[datetime]
    auto_response_channel: Optional[str]
    response_time_ms: Optional[int]
    needs_follow_up: bool
    status: str
    assigned_sdr_id: Optional[str]
    assigned_ae_id: Optional[str]
    qualification_notes: Optional[str]
    converted_account_id: Optional[uuid.UUID]
    converted_deal_id: Optional[uuid.UUID]
    qualified_at: Optional[datetime]
    disqualified_at: Optional[datetime]
    converted_at: Optional[datetime]
    updated_at: datetime

    model_config = {"from_attributes": True, "use_enum_values": True}


class AutoResponseOut(BaseModel):
    id: uuid.UUID
    attempt: int
    subject: str
    body: str
    channel: str
    personalization: Optional[dict]
    delivery_status: str
    error: Optional[str]
    attempted_at: datetime
    sent_at: Optional[datetime]
    latency_ms: Optional[int]
    sla_met: Optional[bool]
    fallback_used: bool
    confidence: Optional[float]
    model: Optional[str]
    opened: bool
    replied: bool

    model_config = {"from_attributes": True}


class ScoreEventOut(BaseModel):
    previous_score: Optional[int]
    new_score: int
    factors: Optional[list[str]]
    provisional: bool
    reason: str
    created_at: datetime

    model_config = {"from_attributes": True}


class LeadDetailResponse(LeadResponse):
    company_intel: Optional[dict]
    auto_response_content: Optional[str]
    dispatch_attempts: int
    auto_responses: list[AutoResponseOut] = []
    score_history: list[ScoreEventOut] = []
    allowed_actions: list[str] = []


class PaginatedLeads(BaseModel):
    items: list[LeadResponse]
    total: int
    page: int
    per_page: int


class ClaimRequest(BaseModel):
    sdr_id: str = Field(..., min_length=1, max_length=100)


class QualifyRequest(BaseModel):
    qualified: bool
    notes: str = Field(..., max_length=5000)
    assigned_ae_id: Optional[str] = Field(None, max_length=100)


class TransitionResponse(BaseModel):
    id: uuid.UUID
    from_status: str
    status: str
    assigned_sdr_id: Optional[str] = None
    assigned_ae_id: Optional[str] = None
    qualified_at: Optional[datetime] = None
    disqualified_at: Optional[datetime] = None


class ConversionResponse(BaseModel):
    lead_id: uuid.UUID
    status: str = "converted"
    already_converted: bool = False
    account_id: uuid.UUID
    account_name: str
    deal_id: uuid.UUID
    deal_name: str
    deal_stage: str
    converted_at: datetime
    created_account: bool = False
    deal_value: Optional[float] = None


class ScoreResponse(BaseModel):
    id: uuid.UUID
    score: int
    factors: list[str]
    summary: str
    qualified: bool
    provisional: bool


class DispatchResponse(BaseModel):
    id: uuid.UUID
    sent: bool
    attempt: int
    channel: Optional[str]
    latency_ms: Optional[int]
    sla_met: Optional[bool]
    fallback_used: bool
    auto_response_id: Optional[uuid.UUID]
    subject: Optional[str]
    error: Optional[str] = None
    retry_in: Optional[int] = None
    already_sent: bool = False


class MetricsResponse(BaseModel):
    total_leads: int
    today_lead_count: int
    week_lead_count: int
    window_lead_count: int
    avg_response_time_ms: int
    auto_response_rate: float
    qualification_rate: float
    conversion_rate: float
    sla_compliance_rate: float
    sla_missed_count: int
    average_score: Optional[float]
    leads_by_status: dict[str, int]
    leads_by_source: dict[str, int]
    leads_by_region: dict[str, int]
    speed_to_lead_distribution: dict[str, int]


class AuditLogResponse(BaseModel):
    id: uuid.UUID
    lead_id: Optional[uuid.UUID]
    action: str
    step: Optional[str]
    from_status: Optional[str]
    to_status: Optional[str]
    model_used: Optional[str]
    input_summary: Optional[str]
    output_summary: Optional[str]
    reason_code: Optional[str]
    extra_data: Optional[dict]
    actor: str
    timestamp: datetime

    model_config = {"from_attributes": True}


class HealthResponse(BaseModel):
    status: str
    version: str = "1.0.0"
    db: str
    redis: str
    content_model: str
