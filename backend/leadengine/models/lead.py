"""Inbound lead model."""

import enum
import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Enum, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from leadengine.database import Base, JSONType


class LeadStatus(str, enum.Enum):
    NEW = "new"
    AUTO_RESPONDED = "auto_responded"
    SDR_REVIEW = "sdr_review"
    QUALIFIED = "qualified"
    DISQUALIFIED = "disqualified"
    CONVERTED = "converted"


class LeadSource(str, enum.Enum):
    WEBSITE_FORM = "website_form"
    CHAT = "chat"
    EMAIL = "email"
    PHONE = "phone"
    EVENT = "event"
    REFERRAL = "referral"
    PARTNER = "partner"
    SOCIAL = "social"


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class Lead(Base):
    __tablename__ = "leads"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    received_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)

    # Source
    source: Mapped[LeadSource] = mapped_column(
        Enum(LeadSource, name="lead_source", values_callable=_enum_values), nullable=False, index=True,
    )
    source_detail: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Contact
    first_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    last_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    company: Mapped[str] = mapped_column(String(255), nullable=False)
    company_key: Mapped[str] = mapped_column(String(255), nullable=False, index=True)  # dedupe key with email
    industry: Mapped[str | None] = mapped_column(String(100), nullable=True)
    employee_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    website: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Inquiry
    message: Mapped[str | None] = mapped_column(Text, nullable=True)
    product_interest: Mapped[str | None] = mapped_column(String(255), nullable=True)
    region: Mapped[str | None] = mapped_column(String(50), nullable=True, index=True)
    submission_count: Mapped[int] = mapped_column(Integer, default=1)

    # Scoring (written by the scoring engine only)
    score: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    score_factors: Mapped[list | None] = mapped_column(JSONType, nullable=True)
    ai_summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    ai_qualified: Mapped[bool] = mapped_column(Boolean, default=False)
    score_provisional: Mapped[bool] = mapped_column(Boolean, default=False)
    scored_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    company_intel: Mapped[dict | None] = mapped_column(JSONType, nullable=True)

    # Response tracking (first sent response)
    auto_response_sent: Mapped[bool] = mapped_column(Boolean, default=False)
    auto_response_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    auto_response_content: Mapped[str | None] = mapped_column(Text, nullable=True)
    auto_response_channel: Mapped[str | None] = mapped_column(String(20), nullable=True)
    response_time_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    dispatch_attempts: Mapped[int] = mapped_column(Integer, default=0)
    needs_follow_up: Mapped[bool] = mapped_column(Boolean, default=False)

    # Status
    status: Mapped[LeadStatus] = mapped_column(
        Enum(LeadStatus, name="lead_status", values_callable=_enum_values),
        default=LeadStatus.NEW, nullable=False, index=True,
    )

    # Assignment
    assigned_sdr_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    assigned_ae_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    qualification_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Conversion links (set once)
    converted_account_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    converted_deal_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)

    # Lifecycle timestamps (set once each)
    qualified_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    disqualified_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    converted_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    auto_responses = relationship(
        "AutoResponse",
        back_populates="lead",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="AutoResponse.attempt",
    )
    score_events = relationship(
        "ScoreEvent",
        back_populates="lead",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="ScoreEvent.created_at",
    )

    __mapper_args__ = {"version_id_col": version}

    @property
    def full_name(self) -> str:
        return " ".join(p for p in (self.first_name, self.last_name) if p)

    @property
    def is_terminal(self) -> bool:
        return self.status in (LeadStatus.DISQUALIFIED, LeadStatus.CONVERTED)
