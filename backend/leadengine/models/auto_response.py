"""Auto-response attempts - one row per physical send attempt."""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from leadengine.database import Base, JSONType

DELIVERY_SENT = "sent"
DELIVERY_FAILED = "failed"


class AutoResponse(Base):
    __tablename__ = "auto_responses"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    lead_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("leads.id", ondelete="CASCADE"), nullable=False, index=True,
    )

    # Idempotency: "{lead_id}:{attempt}"
    attempt: Mapped[int] = mapped_column(Integer, nullable=False)
    idempotency_key: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)

    # Content
    subject: Mapped[str] = mapped_column(String(500), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    channel: Mapped[str] = mapped_column(String(20), nullable=False)  # email, chat
    personalization: Mapped[dict | None] = mapped_column(JSONType, nullable=True)  # snapshot at generation time

    # Delivery
    delivery_status: Mapped[str] = mapped_column(String(20), nullable=False)  # sent, failed
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    attempted_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    sent_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    latency_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    sla_met: Mapped[bool | None] = mapped_column(Boolean, nullable=True)

    # Engagement tracking
    opened: Mapped[bool] = mapped_column(Boolean, default=False)
    replied: Mapped[bool] = mapped_column(Boolean, default=False)

    # Generation metadata
    fallback_used: Mapped[bool] = mapped_column(Boolean, default=False)
    confidence: Mapped[float | None] = mapped_column(Float, nullable=True)
    model: Mapped[str | None] = mapped_column(String(100), nullable=True)

    lead = relationship("Lead", back_populates="auto_responses")

    @property
    def is_sent(self) -> bool:
        return self.delivery_status == DELIVERY_SENT
