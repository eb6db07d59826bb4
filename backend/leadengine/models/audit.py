"""Audit log model - tracks every lifecycle action with full context."""

import uuid
from datetime import datetime

from sqlalchemy import DateTime, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from leadengine.database import Base, JSONType


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    lead_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True, index=True)

    # Action details
    action: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    # e.g.: lead_created, lead_merged, lead_scored, response_sent, response_failed,
    #       status_changed, lead_converted, conversion_failed, error

    step: Mapped[str | None] = mapped_column(String(100), nullable=True)
    from_status: Mapped[str | None] = mapped_column(String(30), nullable=True)
    to_status: Mapped[str | None] = mapped_column(String(30), nullable=True)

    model_used: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # Content (truncated)
    input_summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    output_summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    reason_code: Mapped[str | None] = mapped_column(String(100), nullable=True)
    extra_data: Mapped[dict | None] = mapped_column(JSONType, nullable=True)

    # Actor
    actor: Mapped[str] = mapped_column(String(100), default="system")  # system, webhook, worker, <user id>

    timestamp: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)
