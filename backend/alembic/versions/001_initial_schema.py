"""Initial schema: leads, auto-responses, score history, accounts, deals, audit log.

Revision ID: 001
Revises: None
Create Date: 2025-01-01
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID, JSONB

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

LEAD_STATUS = ("new", "auto_responded", "sdr_review", "qualified", "disqualified", "converted")
LEAD_SOURCE = ("website_form", "chat", "email", "phone", "event", "referral", "partner", "social")


def upgrade() -> None:
    # Leads
    op.create_table(
        "leads",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("received_at", sa.DateTime, server_default=sa.func.now(), nullable=False),
        sa.Column("source", sa.Enum(*LEAD_SOURCE, name="lead_source"), nullable=False),
        sa.Column("source_detail", sa.String(255), nullable=True),
        sa.Column("first_name", sa.String(100), nullable=True),
        sa.Column("last_name", sa.String(100), nullable=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("phone", sa.String(50), nullable=True),
        sa.Column("title", sa.String(255), nullable=True),
        sa.Column("company", sa.String(255), nullable=False),
        sa.Column("company_key", sa.String(255), nullable=False),
        sa.Column("industry", sa.String(100), nullable=True),
        sa.Column("employee_count", sa.Integer, nullable=True),
        sa.Column("website", sa.String(255), nullable=True),
        sa.Column("message", sa.Text, nullable=True),
        sa.Column("product_interest", sa.String(255), nullable=True),
        sa.Column("region", sa.String(50), nullable=True),
        sa.Column("submission_count", sa.Integer, server_default="1"),
        sa.Column("score", sa.Integer, nullable=True),
        sa.Column("score_factors", JSONB, nullable=True),
        sa.Column("ai_summary", sa.Text, nullable=True),
        sa.Column("ai_qualified", sa.Boolean, server_default="false"),
        sa.Column("score_provisional", sa.Boolean, server_default="false"),
        sa.Column("scored_at", sa.DateTime, nullable=True),
        sa.Column("company_intel", JSONB, nullable=True),
        sa.Column("auto_response_sent", sa.Boolean, server_default="false"),
        sa.Column("auto_response_at", sa.DateTime, nullable=True),
        sa.Column("auto_response_content", sa.Text, nullable=True),
        sa.Column("auto_response_channel", sa.String(20), nullable=True),
        sa.Column("response_time_ms", sa.Integer, nullable=True),
        sa.Column("dispatch_attempts", sa.Integer, server_default="0"),
        sa.Column("needs_follow_up", sa.Boolean, server_default="false"),
        sa.Column("status", sa.Enum(*LEAD_STATUS, name="lead_status"), server_default="new", nullable=False),
        sa.Column("assigned_sdr_id", sa.String(100), nullable=True),
        sa.Column("assigned_ae_id", sa.String(100), nullable=True),
        sa.Column("qualification_notes", sa.Text, nullable=True),
        sa.Column("converted_account_id", UUID(as_uuid=True), nullable=True),
        sa.Column("converted_deal_id", UUID(as_uuid=True), nullable=True),
        sa.Column("qualified_at", sa.DateTime, nullable=True),
        sa.Column("disqualified_at", sa.DateTime, nullable=True),
        sa.Column("converted_at", sa.DateTime, nullable=True),
        sa.Column("version", sa.Integer, server_default="1", nullable=False),
        sa.Column("updated_at", sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index("ix_leads_received_at", "leads", ["received_at"])
    op.create_index("ix_leads_source", "leads", ["source"])
    op.create_index("ix_leads_email", "leads", ["email"])
    op.create_index("ix_leads_company_key", "leads", ["company_key"])
    op.create_index("ix_leads_region", "leads", ["region"])
    op.create_index("ix_leads_score", "leads", ["score"])
    op.create_index("ix_leads_status", "leads", ["status"])

    # Auto-response attempts
    op.create_table(
        "auto_responses",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("lead_id", UUID(as_uuid=True), sa.ForeignKey("leads.id", ondelete="CASCADE"), nullable=False),
        sa.Column("attempt", sa.Integer, nullable=False),
        sa.Column("idempotency_key", sa.String(100), unique=True, nullable=False),
        sa.Column("subject", sa.String(500), nullable=False),
        sa.Column("body", sa.Text, nullable=False),
        sa.Column("channel", sa.String(20), nullable=False),
        sa.Column("personalization", JSONB, nullable=True),
        sa.Column("delivery_status", sa.String(20), nullable=False),
        sa.Column("error", sa.Text, nullable=True),
        sa.Column("attempted_at", sa.DateTime, server_default=sa.func.now()),
        sa.Column("sent_at", sa.DateTime, nullable=True),
        sa.Column("latency_ms", sa.Integer, nullable=True),
        sa.Column("sla_met", sa.Boolean, nullable=True),
        sa.Column("opened", sa.Boolean, server_default="false"),
        sa.Column("replied", sa.Boolean, server_default="false"),
        sa.Column("fallback_used", sa.Boolean, server_default="false"),
        sa.Column("confidence", sa.Float, nullable=True),
        sa.Column("model", sa.String(100), nullable=True),
    )
    op.create_index("ix_auto_responses_lead_id", "auto_responses", ["lead_id"])

    # Score history
    op.create_table(
        "score_events",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("lead_id", UUID(as_uuid=True), sa.ForeignKey("leads.id", ondelete="CASCADE"), nullable=False),
        sa.Column("previous_score", sa.Integer, nullable=True),
        sa.Column("new_score", sa.Integer, nullable=False),
        sa.Column("factors", JSONB, nullable=True),
        sa.Column("provisional", sa.Boolean, server_default="false"),
        sa.Column("reason", sa.String(30), server_default="intake"),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index("ix_score_events_lead_id", "score_events", ["lead_id"])

    # Accounts
    op.create_table(
        "accounts",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("name_key", sa.String(255), nullable=False),
        sa.Column("domain", sa.String(255), unique=True, nullable=True),
        sa.Column("industry", sa.String(100), nullable=True),
        sa.Column("website", sa.String(255), nullable=True),
        sa.Column("employee_count", sa.Integer, nullable=True),
        sa.Column("region", sa.String(50), nullable=True),
        sa.Column("summary", sa.Text, nullable=True),
        sa.Column("health_score", sa.Integer, server_default="50"),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index("ix_accounts_name_key", "accounts", ["name_key"])

    # Deals
    op.create_table(
        "deals",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(500), nullable=False),
        sa.Column("account_id", UUID(as_uuid=True), sa.ForeignKey("accounts.id"), nullable=False),
        sa.Column("source_lead_id", UUID(as_uuid=True), sa.ForeignKey("leads.id"), unique=True, nullable=True),
        sa.Column("stage", sa.String(50), server_default="discovery"),
        sa.Column("value", sa.Float, server_default="0"),
        sa.Column("seat_estimate", sa.Integer, nullable=True),
        sa.Column("probability", sa.Integer, server_default="10"),
        sa.Column("close_date", sa.DateTime, nullable=True),
        sa.Column("owner_id", sa.String(100), nullable=False),
        sa.Column("product_interest", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index("ix_deals_account_id", "deals", ["account_id"])

    # Audit logs
    op.create_table(
        "audit_logs",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("lead_id", UUID(as_uuid=True), nullable=True),
        sa.Column("action", sa.String(100), nullable=False),
        sa.Column("step", sa.String(100), nullable=True),
        sa.Column("from_status", sa.String(30), nullable=True),
        sa.Column("to_status", sa.String(30), nullable=True),
        sa.Column("model_used", sa.String(100), nullable=True),
        sa.Column("input_summary", sa.Text, nullable=True),
        sa.Column("output_summary", sa.Text, nullable=True),
        sa.Column("reason_code", sa.String(100), nullable=True),
        sa.Column("extra_data", JSONB, nullable=True),
        sa.Column("actor", sa.String(100), server_default="system"),
        sa.Column("timestamp", sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index("ix_audit_logs_lead_id", "audit_logs", ["lead_id"])
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"])
    op.create_index("ix_audit_logs_timestamp", "audit_logs", ["timestamp"])


def downgrade() -> None:
    op.drop_table("audit_logs")
    op.drop_table("deals")
    op.drop_table("accounts")
    op.drop_table("score_events")
    op.drop_table("auto_responses")
    op.drop_table("leads")
    sa.Enum(name="lead_status").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="lead_source").drop(op.get_bind(), checkfirst=True)
