"""Audit trail helpers."""

from sqlalchemy.orm import Session

from leadengine.models.audit import AuditLog


def create_audit_entry(
    session: Session,
    lead_id,
    action: str,
    step: str,
    actor: str = "system",
    from_status: str | None = None,
    to_status: str | None = None,
    model_used: str | None = None,
    input_summary: str | None = None,
    output_summary: str | None = None,
    reason_code: str | None = None,
    extra_data: dict | None = None,
) -> AuditLog:
    """Add an audit log entry to the session. Caller commits."""
    entry = AuditLog(
        lead_id=lead_id,
        action=action,
        step=step,
        from_status=getattr(from_status, "value", from_status),
        to_status=getattr(to_status, "value", to_status),
        model_used=model_used,
        input_summary=input_summary[:500] if input_summary else None,
        output_summary=output_summary[:500] if output_summary else None,
        reason_code=reason_code,
        extra_data=extra_data,
        actor=actor,
    )
    session.add(entry)
    return entry
