"""Audit log viewer endpoints."""

from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from leadengine.database import get_db
from leadengine.middleware.auth import verify_admin_token
from leadengine.models.audit import AuditLog
from leadengine.schemas.common import AuditLogResponse

router = APIRouter(prefix="/audit", tags=["audit"])


@router.get("", response_model=list[AuditLogResponse])
async def list_audit_logs(
    lead_id: UUID | None = None,
    action: str | None = None,
    actor: str | None = None,
    page: int = Query(1, ge=1),
    per_page: int = Query(50, ge=1, le=200),
    admin: str = Depends(verify_admin_token),
    db: AsyncSession = Depends(get_db),
):
    """List audit logs with filters."""
    query = select(AuditLog).order_by(AuditLog.timestamp.desc())

    if lead_id:
        query = query.where(AuditLog.lead_id == lead_id)
    if action:
        query = query.where(AuditLog.action == action)
    if actor:
        query = query.where(AuditLog.actor == actor)

    query = query.offset((page - 1) * per_page).limit(per_page)

    result = await db.execute(query)
    logs = result.scalars().all()
    return [AuditLogResponse.model_validate(log) for log in logs]
