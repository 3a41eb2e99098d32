"""
Audit Log API Routes - who changed rules and payouts, and when
"""
from datetime import datetime
from typing import Any, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies.auth import get_current_admin
from app.db.database import get_db
from app.db.models.audit_log import AuditActionType
from app.db.models.user import User
from app.domain.services.audit_service import AuditService

router = APIRouter()


class AuditEntryResponse(BaseModel):
    id: int
    action: str
    actor_user_id: int | None
    entity_type: str
    entity_id: str | None
    details: Optional[dict[str, Any]] = None
    created_at: datetime


@router.get(
    "/admin/audit",
    response_model=List[AuditEntryResponse],
    summary="Audit log",
    description="Newest first. Filter by action, or by entity type and id (e.g. withdrawal_request / 12).",
)
async def list_audit_entries(
    action: Optional[AuditActionType] = Query(None),
    entity_type: Optional[str] = Query(None, max_length=50),
    entity_id: Optional[str] = Query(None, max_length=50),
    limit: int = Query(50, ge=1, le=500),
    _: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
) -> List[AuditEntryResponse]:
    entries = await AuditService(db).list_entries(
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        limit=limit,
    )
    return [
        AuditEntryResponse(
            id=entry.id,
            action=entry.action.value,
            actor_user_id=entry.actor_user_id,
            entity_type=entry.entity_type,
            entity_id=entry.entity_id,
            details=entry.details,
            created_at=entry.created_at,
        )
        for entry in entries
    ]
