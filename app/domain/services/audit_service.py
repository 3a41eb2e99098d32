"""
Audit Service - append entries to the audit log within the caller's transaction
"""
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models.audit_log import AuditActionType, AuditLog


class AuditService:
    def __init__(self, db: AsyncSession):
        self.db = db

    def record(
        self,
        action: AuditActionType,
        entity_type: str,
        entity_id: Any,
        actor_user_id: int | None,
        details: dict[str, Any] | None = None,
    ) -> AuditLog:
        """Stage an audit entry; it is persisted by the caller's commit"""
        entry = AuditLog(
            actor_user_id=actor_user_id,
            action=action,
            entity_type=entity_type,
            entity_id=str(entity_id) if entity_id is not None else None,
            details=details,
        )
        self.db.add(entry)
        return entry

    async def list_entries(
        self,
        entity_type: str | None = None,
        entity_id: Any = None,
        action: AuditActionType | None = None,
        limit: int = 50,
    ) -> list[AuditLog]:
        query = select(AuditLog)
        if entity_type is not None:
            query = query.where(AuditLog.entity_type == entity_type)
        if entity_id is not None:
            query = query.where(AuditLog.entity_id == str(entity_id))
        if action is not None:
            query = query.where(AuditLog.action == action)
        result = await self.db.execute(
            query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).limit(limit)
        )
        return list(result.scalars().all())
