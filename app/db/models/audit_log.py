"""
Audit Log Model - immutable record of configuration and payout actions
"""
import enum
from datetime import datetime
from sqlalchemy import Column, Integer, DateTime, ForeignKey, String, Enum as SQLEnum
from sqlalchemy.types import JSON

from app.db.database import Base


class AuditActionType(str, enum.Enum):
    RULE_UPDATED = "rule_updated"
    WITHDRAWAL_REQUESTED = "withdrawal_requested"
    WITHDRAWAL_REVIEWED = "withdrawal_reviewed"
    ISSUE_REPORTED = "issue_reported"


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    # Null for actions taken by an internal caller without a user
    actor_user_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    action = Column(
        SQLEnum(AuditActionType, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        index=True,
    )
    entity_type = Column(String(50), nullable=False)
    entity_id = Column(String(50), nullable=True)
    # What changed, from what to what
    details = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
