"""
Outbox Message Model - notifications written in the same transaction as the
state change they announce, delivered later by the worker.
"""
import enum
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, Enum as SQLEnum, JSON, Index

from app.db.database import Base


# Recipients resolved to a set of users at send time
BROADCAST_ADMINS = "BROADCAST_ADMINS"
BROADCAST_COURIERS = "BROADCAST_COURIERS"


class MessageStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SENT = "sent"
    FAILED = "failed"


class OutboxMessage(Base):
    __tablename__ = "outbox_messages"
    __table_args__ = (
        Index("ix_outbox_messages_status_next_retry", "status", "next_retry_at"),
    )

    id = Column(Integer, primary_key=True, index=True)

    # A user id as string, or one of the BROADCAST_* markers
    recipient = Column(String(50), nullable=False)
    message_type = Column(String(50), nullable=False)
    message_content = Column(JSON, nullable=False)

    status = Column(
        SQLEnum(MessageStatus, values_callable=lambda x: [e.value for e in x]),
        default=MessageStatus.PENDING,
    )
    retry_count = Column(Integer, default=0, nullable=False)
    max_retries = Column(Integer, default=5, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    processed_at = Column(DateTime, nullable=True)
    next_retry_at = Column(DateTime, nullable=True)

    last_error = Column(String(1000), nullable=True)

    @property
    def is_broadcast(self) -> bool:
        return self.recipient in (BROADCAST_ADMINS, BROADCAST_COURIERS)
