"""
Withdrawal Request Model - courier payout requests reviewed by admins
"""
import enum
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, Enum as SQLEnum, Numeric, ForeignKey, Text, Index
from sqlalchemy.orm import relationship

from app.db.database import Base


class WithdrawalStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    PAID = "PAID"


class WithdrawalMethod(str, enum.Enum):
    BANK_TRANSFER = "BANK_TRANSFER"
    MOBILE_MONEY = "MOBILE_MONEY"


WITHDRAWAL_TRANSITIONS: dict[WithdrawalStatus, frozenset[WithdrawalStatus]] = {
    WithdrawalStatus.PENDING: frozenset({
        WithdrawalStatus.APPROVED,
        WithdrawalStatus.REJECTED,
        WithdrawalStatus.PAID,
    }),
    WithdrawalStatus.APPROVED: frozenset({
        WithdrawalStatus.PAID,
        WithdrawalStatus.REJECTED,
    }),
    WithdrawalStatus.REJECTED: frozenset(),
    WithdrawalStatus.PAID: frozenset(),
}


def is_valid_withdrawal_transition(current: WithdrawalStatus, target: WithdrawalStatus) -> bool:
    return target in WITHDRAWAL_TRANSITIONS[current]


class WithdrawalRequest(Base):
    __tablename__ = "withdrawal_requests"
    __table_args__ = (
        Index("ix_withdrawal_requests_courier_status", "courier_id", "status"),
    )

    id = Column(Integer, primary_key=True, index=True)
    courier_id = Column(Integer, ForeignKey("couriers.id"), nullable=False)
    amount = Column(Numeric(10, 2), nullable=False)
    method = Column(SQLEnum(WithdrawalMethod), nullable=False)
    account_ref = Column(String(64), nullable=False)
    status = Column(SQLEnum(WithdrawalStatus), default=WithdrawalStatus.PENDING, nullable=False, index=True)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    reviewed_at = Column(DateTime, nullable=True)
    reviewed_by_user_id = Column(Integer, ForeignKey("users.id"), nullable=True)

    courier = relationship("Courier")
