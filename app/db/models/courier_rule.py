"""
Courier Rule Entry - append-only log of earnings/withdrawal parameters

The current value of a key is its most recent entry; older entries stay as
history and are never updated or deleted.
"""
import enum
from datetime import datetime
from sqlalchemy import Column, Integer, DateTime, Enum as SQLEnum, Numeric, ForeignKey, Index

from app.db.database import Base


class CourierRuleKey(str, enum.Enum):
    BASE_FEE = "courierBaseFee"
    VARIABLE_RATE = "courierVariableRate"
    PLATFORM_COMMISSION_RATE = "courierPlatformCommissionRate"
    MIN_WITHDRAWAL_AMOUNT = "courierMinWithdrawalAmount"

    @property
    def is_rate(self) -> bool:
        return self in (CourierRuleKey.VARIABLE_RATE, CourierRuleKey.PLATFORM_COMMISSION_RATE)


class CourierRuleEntry(Base):
    __tablename__ = "courier_rule_entries"
    __table_args__ = (
        Index("ix_courier_rule_entries_key_created", "key", "created_at"),
    )

    id = Column(Integer, primary_key=True, index=True)
    key = Column(
        SQLEnum(CourierRuleKey, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    value = Column(Numeric(12, 4), nullable=False)
    updated_by_user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
