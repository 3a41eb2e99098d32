"""
Delivery Model - fulfillment record for one order
"""
import enum
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, Enum as SQLEnum, ForeignKey, Index
from sqlalchemy.orm import relationship

from app.db.database import Base


class DeliveryStatus(str, enum.Enum):
    WAITING = "WAITING"
    ACCEPTED = "ACCEPTED"
    PICKED_UP = "PICKED_UP"
    ON_ROUTE = "ON_ROUTE"
    DELIVERED = "DELIVERED"


# Linear progression; each status has at most one successor
NEXT_DELIVERY_STATUS: dict[DeliveryStatus, DeliveryStatus] = {
    DeliveryStatus.WAITING: DeliveryStatus.ACCEPTED,
    DeliveryStatus.ACCEPTED: DeliveryStatus.PICKED_UP,
    DeliveryStatus.PICKED_UP: DeliveryStatus.ON_ROUTE,
    DeliveryStatus.ON_ROUTE: DeliveryStatus.DELIVERED,
}

TERMINAL_DELIVERY_STATUSES = frozenset({DeliveryStatus.DELIVERED})


def is_valid_delivery_transition(current: DeliveryStatus, target: DeliveryStatus) -> bool:
    return NEXT_DELIVERY_STATUS.get(current) == target


class Delivery(Base):
    """Delivery record; never hard-deleted, it backs the earnings ledger"""

    __tablename__ = "deliveries"
    __table_args__ = (
        Index("ix_deliveries_courier_status", "courier_id", "status"),
        Index("ix_deliveries_status_created", "status", "created_at"),
    )

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)

    status = Column(SQLEnum(DeliveryStatus), default=DeliveryStatus.WAITING, nullable=False)
    pickup_address = Column(String(255), nullable=False)
    delivery_address = Column(String(255), nullable=False)

    # Null only while WAITING; immutable once set
    courier_id = Column(Integer, ForeignKey("couriers.id"), nullable=True)
    estimated_time = Column(Integer, nullable=True)  # minutes

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    accepted_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    order = relationship("Order", lazy="joined", innerjoin=True)
    courier = relationship("Courier", foreign_keys=[courier_id])
