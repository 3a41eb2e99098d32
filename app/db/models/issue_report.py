"""
Courier Issue Report - support ticket raised by a courier from the field
"""
import enum
from datetime import datetime
from sqlalchemy import Column, Integer, DateTime, Enum as SQLEnum, ForeignKey, Text

from app.db.database import Base


class IssueType(str, enum.Enum):
    SAFETY = "SAFETY"
    CUSTOMER = "CUSTOMER"
    RESTAURANT = "RESTAURANT"
    VEHICLE = "VEHICLE"
    OTHER = "OTHER"


class CourierIssueReport(Base):
    __tablename__ = "courier_issue_reports"

    id = Column(Integer, primary_key=True, index=True)
    courier_id = Column(Integer, ForeignKey("couriers.id"), nullable=False, index=True)
    delivery_id = Column(Integer, ForeignKey("deliveries.id"), nullable=True)
    issue_type = Column(SQLEnum(IssueType), nullable=False)
    message = Column(Text, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
