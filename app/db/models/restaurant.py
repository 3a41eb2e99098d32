"""
Restaurant Model - minimal projection of the catalog service's restaurants
"""
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey

from app.db.database import Base


class Restaurant(Base):
    __tablename__ = "restaurants"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(150), nullable=False)
    owner_user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    address = Column(String(255), nullable=True)
    city = Column(String(100), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
