"""
User Model - marketplace accounts (clients, restaurateurs, couriers, admins)

Profiles are owned by the account service; this table keeps the columns the
courier side needs for authorization and for addressing notifications.
"""
import enum
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, Enum as SQLEnum, Boolean

from app.db.database import Base


class UserRole(str, enum.Enum):
    CLIENT = "client"
    RESTAURATEUR = "restaurateur"
    COURIER = "courier"
    ADMIN = "admin"
    # Internal callers such as the order service
    SERVICE = "service"


class User(Base):
    """Marketplace account"""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    full_name = Column(String(150), nullable=True)
    phone_number = Column(String(20), nullable=True)
    role = Column(
        SQLEnum(UserRole, values_callable=lambda x: [e.value for e in x]),
        default=UserRole.CLIENT,
        nullable=False,
        index=True,
    )
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def display_name(self) -> str:
        return self.full_name or self.email
