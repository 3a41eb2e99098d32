"""
Pytest Configuration and Fixtures

Provides fixtures for:
- Database sessions (async, in-memory SQLite)
- In-memory Redis and a recording notification gateway
- Test data factories and auth headers
"""
# Settings are read at import time; the JWT validator needs a key outside DEBUG
import os
os.environ.setdefault("JWT_SECRET_KEY", "test-jwt-secret-key-for-testing-only-do-not-use-in-production")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import pytest
from contextlib import asynccontextmanager
from datetime import datetime
from decimal import Decimal
from typing import Any, AsyncGenerator
from unittest.mock import patch

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.auth import create_access_token
from app.core.config import settings
from app.db.database import Base, get_db
from app.db.models.courier import Courier
from app.db.models.delivery import Delivery, DeliveryStatus
from app.db.models.order import Order, OrderStatus
from app.db.models.restaurant import Restaurant
from app.db.models.user import User, UserRole
from app.db.models.withdrawal_request import WithdrawalMethod, WithdrawalRequest, WithdrawalStatus
from app.main import app


# Test database URL (SQLite in memory for fast tests)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture(scope="function")
async def async_engine():
    """Create async test database engine"""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture(scope="function")
def session_maker(async_engine):
    return async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False
    )


@pytest.fixture(scope="function")
async def db_session(session_maker) -> AsyncGenerator[AsyncSession, None]:
    """Create async database session for tests"""
    async with session_maker() as session:
        yield session
        await session.rollback()


@pytest.fixture(scope="function")
async def test_client(db_session: AsyncSession):
    """Create test client with database override"""
    from httpx import AsyncClient, ASGITransport

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
def task_session(session_maker):
    """Routes ``get_task_session`` of the Celery tasks to the test database"""
    @asynccontextmanager
    async def _get_task_session():
        async with session_maker() as session:
            yield session

    with patch("app.workers.tasks.get_task_session", _get_task_session):
        yield _get_task_session


# ============================================================================
# Fakes for external services
# ============================================================================

class FakeRedis:
    """In-memory stand-in for the Redis commands the app uses"""

    def __init__(self) -> None:
        self._store: dict[str, str] = {}
        self._lists: dict[str, list[str]] = {}
        self.published: list[tuple[str, str]] = []

    async def ping(self) -> bool:
        return True

    async def get(self, key: str) -> str | None:
        return self._store.get(key)

    async def set(self, key: str, value: str, nx: bool = False, ex: int | None = None) -> bool | None:
        if nx and key in self._store:
            return None
        self._store[key] = value
        return True

    async def publish(self, channel: str, message: str) -> int:
        self.published.append((channel, message))
        return 0

    async def lpush(self, key: str, *values: str) -> int:
        items = self._lists.setdefault(key, [])
        for value in values:
            items.insert(0, value)
        return len(items)

    async def ltrim(self, key: str, start: int, end: int) -> bool:
        items = self._lists.get(key, [])
        self._lists[key] = items[start:end + 1]
        return True

    async def lrange(self, key: str, start: int, end: int) -> list[str]:
        items = self._lists.get(key, [])
        return items[start:] if end == -1 else items[start:end + 1]

    async def delete(self, *keys: str) -> None:
        for key in keys:
            self._store.pop(key, None)
            self._lists.pop(key, None)

    async def aclose(self) -> None:
        self._store.clear()
        self._lists.clear()

    def channels(self) -> list[str]:
        return [channel for channel, _ in self.published]


@pytest.fixture(autouse=True)
def fake_redis():
    """Replace get_redis with FakeRedis for every test"""
    _fake = FakeRedis()

    async def _get_fake_redis():
        return _fake

    with patch("app.core.redis_client.get_redis", _get_fake_redis), \
         patch("app.domain.services.event_service.get_redis", _get_fake_redis):
        yield _fake


class RecordingGateway:
    """Notification gateway double; records sends and fails for chosen users"""

    def __init__(self, failing_user_ids: set[int] | None = None) -> None:
        self.sent: list[dict[str, Any]] = []
        self.failing_user_ids = failing_user_ids or set()

    async def send(self, user_id: int, message_type: str, content: dict, message_id: int | None = None) -> None:
        from app.core.exceptions import NotificationGatewayError

        if user_id in self.failing_user_ids:
            raise NotificationGatewayError(f"user {user_id} unreachable")
        self.sent.append({
            "user_id": user_id,
            "message_type": message_type,
            "content": content,
            "message_id": message_id,
        })


@pytest.fixture
def recording_gateway() -> RecordingGateway:
    return RecordingGateway()


# ============================================================================
# Test Data Factories
# ============================================================================

@pytest.fixture
def user_factory(db_session: AsyncSession):
    """Factory for creating test users"""
    counter = {"n": 0}

    async def _create_user(
        role: UserRole = UserRole.CLIENT,
        full_name: str | None = "Test User",
        email: str | None = None,
        is_active: bool = True,
    ) -> User:
        counter["n"] += 1
        user = User(
            email=email or f"{role.value}{counter['n']}@example.com",
            full_name=full_name,
            role=role,
            is_active=is_active,
        )
        db_session.add(user)
        await db_session.commit()
        await db_session.refresh(user)
        return user

    return _create_user


@pytest.fixture
def courier_factory(db_session: AsyncSession, user_factory):
    """Factory for creating courier profiles (with their user)"""
    async def _create_courier(
        is_approved: bool = True,
        is_available: bool = True,
        vehicle_type: str | None = "bike",
    ) -> Courier:
        user = await user_factory(role=UserRole.COURIER, full_name="Test Courier")
        courier = Courier(
            user_id=user.id,
            is_approved=is_approved,
            is_available=is_available,
            vehicle_type=vehicle_type,
        )
        db_session.add(courier)
        await db_session.commit()
        await db_session.refresh(courier)
        return courier

    return _create_courier


@pytest.fixture
async def restaurant(db_session: AsyncSession, user_factory) -> Restaurant:
    owner = await user_factory(role=UserRole.RESTAURATEUR, full_name="Chez Marcel")
    restaurant = Restaurant(
        name="Chez Marcel",
        owner_user_id=owner.id,
        address="12 Rue de Rivoli, Paris",
        city="Paris",
    )
    db_session.add(restaurant)
    await db_session.commit()
    await db_session.refresh(restaurant)
    return restaurant


@pytest.fixture
async def client_user(user_factory) -> User:
    return await user_factory(role=UserRole.CLIENT, full_name="Camille Client")


@pytest.fixture
def order_factory(db_session: AsyncSession, restaurant, client_user):
    """Factory for creating orders of the sample restaurant and client"""
    async def _create_order(
        total_amount: Decimal | str = Decimal("40.00"),
        status: OrderStatus = OrderStatus.READY,
    ) -> Order:
        order = Order(
            client_id=client_user.id,
            restaurant_id=restaurant.id,
            total_amount=Decimal(str(total_amount)),
            status=status,
        )
        db_session.add(order)
        await db_session.commit()
        await db_session.refresh(order)
        return order

    return _create_order


@pytest.fixture
def delivery_factory(db_session: AsyncSession, order_factory):
    """Factory for creating deliveries; creates the order when none is given"""
    async def _create_delivery(
        order: Order | None = None,
        status: DeliveryStatus = DeliveryStatus.WAITING,
        courier_id: int | None = None,
        total_amount: Decimal | str = Decimal("40.00"),
        estimated_time: int | None = 25,
        created_at: datetime | None = None,
        completed_at: datetime | None = None,
    ) -> Delivery:
        order = order or await order_factory(total_amount=total_amount)
        delivery = Delivery(
            order_id=order.id,
            status=status,
            pickup_address="12 Rue de Rivoli, Paris",
            delivery_address="5 Avenue Montaigne, Paris",
            courier_id=courier_id,
            estimated_time=estimated_time,
            created_at=created_at or datetime.utcnow(),
            completed_at=completed_at,
        )
        db_session.add(delivery)
        await db_session.commit()
        await db_session.refresh(delivery)
        return delivery

    return _create_delivery


@pytest.fixture
def withdrawal_factory(db_session: AsyncSession):
    """Factory for withdrawal requests in any status"""
    async def _create_withdrawal(
        courier_id: int,
        amount: Decimal | str,
        status: WithdrawalStatus = WithdrawalStatus.PENDING,
        method: WithdrawalMethod = WithdrawalMethod.BANK_TRANSFER,
    ) -> WithdrawalRequest:
        request = WithdrawalRequest(
            courier_id=courier_id,
            amount=Decimal(str(amount)),
            method=method,
            account_ref="FR7630006000011234567890189",
            status=status,
        )
        db_session.add(request)
        await db_session.commit()
        await db_session.refresh(request)
        return request

    return _create_withdrawal


# ============================================================================
# Sample Test Data
# ============================================================================

@pytest.fixture
async def approved_courier(courier_factory) -> Courier:
    return await courier_factory(is_approved=True)


@pytest.fixture
async def unapproved_courier(courier_factory) -> Courier:
    return await courier_factory(is_approved=False)


@pytest.fixture
async def admin_user(user_factory) -> User:
    return await user_factory(role=UserRole.ADMIN, full_name="Ada Admin")


@pytest.fixture
async def waiting_delivery(delivery_factory) -> Delivery:
    return await delivery_factory()


# ============================================================================
# Auth
# ============================================================================

def auth_headers(user_id: int, role: UserRole) -> dict[str, str]:
    token = create_access_token(user_id, role)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def courier_headers(approved_courier) -> dict[str, str]:
    return auth_headers(approved_courier.user_id, UserRole.COURIER)


@pytest.fixture
def admin_headers(admin_user) -> dict[str, str]:
    return auth_headers(admin_user.id, UserRole.ADMIN)


# ============================================================================
# Global state reset
# ============================================================================

@pytest.fixture(autouse=True)
def reset_circuit_breakers():
    """Reset circuit breakers between tests"""
    from app.core.circuit_breaker import CircuitBreaker
    CircuitBreaker.reset_all()
    yield
    CircuitBreaker.reset_all()


@pytest.fixture(autouse=True)
def pin_courier_defaults():
    """Rule defaults as shipped, whatever the local environment says"""
    with patch.object(settings, "COURIER_DEFAULT_BASE_FEE", Decimal("1.50")), \
         patch.object(settings, "COURIER_DEFAULT_VARIABLE_RATE", Decimal("0.12")), \
         patch.object(settings, "COURIER_DEFAULT_PLATFORM_COMMISSION_RATE", Decimal("0.02")), \
         patch.object(settings, "COURIER_DEFAULT_MIN_WITHDRAWAL_AMOUNT", Decimal("10.00")), \
         patch.object(settings, "LOCAL_TIMEZONE", "Europe/Paris"):
        yield
