"""
Fixtures and helpers for end-to-end scenarios.

Provides:
- Concise API step helpers (register, accept, advance, withdraw, review)
- A service account allowed to register deliveries
- DB assertions that always read fresh rows (delivery, order, outbox)
"""
import pytest
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models.delivery import Delivery
from app.db.models.order import Order
from app.db.models.outbox_message import OutboxMessage
from app.db.models.user import User, UserRole

from tests.conftest import auth_headers


# ============================================================================
# Actors
# ============================================================================

@pytest.fixture
async def service_user(user_factory) -> User:
    """The order service that registers deliveries"""
    return await user_factory(role=UserRole.SERVICE, full_name="order-service")


@pytest.fixture
def service_headers(service_user) -> dict[str, str]:
    return auth_headers(service_user.id, UserRole.SERVICE)


# ============================================================================
# API steps
# ============================================================================

async def register_delivery(client, headers: dict, order_id: int, **overrides: Any) -> dict:
    """POST /api/deliveries; asserts 201 and returns the delivery JSON"""
    body = {
        "orderId": order_id,
        "pickupAddress": "12 Rue de Rivoli, Paris",
        "deliveryAddress": "5 Avenue Montaigne, Paris",
        "estimatedTime": 25,
    }
    body.update(overrides)
    resp = await client.post("/api/deliveries", json=body, headers=headers)
    assert resp.status_code == 201, f"register returned {resp.status_code}: {resp.text}"
    return resp.json()


async def accept_delivery(client, headers: dict, delivery_id: int, expected_status: int = 200) -> dict:
    resp = await client.put(f"/api/deliveries/{delivery_id}/accept", headers=headers)
    assert resp.status_code == expected_status, f"accept returned {resp.status_code}: {resp.text}"
    return resp.json()


async def advance_to_delivered(client, headers: dict, delivery_id: int) -> dict:
    """Walk an ACCEPTED delivery through PICKED_UP and ON_ROUTE to DELIVERED"""
    data: dict = {}
    for status in ("PICKED_UP", "ON_ROUTE", "DELIVERED"):
        resp = await client.put(
            f"/api/deliveries/{delivery_id}/status",
            json={"status": status},
            headers=headers,
        )
        assert resp.status_code == 200, f"{status} returned {resp.status_code}: {resp.text}"
        data = resp.json()
    return data


async def request_withdrawal(
    client,
    headers: dict,
    amount: Any,
    expected_status: int = 201,
    method: str = "BANK_TRANSFER",
    account_ref: str = "FR7630006000011234567890189",
) -> dict:
    resp = await client.post(
        "/api/deliveries/me/withdraw-requests",
        json={"amount": amount, "method": method, "accountRef": account_ref},
        headers=headers,
    )
    assert resp.status_code == expected_status, f"withdraw returned {resp.status_code}: {resp.text}"
    return resp.json()


async def review_withdrawal(
    client, headers: dict, request_id: int, status: str, expected_status: int = 200
) -> dict:
    resp = await client.put(
        f"/api/deliveries/admin/withdraw-requests/{request_id}",
        json={"status": status},
        headers=headers,
    )
    assert resp.status_code == expected_status, f"review returned {resp.status_code}: {resp.text}"
    return resp.json()


async def get_balance(client, headers: dict) -> dict:
    resp = await client.get("/api/deliveries/me/withdraw-requests", headers=headers)
    assert resp.status_code == 200
    return resp.json()["balance"]


async def get_metrics(client, headers: dict) -> dict:
    resp = await client.get("/api/deliveries/me/metrics", headers=headers)
    assert resp.status_code == 200
    return resp.json()


# ============================================================================
# DB assertions
# ============================================================================

async def assert_delivery_status(
    db_session: AsyncSession,
    delivery_id: int,
    expected_status,
) -> Delivery:
    """Fresh read of the delivery; returns it"""
    result = await db_session.execute(
        select(Delivery).where(Delivery.id == delivery_id).execution_options(
            populate_existing=True
        )
    )
    delivery = result.scalar_one()
    assert delivery.status == expected_status, (
        f"expected {expected_status}, got {delivery.status}"
    )
    return delivery


async def assert_order_status(
    db_session: AsyncSession,
    order_id: int,
    expected_status,
) -> None:
    result = await db_session.execute(
        select(Order.status).where(Order.id == order_id).execution_options(
            populate_existing=True
        )
    )
    status = result.scalar_one()
    assert status == expected_status, f"expected order {expected_status}, got {status}"


async def assert_outbox_count(
    db_session: AsyncSession,
    message_type: str,
    expected_count: int,
) -> None:
    result = await db_session.execute(
        select(func.count(OutboxMessage.id)).where(
            OutboxMessage.message_type == message_type
        )
    )
    count = result.scalar()
    assert count == expected_count, (
        f"expected {expected_count} outbox messages of type '{message_type}', found {count}"
    )
