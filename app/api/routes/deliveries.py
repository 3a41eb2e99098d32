"""
Delivery API Routes - courier job board, lifecycle and metrics
"""
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, field_serializer, field_validator
from pydantic.alias_generators import to_camel
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies.auth import get_current_courier, require_roles
from app.core.config import settings
from app.core.logging import get_logger
from app.core.validation import address_validator, sanitized_text_validator
from app.db.database import get_db
from app.db.models.courier import Courier
from app.db.models.delivery import Delivery
from app.db.models.issue_report import IssueType
from app.db.models.user import User, UserRole
from app.domain.services.delivery_service import DeliveryService
from app.domain.services.earnings_service import CourierMetrics, EarningsService
from app.domain.services.support_service import SupportService

logger = get_logger(__name__)

router = APIRouter()

_REQUEST_CONFIG = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ==================== Schemas ====================

class OrderSummary(BaseModel):
    id: int
    client_id: int
    restaurant_id: int
    restaurant_name: str | None
    total_amount: Decimal
    status: str

    @field_serializer("total_amount")
    def serialize_amount(self, v: Decimal) -> float:
        return float(v)


class DeliveryResponse(BaseModel):
    """Delivery with a summary of its order"""
    id: int
    order_id: int
    status: str
    pickup_address: str
    delivery_address: str
    courier_id: int | None
    estimated_time: int | None
    created_at: datetime
    accepted_at: datetime | None
    completed_at: datetime | None
    order: OrderSummary

    @classmethod
    def from_model(cls, delivery: Delivery) -> "DeliveryResponse":
        order = delivery.order
        return cls(
            id=delivery.id,
            order_id=delivery.order_id,
            status=delivery.status.value,
            pickup_address=delivery.pickup_address,
            delivery_address=delivery.delivery_address,
            courier_id=delivery.courier_id,
            estimated_time=delivery.estimated_time,
            created_at=delivery.created_at,
            accepted_at=delivery.accepted_at,
            completed_at=delivery.completed_at,
            order=OrderSummary(
                id=order.id,
                client_id=order.client_id,
                restaurant_id=order.restaurant_id,
                restaurant_name=order.restaurant.name if order.restaurant else None,
                total_amount=order.total_amount,
                status=order.status.value,
            ),
        )


class DeliveryCreate(BaseModel):
    """Registration of the delivery of an order, sent by the order service"""
    model_config = _REQUEST_CONFIG

    order_id: int
    pickup_address: str
    delivery_address: str
    estimated_time: Optional[int] = None

    @field_validator("pickup_address", "delivery_address")
    @classmethod
    def validate_address(cls, v: str) -> str:
        return address_validator(v)

    @field_validator("estimated_time")
    @classmethod
    def validate_estimated_time(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and not 0 <= v <= 24 * 60:
            raise ValueError("estimated_time must be between 0 and 1440 minutes")
        return v


class StatusUpdate(BaseModel):
    status: str


class EarningsResponse(BaseModel):
    today: float
    week: float
    total: float
    available_balance: float
    pending_withdrawals: float
    paid_withdrawals: float
    currency: str
    formula: dict[str, float]


class StatsResponse(BaseModel):
    deliveries_count: int
    acceptance_rate: float
    cancellation_rate: float
    average_wait_minutes: float


class PayoutResponse(BaseModel):
    delivery_id: int
    order_id: int
    delivered_at: datetime | None
    order_total: float
    gross: float
    platform_commission: float
    net: float


class MetricsResponse(BaseModel):
    earnings: EarningsResponse
    stats: StatsResponse
    payouts: List[PayoutResponse]

    @classmethod
    def from_metrics(cls, metrics: CourierMetrics, currency: str) -> "MetricsResponse":
        summary = metrics.earnings
        return cls(
            earnings=EarningsResponse(
                today=float(summary.today),
                week=float(summary.week),
                total=float(summary.total),
                available_balance=float(summary.available_balance),
                pending_withdrawals=float(summary.pending_withdrawals),
                paid_withdrawals=float(summary.paid_withdrawals),
                currency=currency,
                formula={key: float(value) for key, value in summary.rules.to_wire().items()},
            ),
            stats=StatsResponse(
                deliveries_count=metrics.stats.deliveries_count,
                acceptance_rate=metrics.stats.acceptance_rate,
                cancellation_rate=metrics.stats.cancellation_rate,
                average_wait_minutes=metrics.stats.average_wait_minutes,
            ),
            payouts=[
                PayoutResponse(
                    delivery_id=p.delivery_id,
                    order_id=p.order_id,
                    delivered_at=p.delivered_at,
                    order_total=float(p.order_total),
                    gross=float(p.gross),
                    platform_commission=float(p.platform_commission),
                    net=float(p.net),
                )
                for p in metrics.payouts
            ],
        )


class IssueReportCreate(BaseModel):
    model_config = _REQUEST_CONFIG

    issue_type: IssueType
    message: str
    delivery_id: Optional[int] = None

    @field_validator("message")
    @classmethod
    def validate_message(cls, v: str) -> str:
        return sanitized_text_validator(v, max_length=2000)


class IssueReportResponse(BaseModel):
    id: int
    courier_id: int
    delivery_id: int | None
    issue_type: str
    message: str
    created_at: datetime


# ==================== Routes ====================
# Static paths are declared before /{delivery_id}

@router.post(
    "",
    response_model=DeliveryResponse,
    status_code=201,
    summary="Register the delivery of an order",
    description="Creates the WAITING delivery of an order and offers it to available couriers.",
    responses={
        404: {"description": "Order not found"},
        409: {"description": "The order already has an unfinished delivery"},
    },
)
async def register_delivery(
    data: DeliveryCreate,
    _: User = Depends(require_roles(UserRole.ADMIN, UserRole.SERVICE)),
    db: AsyncSession = Depends(get_db),
) -> DeliveryResponse:
    delivery = await DeliveryService(db).register(
        order_id=data.order_id,
        pickup_address=data.pickup_address,
        delivery_address=data.delivery_address,
        estimated_time=data.estimated_time,
    )
    return DeliveryResponse.from_model(delivery)


@router.get(
    "/available",
    response_model=List[DeliveryResponse],
    summary="List available jobs",
    description="WAITING deliveries no courier has taken yet, oldest first.",
)
async def list_available(
    _: User = Depends(require_roles(UserRole.COURIER, UserRole.ADMIN)),
    db: AsyncSession = Depends(get_db),
) -> List[DeliveryResponse]:
    deliveries = await DeliveryService(db).list_available()
    return [DeliveryResponse.from_model(d) for d in deliveries]


@router.get(
    "/me",
    response_model=List[DeliveryResponse],
    summary="List my jobs",
)
async def list_my_deliveries(
    status: Optional[str] = Query(None, description="Filter by delivery status"),
    courier: Courier = Depends(get_current_courier),
    db: AsyncSession = Depends(get_db),
) -> List[DeliveryResponse]:
    deliveries = await DeliveryService(db).list_for_courier(courier.id, status)
    return [DeliveryResponse.from_model(d) for d in deliveries]


@router.get(
    "/me/metrics",
    response_model=MetricsResponse,
    summary="Courier earnings, statistics and payouts",
    description=(
        "Earnings for today, this week and all time, computed from the current "
        "courier rules, plus the available balance and the per-delivery payouts."
    ),
)
async def get_my_metrics(
    courier: Courier = Depends(get_current_courier),
    db: AsyncSession = Depends(get_db),
) -> MetricsResponse:
    metrics = await EarningsService(db).courier_metrics(courier.id)
    return MetricsResponse.from_metrics(metrics, settings.CURRENCY)


@router.post(
    "/support/report",
    response_model=IssueReportResponse,
    status_code=201,
    summary="Report an issue from the field",
)
async def report_issue(
    data: IssueReportCreate,
    courier: Courier = Depends(get_current_courier),
    db: AsyncSession = Depends(get_db),
) -> IssueReportResponse:
    report = await SupportService(db).report_issue(
        courier_id=courier.id,
        issue_type=data.issue_type,
        message=data.message,
        delivery_id=data.delivery_id,
    )
    return IssueReportResponse(
        id=report.id,
        courier_id=report.courier_id,
        delivery_id=report.delivery_id,
        issue_type=report.issue_type.value,
        message=report.message,
        created_at=report.created_at,
    )


@router.put(
    "/{delivery_id}/accept",
    response_model=DeliveryResponse,
    summary="Accept a job",
    description="Assigns a WAITING delivery to the calling courier. Only one courier can win.",
    responses={
        403: {"description": "Courier not approved"},
        404: {"description": "Delivery not found"},
        409: {"description": "Delivery already accepted"},
    },
)
async def accept_delivery(
    delivery_id: int,
    courier: Courier = Depends(get_current_courier),
    db: AsyncSession = Depends(get_db),
) -> DeliveryResponse:
    logger.info(
        "Accept delivery request",
        extra_data={"delivery_id": delivery_id, "courier_id": courier.id},
    )
    delivery = await DeliveryService(db).accept(delivery_id, courier.id)
    return DeliveryResponse.from_model(delivery)


@router.put(
    "/{delivery_id}/status",
    response_model=DeliveryResponse,
    summary="Advance a job's status",
    description="Moves the delivery to the next status: ACCEPTED, PICKED_UP, ON_ROUTE, DELIVERED.",
    responses={
        400: {"description": "Unknown status"},
        403: {"description": "Courier not approved or not assigned"},
        404: {"description": "Delivery not found"},
        409: {"description": "Not the next status"},
    },
)
async def update_delivery_status(
    delivery_id: int,
    data: StatusUpdate,
    courier: Courier = Depends(get_current_courier),
    db: AsyncSession = Depends(get_db),
) -> DeliveryResponse:
    delivery = await DeliveryService(db).update_status(delivery_id, courier.id, data.status)
    return DeliveryResponse.from_model(delivery)


@router.get(
    "/{delivery_id}",
    response_model=DeliveryResponse,
    summary="Get delivery by ID",
    description="Couriers see open jobs and their own; admins see every delivery.",
    responses={
        403: {"description": "Assigned to another courier"},
        404: {"description": "Delivery not found"},
    },
)
async def get_delivery(
    delivery_id: int,
    user: User = Depends(require_roles(UserRole.COURIER, UserRole.ADMIN)),
    db: AsyncSession = Depends(get_db),
) -> DeliveryResponse:
    service = DeliveryService(db)
    if user.role == UserRole.ADMIN:
        delivery = await service.get(delivery_id)
    else:
        courier = await get_current_courier(user, db)
        delivery = await service.get_for_courier(delivery_id, courier.id)
    return DeliveryResponse.from_model(delivery)
