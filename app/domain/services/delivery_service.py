"""
Delivery Service - courier delivery lifecycle

    WAITING -> ACCEPTED -> PICKED_UP -> ON_ROUTE -> DELIVERED

Acceptance is a single conditional UPDATE so that concurrent accepts resolve to
one winner. Status advancement re-reads the row under a lock and writes with a
compare-and-swap on the status it read. Client/restaurant notifications are
queued in the outbox inside the same transaction; the Order mirror and the
real-time event run after commit and never undo the delivery change.
"""
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import (
    ActiveDeliveryExistsError,
    CourierNotApprovedError,
    CourierNotFoundError,
    DeliveryAlreadyAcceptedError,
    DeliveryNotAssignedError,
    DeliveryNotFoundError,
    InvalidDeliveryTransitionError,
    OrderNotFoundError,
    ValidationException,
)
from app.core.logging import get_logger, log_async_operation
from app.db.models.courier import Courier
from app.db.models.delivery import (
    TERMINAL_DELIVERY_STATUSES,
    Delivery,
    DeliveryStatus,
    is_valid_delivery_transition,
)
from app.db.models.order import Order, OrderStatus
from app.domain.services.event_service import DeliveryEventType, publish_delivery_event
from app.domain.services.outbox_service import OutboxService

logger = get_logger(__name__)

# Order status mirrored when the delivery reaches these states
_ORDER_MIRROR = {
    DeliveryStatus.ACCEPTED: OrderStatus.IN_DELIVERY,
    DeliveryStatus.DELIVERED: OrderStatus.DELIVERED,
}


def parse_delivery_status(value: DeliveryStatus | str) -> DeliveryStatus:
    """Wire value (enum name) to ``DeliveryStatus``"""
    if isinstance(value, DeliveryStatus):
        return value
    try:
        return DeliveryStatus(value)
    except ValueError:
        raise ValidationException(
            f"Invalid delivery status: {value}",
            field="status",
            details={"allowed": [s.value for s in DeliveryStatus]},
        ) from None


class DeliveryService:
    """Delivery lifecycle operations"""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.outbox_service = OutboxService(db)

    # ==================== Helpers ====================

    async def get_courier(self, courier_id: int) -> Courier:
        result = await self.db.execute(select(Courier).where(Courier.id == courier_id))
        courier = result.scalar_one_or_none()
        if not courier:
            raise CourierNotFoundError(courier_id)
        return courier

    async def require_approved_courier(self, courier_id: int) -> Courier:
        """Courier profile, or an authorization error when not approved"""
        courier = await self.get_courier(courier_id)
        if not courier.is_approved:
            raise CourierNotApprovedError(courier_id)
        return courier

    async def _load(self, delivery_id: int, *, for_update: bool = False) -> Optional[Delivery]:
        query = (
            select(Delivery)
            .where(Delivery.id == delivery_id)
            .execution_options(populate_existing=True)
        )
        if for_update:
            query = query.with_for_update(of=Delivery)
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def _mirror_order_status(self, order_id: int, status: OrderStatus) -> None:
        """Best-effort write of the parent order's status, after the delivery commit"""
        try:
            await self.db.execute(
                update(Order)
                .where(Order.id == order_id)
                .values(status=status, updated_at=datetime.utcnow())
            )
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(
                "Failed to mirror order status",
                extra_data={
                    "order_id": order_id,
                    "status": status.value,
                    "error": str(e),
                },
                exc_info=True,
            )

    async def _after_commit(
        self,
        delivery_id: int,
        order_id: int,
        restaurant_id: int,
        courier_id: int | None,
        status: DeliveryStatus,
    ) -> Delivery:
        """Order mirror and real-time event; neither can undo the committed change"""
        if status in _ORDER_MIRROR:
            await self._mirror_order_status(order_id, _ORDER_MIRROR[status])
        await publish_delivery_event(
            DeliveryEventType.STATUS_CHANGED,
            delivery_id=delivery_id,
            order_id=order_id,
            status=status.value,
            restaurant_id=restaurant_id,
            courier_id=courier_id,
        )
        # A failed mirror rolls back and expires loaded instances
        return await self.get(delivery_id)

    # ==================== Reads ====================

    async def get(self, delivery_id: int) -> Delivery:
        delivery = await self._load(delivery_id)
        if not delivery:
            raise DeliveryNotFoundError(delivery_id)
        return delivery

    async def get_for_courier(self, delivery_id: int, courier_id: int) -> Delivery:
        """A job on the board, or one assigned to ``courier_id``

        Raises:
            DeliveryNotFoundError: no such delivery
            DeliveryNotAssignedError: taken by another courier
        """
        delivery = await self.get(delivery_id)
        is_open = delivery.status == DeliveryStatus.WAITING and delivery.courier_id is None
        if not is_open and delivery.courier_id != courier_id:
            raise DeliveryNotAssignedError(delivery_id, courier_id)
        return delivery

    async def list_available(self) -> List[Delivery]:
        """Unassigned WAITING jobs, oldest first"""
        result = await self.db.execute(
            select(Delivery)
            .where(
                Delivery.status == DeliveryStatus.WAITING,
                Delivery.courier_id.is_(None),
            )
            .order_by(Delivery.created_at.asc(), Delivery.id.asc())
        )
        return list(result.scalars().all())

    async def list_for_courier(
        self,
        courier_id: int,
        status: DeliveryStatus | str | None = None,
    ) -> List[Delivery]:
        """Jobs assigned to the courier, newest first"""
        query = select(Delivery).where(Delivery.courier_id == courier_id)
        if status is not None:
            query = query.where(Delivery.status == parse_delivery_status(status))
        result = await self.db.execute(
            query.order_by(Delivery.created_at.desc(), Delivery.id.desc())
        )
        return list(result.scalars().all())

    # ==================== Registration ====================

    @log_async_operation("register_delivery")
    async def register(
        self,
        order_id: int,
        pickup_address: str,
        delivery_address: str,
        estimated_time: int | None = None,
    ) -> Delivery:
        """Create the WAITING delivery of an order and offer it to couriers.

        Raises:
            OrderNotFoundError: unknown order
            ActiveDeliveryExistsError: the order already has an unfinished delivery
        """
        order_result = await self.db.execute(
            select(Order).where(Order.id == order_id).with_for_update(of=Order)
        )
        order = order_result.scalar_one_or_none()
        if not order:
            raise OrderNotFoundError(order_id)

        active_result = await self.db.execute(
            select(Delivery.id)
            .where(
                Delivery.order_id == order_id,
                Delivery.status.notin_(list(TERMINAL_DELIVERY_STATUSES)),
            )
            .limit(1)
        )
        active_id = active_result.scalar_one_or_none()
        if active_id is not None:
            await self.db.rollback()
            raise ActiveDeliveryExistsError(order_id, active_id)

        delivery = Delivery(
            order_id=order_id,
            status=DeliveryStatus.WAITING,
            pickup_address=pickup_address,
            delivery_address=delivery_address,
            estimated_time=estimated_time,
        )
        self.db.add(delivery)
        await self.db.flush()

        await self.outbox_service.queue_new_delivery_broadcast(delivery, order)
        await self.db.commit()

        await publish_delivery_event(
            DeliveryEventType.DELIVERY_CREATED,
            delivery_id=delivery.id,
            order_id=order_id,
            status=delivery.status.value,
            restaurant_id=order.restaurant_id,
        )
        return await self.get(delivery.id)

    # ==================== Lifecycle ====================

    @log_async_operation("accept_delivery")
    async def accept(self, delivery_id: int, courier_id: int) -> Delivery:
        """Assign a WAITING delivery to the courier.

        Raises:
            CourierNotApprovedError: courier may not take jobs
            DeliveryNotFoundError: unknown delivery
            DeliveryAlreadyAcceptedError: another courier got it first
        """
        await self.require_approved_courier(courier_id)

        now = datetime.utcnow()
        result = await self.db.execute(
            update(Delivery)
            .where(
                Delivery.id == delivery_id,
                Delivery.status == DeliveryStatus.WAITING,
                Delivery.courier_id.is_(None),
            )
            .values(
                courier_id=courier_id,
                status=DeliveryStatus.ACCEPTED,
                accepted_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )

        if result.rowcount == 0:
            await self.db.rollback()
            current = await self._load(delivery_id)
            if not current:
                raise DeliveryNotFoundError(delivery_id)
            raise DeliveryAlreadyAcceptedError(delivery_id, current.status.value)

        delivery = await self._load(delivery_id)
        order = delivery.order
        await self.outbox_service.queue_delivery_accepted(delivery, order)
        await self.db.commit()

        logger.info(
            "Delivery accepted",
            extra_data={"delivery_id": delivery_id, "courier_id": courier_id},
        )

        return await self._after_commit(
            delivery_id, order.id, order.restaurant_id, courier_id, DeliveryStatus.ACCEPTED
        )

    @log_async_operation("update_delivery_status")
    async def update_status(
        self,
        delivery_id: int,
        courier_id: int,
        new_status: DeliveryStatus | str,
    ) -> Delivery:
        """Advance the delivery to the immediate successor of its current status.

        Raises:
            ValidationException: unknown status value
            CourierNotApprovedError: courier may not work
            DeliveryNotFoundError: unknown delivery
            DeliveryNotAssignedError: delivery belongs to another courier
            InvalidDeliveryTransitionError: not the next status (including repeats)
        """
        target = parse_delivery_status(new_status)
        await self.require_approved_courier(courier_id)

        delivery = await self._load(delivery_id, for_update=True)
        if not delivery:
            raise DeliveryNotFoundError(delivery_id)
        if delivery.courier_id != courier_id:
            await self.db.rollback()
            raise DeliveryNotAssignedError(delivery_id, courier_id)

        current = delivery.status
        if not is_valid_delivery_transition(current, target):
            await self.db.rollback()
            raise InvalidDeliveryTransitionError(delivery_id, current.value, target.value)

        now = datetime.utcnow()
        values = {"status": target, "updated_at": now}
        if target == DeliveryStatus.DELIVERED:
            values["completed_at"] = now

        result = await self.db.execute(
            update(Delivery)
            .where(
                Delivery.id == delivery_id,
                Delivery.courier_id == courier_id,
                Delivery.status == current,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            # Another request advanced it between our read and write
            await self.db.rollback()
            latest = await self._load(delivery_id)
            raise InvalidDeliveryTransitionError(
                delivery_id,
                latest.status.value if latest else current.value,
                target.value,
            )

        delivery = await self._load(delivery_id)
        order = delivery.order
        if target == DeliveryStatus.DELIVERED:
            await self.outbox_service.queue_delivery_completed(
                delivery, order, order.restaurant.owner_user_id if order.restaurant else None
            )
        await self.db.commit()

        logger.info(
            "Delivery status updated",
            extra_data={
                "delivery_id": delivery_id,
                "courier_id": courier_id,
                "from_status": current.value,
                "to_status": target.value,
            },
        )

        return await self._after_commit(
            delivery_id, order.id, order.restaurant_id, courier_id, target
        )
