"""
Outbox Service - Transactional Outbox for user-facing notifications

Domain services queue messages on their own session, so a notification exists
exactly when the state change it announces was committed. The Celery worker
drains the table through the notification gateway.
"""
from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal
from typing import List

from sqlalchemy import delete, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.validation import AccountReferenceValidator
from app.db.models.delivery import Delivery
from app.db.models.issue_report import CourierIssueReport
from app.db.models.order import Order
from app.db.models.outbox_message import (
    BROADCAST_ADMINS,
    BROADCAST_COURIERS,
    MessageStatus,
    OutboxMessage,
)
from app.db.models.withdrawal_request import WithdrawalRequest, WithdrawalStatus


def _calculate_backoff_seconds(
    retry_count: int,
    *,
    base_seconds: int,
    max_backoff_seconds: int,
) -> int:
    """
    Exponential backoff ``base_seconds * 2**retry_count`` capped at ``max_backoff_seconds``.

    Large retry counts short-circuit to the cap instead of computing a huge power.
    """
    if base_seconds <= 0 or max_backoff_seconds <= 0:
        return 0
    retry_count = max(retry_count, 0)
    if retry_count >= max_backoff_seconds.bit_length():
        return max_backoff_seconds
    return min(base_seconds << retry_count, max_backoff_seconds)


def _money(amount: Decimal | float) -> str:
    return f"{Decimal(str(amount)):.2f} {settings.CURRENCY}"


_WITHDRAWAL_OUTCOME_TEXT = {
    WithdrawalStatus.APPROVED: "has been approved",
    WithdrawalStatus.REJECTED: "has been rejected",
    WithdrawalStatus.PAID: "has been paid",
    WithdrawalStatus.PENDING: "is pending review again",
}


class OutboxService:
    """
    Queue and track outbox messages.

    ``queue_*`` methods only add rows to the session; the caller's commit makes
    them visible to the worker.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def queue_message(
        self,
        recipient: str | int,
        message_type: str,
        message_content: dict
    ) -> OutboxMessage:
        """Queue a single message for delivery"""
        message = OutboxMessage(
            recipient=str(recipient),
            message_type=message_type,
            message_content=message_content,
            status=MessageStatus.PENDING,
            retry_count=0,
            max_retries=settings.OUTBOX_MAX_RETRIES,
        )
        self.db.add(message)
        return message

    # ==================== Deliveries ====================

    async def queue_new_delivery_broadcast(
        self, delivery: Delivery, order: Order
    ) -> OutboxMessage:
        """Offer a freshly registered job to every available courier"""
        return await self.queue_message(
            recipient=BROADCAST_COURIERS,
            message_type="delivery_available",
            message_content={
                "delivery_id": delivery.id,
                "order_id": order.id,
                "pickup_address": delivery.pickup_address,
                "delivery_address": delivery.delivery_address,
                "title": "New delivery available",
                "message_text": (
                    f"New delivery #{delivery.id}: "
                    f"{delivery.pickup_address} -> {delivery.delivery_address}"
                ),
            },
        )

    async def queue_delivery_accepted(
        self, delivery: Delivery, order: Order
    ) -> OutboxMessage:
        """Tell the client a courier is on the way to the restaurant"""
        return await self.queue_message(
            recipient=order.client_id,
            message_type="delivery_accepted",
            message_content={
                "delivery_id": delivery.id,
                "order_id": order.id,
                "courier_id": delivery.courier_id,
                "title": "Courier assigned",
                "message_text": f"A courier has accepted the delivery of order #{order.id}.",
            },
        )

    async def queue_delivery_completed(
        self, delivery: Delivery, order: Order, restaurant_owner_id: int | None
    ) -> List[OutboxMessage]:
        """Notify the client and the restaurant that the order was delivered"""
        messages = [
            await self.queue_message(
                recipient=order.client_id,
                message_type="delivery_completed",
                message_content={
                    "delivery_id": delivery.id,
                    "order_id": order.id,
                    "title": "Order delivered",
                    "message_text": f"Your order #{order.id} has been delivered. Enjoy your meal!",
                },
            )
        ]
        if restaurant_owner_id is not None:
            messages.append(
                await self.queue_message(
                    recipient=restaurant_owner_id,
                    message_type="delivery_completed_restaurant",
                    message_content={
                        "delivery_id": delivery.id,
                        "order_id": order.id,
                        "title": "Order delivered",
                        "message_text": f"Order #{order.id} was delivered to the customer.",
                    },
                )
            )
        return messages

    # ==================== Withdrawals ====================

    async def queue_withdrawal_requested(
        self, request: WithdrawalRequest, courier_user_id: int
    ) -> OutboxMessage:
        """Ask admins to review a new payout request"""
        return await self.queue_message(
            recipient=BROADCAST_ADMINS,
            message_type="withdrawal_requested",
            message_content={
                "withdrawal_request_id": request.id,
                "courier_id": request.courier_id,
                "courier_user_id": courier_user_id,
                "amount": str(request.amount),
                "method": request.method.value,
                "account_ref": AccountReferenceValidator.mask(request.account_ref),
                "title": "Withdrawal request",
                "message_text": (
                    f"Courier #{request.courier_id} requested a withdrawal of "
                    f"{_money(request.amount)} ({request.method.value})."
                ),
            },
        )

    async def queue_withdrawal_reviewed(
        self, request: WithdrawalRequest, courier_user_id: int
    ) -> OutboxMessage:
        """Tell the courier what happened to their request"""
        outcome = _WITHDRAWAL_OUTCOME_TEXT[request.status]
        text = f"Your withdrawal request of {_money(request.amount)} {outcome}."
        if request.notes:
            text = f"{text} Note: {request.notes}"
        return await self.queue_message(
            recipient=courier_user_id,
            message_type="withdrawal_reviewed",
            message_content={
                "withdrawal_request_id": request.id,
                "status": request.status.value,
                "amount": str(request.amount),
                "title": "Withdrawal update",
                "message_text": text,
            },
        )

    # ==================== Support ====================

    async def queue_issue_report(self, report: CourierIssueReport) -> OutboxMessage:
        """Forward a courier's issue report to the admins"""
        return await self.queue_message(
            recipient=BROADCAST_ADMINS,
            message_type="courier_issue_report",
            message_content={
                "report_id": report.id,
                "courier_id": report.courier_id,
                "delivery_id": report.delivery_id,
                "issue_type": report.issue_type.value,
                "title": f"Courier issue: {report.issue_type.value}",
                "message_text": report.message,
            },
        )

    # ==================== Worker side ====================

    async def get_pending_messages(self, limit: int = 100) -> List[OutboxMessage]:
        """Pending messages whose retry time has come, oldest first"""
        now = datetime.utcnow()
        result = await self.db.execute(
            select(OutboxMessage)
            .where(
                OutboxMessage.status == MessageStatus.PENDING,
                or_(
                    OutboxMessage.next_retry_at.is_(None),
                    OutboxMessage.next_retry_at <= now,
                ),
            )
            .order_by(OutboxMessage.created_at, OutboxMessage.id)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def _get(self, message_id: int) -> OutboxMessage | None:
        result = await self.db.execute(
            select(OutboxMessage).where(OutboxMessage.id == message_id)
        )
        return result.scalar_one_or_none()

    async def mark_as_processing(self, message_id: int) -> None:
        message = await self._get(message_id)
        if message:
            message.status = MessageStatus.PROCESSING
            await self.db.commit()

    async def mark_as_sent(self, message_id: int) -> None:
        message = await self._get(message_id)
        if message:
            message.status = MessageStatus.SENT
            message.processed_at = datetime.utcnow()
            message.last_error = None
            await self.db.commit()

    async def mark_as_failed(self, message_id: int, error: str) -> None:
        """Record a failed attempt; schedule a retry or give up after max_retries"""
        message = await self._get(message_id)
        if not message:
            return

        message.retry_count += 1
        message.last_error = error[:1000]

        if message.retry_count >= message.max_retries:
            message.status = MessageStatus.FAILED
            message.processed_at = datetime.utcnow()
        else:
            message.status = MessageStatus.PENDING
            backoff_seconds = _calculate_backoff_seconds(
                message.retry_count,
                base_seconds=settings.OUTBOX_RETRY_BASE_SECONDS,
                max_backoff_seconds=settings.OUTBOX_MAX_BACKOFF_SECONDS,
            )
            message.next_retry_at = datetime.utcnow() + timedelta(seconds=backoff_seconds)

        await self.db.commit()

    async def delete_sent_before(self, cutoff: datetime) -> int:
        """Drop delivered messages processed before ``cutoff``"""
        result = await self.db.execute(
            delete(OutboxMessage).where(
                OutboxMessage.status == MessageStatus.SENT,
                OutboxMessage.processed_at < cutoff,
            )
        )
        await self.db.commit()
        return result.rowcount or 0
