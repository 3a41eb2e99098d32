"""
Celery Tasks for Async Message Processing

Implements the worker side of the Transactional Outbox pattern.
Processes pending messages from the outbox table and delivers them through
the notification gateway.
"""
from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from contextlib import contextmanager
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

from app.workers.celery_app import celery_app
from app.core.config import settings
from app.db.database import get_task_session
from app.db.models.courier import Courier
from app.db.models.outbox_message import BROADCAST_ADMINS, BROADCAST_COURIERS, OutboxMessage
from app.db.models.user import User, UserRole
from app.domain.services.notification_gateway import NotificationGatewayClient
from app.domain.services.outbox_service import OutboxService
from app.core.logging import get_logger, set_correlation_id
from sqlalchemy import select

logger = get_logger(__name__)


@contextmanager
def get_event_loop():
    """
    Context manager for proper event loop handling in Celery tasks.
    Creates a new event loop and ensures proper cleanup to prevent resource leaks.
    """
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        yield loop
    finally:
        try:
            # The Redis singleton is bound to this loop; close it before the loop goes away
            from app.core.redis_client import close_redis
            loop.run_until_complete(close_redis())
        except (OSError, RuntimeError) as e:
            logger.warning(
                "Failed to close Redis at task end",
                extra_data={"error": str(e)},
            )
        try:
            pending = asyncio.all_tasks(loop)
            for task in pending:
                task.cancel()
            if pending:
                loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
        finally:
            loop.run_until_complete(loop.shutdown_asyncgens())
            loop.close()


def run_async(coro):
    """Helper to run async code in sync Celery task with proper cleanup"""
    # Set correlation ID for task tracking
    set_correlation_id()

    with get_event_loop() as loop:
        return loop.run_until_complete(coro)


async def _resolve_recipients(db: "AsyncSession", recipient: str) -> list[int]:
    """
    User ids a message goes to.

    Broadcast markers are expanded at send time: admins are every active admin,
    couriers are the active users of approved and available courier profiles.
    """
    if recipient == BROADCAST_ADMINS:
        result = await db.execute(
            select(User.id).where(
                User.role == UserRole.ADMIN,
                User.is_active.is_(True),
            )
        )
        return list(result.scalars().all())

    if recipient == BROADCAST_COURIERS:
        result = await db.execute(
            select(User.id)
            .join(Courier, Courier.user_id == User.id)
            .where(
                User.is_active.is_(True),
                Courier.is_approved.is_(True),
                Courier.is_available.is_(True),
            )
        )
        return list(result.scalars().all())

    return [int(recipient)]


async def _process_single_message(
    message: OutboxMessage,
    gateway: Optional[NotificationGatewayClient] = None,
) -> tuple[bool, str]:
    """Deliver one outbox message and record the outcome"""
    gateway = gateway or NotificationGatewayClient()

    async with get_task_session() as db:
        outbox_service = OutboxService(db)

        await outbox_service.mark_as_processing(message.id)

        try:
            user_ids = await _resolve_recipients(db, message.recipient)

            if not user_ids:
                logger.warning(
                    "Message has no recipients",
                    extra_data={
                        "message_id": message.id,
                        "recipient": message.recipient,
                    }
                )
                await outbox_service.mark_as_failed(message.id, "No recipients available")
                return False, "No recipients available"

            results = await asyncio.gather(
                *[
                    gateway.send(
                        user_id,
                        message.message_type,
                        message.message_content,
                        message_id=message.id,
                    )
                    for user_id in user_ids
                ],
                return_exceptions=True,
            )
            errors = [r for r in results if isinstance(r, BaseException)]
            success_count = len(results) - len(errors)

            if not errors:
                await outbox_service.mark_as_sent(message.id)
                return True, f"Sent to {success_count}/{len(results)} recipients"

            # A broadcast that reached someone is not retried; a retry would repeat it
            if message.is_broadcast and success_count > 0:
                logger.warning(
                    "Partial broadcast",
                    extra_data={
                        "message_id": message.id,
                        "succeeded": success_count,
                        "failed": len(errors),
                        "first_error": str(errors[0]),
                    }
                )
                await outbox_service.mark_as_sent(message.id)
                return True, f"Partial broadcast: {success_count}/{len(results)} succeeded"

            await outbox_service.mark_as_failed(message.id, str(errors[0]))
            return False, str(errors[0])

        except Exception as e:
            logger.error(
                "Outbox message processing error",
                extra_data={"message_id": message.id, "error": str(e)},
                exc_info=True,
            )
            await db.rollback()
            await outbox_service.mark_as_failed(message.id, str(e))
            return False, str(e)


async def _process_pending(
    limit: int,
    gateway: Optional[NotificationGatewayClient] = None,
) -> list[dict]:
    async with get_task_session() as db:
        messages = await OutboxService(db).get_pending_messages(limit=limit)

    gateway = gateway or NotificationGatewayClient()
    results = []
    for message in messages:
        success, result = await _process_single_message(message, gateway)
        results.append({
            "message_id": message.id,
            "success": success,
            "result": result
        })
    return results


@celery_app.task(name="app.workers.tasks.process_outbox_messages")
def process_outbox_messages():
    """
    Process pending messages from the outbox.
    This task runs periodically to ensure reliable message delivery.
    """
    return run_async(_process_pending(settings.OUTBOX_BATCH_SIZE))


@celery_app.task(name="app.workers.tasks.send_message")
def send_message(message_id: int):
    """Send a specific message by ID"""

    async def _send():
        async with get_task_session() as db:
            result = await db.execute(
                select(OutboxMessage).where(OutboxMessage.id == message_id)
            )
            message = result.scalar_one_or_none()

        if not message:
            return {"error": "Message not found"}

        success, result = await _process_single_message(message)
        return {"success": success, "result": result}

    return run_async(_send())


async def _cleanup_sent(days: int) -> dict:
    async with get_task_session() as db:
        cutoff = datetime.utcnow() - timedelta(days=days)
        deleted = await OutboxService(db).delete_sent_before(cutoff)

    logger.info("Old outbox messages deleted", extra_data={"deleted": deleted, "days": days})
    return {"deleted": deleted}


@celery_app.task(name="app.workers.tasks.cleanup_old_messages")
def cleanup_old_messages(days: int = 30):
    """Clean up old processed messages from the outbox"""
    return run_async(_cleanup_sent(days))
