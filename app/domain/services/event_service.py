"""
Delivery Event Service - real-time status events over Redis Pub/Sub

Events are scoped: each one goes to the channel of the order, of the assigned
courier and of the restaurant, so a listener only receives what concerns it.
A short history per channel lets a reconnecting client catch up.

Publishing is best effort. It runs after the state change committed and a
Redis failure is logged, never raised.
"""
import enum
import json
from datetime import datetime, timezone
from typing import Any

from app.core.config import settings
from app.core.logging import get_logger
from app.core.redis_client import get_redis

logger = get_logger(__name__)

_CHANNEL_PREFIX = "delivery_events"
_HISTORY_PREFIX = "delivery_event_history"


class DeliveryEventType(str, enum.Enum):
    DELIVERY_CREATED = "delivery_created"
    STATUS_CHANGED = "delivery_status_changed"


def order_channel(order_id: int) -> str:
    return f"{_CHANNEL_PREFIX}:order:{order_id}"


def courier_channel(courier_id: int) -> str:
    return f"{_CHANNEL_PREFIX}:courier:{courier_id}"


def restaurant_channel(restaurant_id: int) -> str:
    return f"{_CHANNEL_PREFIX}:restaurant:{restaurant_id}"


def _history_key(channel: str) -> str:
    return f"{_HISTORY_PREFIX}:{channel.removeprefix(_CHANNEL_PREFIX + ':')}"


def channels_for(
    order_id: int,
    restaurant_id: int | None,
    courier_id: int | None,
) -> list[str]:
    """Every channel interested in one delivery"""
    channels = [order_channel(order_id)]
    if courier_id is not None:
        channels.append(courier_channel(courier_id))
    if restaurant_id is not None:
        channels.append(restaurant_channel(restaurant_id))
    return channels


async def publish_delivery_event(
    event_type: DeliveryEventType,
    *,
    delivery_id: int,
    order_id: int,
    status: str,
    restaurant_id: int | None = None,
    courier_id: int | None = None,
    data: dict[str, Any] | None = None,
) -> None:
    """Publish one event to every scoped channel and append it to their history"""
    channels = channels_for(order_id, restaurant_id, courier_id)
    try:
        payload = {
            "type": event_type.value,
            "delivery_id": delivery_id,
            "order_id": order_id,
            "status": status,
            "courier_id": courier_id,
            "data": data or {},
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        message = json.dumps(payload, ensure_ascii=False, default=str)

        redis = await get_redis()
        for channel in channels:
            await redis.publish(channel, message)
            history_key = _history_key(channel)
            await redis.lpush(history_key, message)
            await redis.ltrim(history_key, 0, settings.DELIVERY_EVENT_HISTORY_SIZE - 1)

        logger.info(
            "Delivery event published",
            extra_data={
                "delivery_id": delivery_id,
                "event_type": event_type.value,
                "status": status,
                "channels": len(channels),
            },
        )
    except Exception as e:
        logger.error(
            "Failed to publish delivery event",
            extra_data={
                "delivery_id": delivery_id,
                "event_type": event_type.value,
                "error": str(e),
            },
            exc_info=True,
        )


async def get_event_history(channel: str, limit: int = 20) -> list[dict[str, Any]]:
    """Most recent events of a channel, newest first; empty when Redis is down"""
    try:
        redis = await get_redis()
        raw_items = await redis.lrange(_history_key(channel), 0, limit - 1)
        return [json.loads(item) for item in raw_items]
    except Exception as e:
        logger.error(
            "Failed to read delivery event history",
            extra_data={"channel": channel, "error": str(e)},
            exc_info=True,
        )
        return []
