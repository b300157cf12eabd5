"""Redis-backed store for checkouts awaiting payment."""
import logging
from typing import Optional

import redis.asyncio as aioredis
from pydantic import ValidationError as SchemaValidationError

from config import PENDING_ORDER_TTL
from schemas import Reservation

logger = logging.getLogger(__name__)

KEY_PREFIX = "pending_order"


def reservation_key(gateway_order_id: str) -> str:
    return f"{KEY_PREFIX}:{gateway_order_id}"


class ReservationStore:
    """
    Pending reservations keyed by gateway order id.

    Redis owns expiry (``SET ... EX``), so a reservation written by one worker
    can be completed by any other and disappears on its own after the TTL.
    Nothing is cached in process memory.
    """

    def __init__(self, redis_client: aioredis.Redis, ttl_seconds: int = PENDING_ORDER_TTL):
        self.redis = redis_client
        self.ttl_seconds = ttl_seconds

    async def put(self, gateway_order_id: str, reservation: Reservation, ttl_seconds: Optional[int] = None) -> None:
        ttl = ttl_seconds or self.ttl_seconds
        await self.redis.set(
            reservation_key(gateway_order_id),
            reservation.model_dump_json(),
            ex=ttl
        )
        logger.info("Stored pending reservation", extra={
            "gateway_order_id": gateway_order_id,
            "ttl_seconds": ttl
        })

    async def get(self, gateway_order_id: str) -> Optional[Reservation]:
        """Return the reservation, or None if it expired or was consumed."""
        raw = await self.redis.get(reservation_key(gateway_order_id))
        if raw is None:
            return None
        try:
            return Reservation.model_validate_json(raw)
        except SchemaValidationError:
            logger.error("Discarding unreadable pending reservation", extra={
                "gateway_order_id": gateway_order_id
            })
            await self.delete(gateway_order_id)
            return None

    async def delete(self, gateway_order_id: str) -> None:
        await self.redis.delete(reservation_key(gateway_order_id))
