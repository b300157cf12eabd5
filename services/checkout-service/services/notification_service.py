"""Fire-and-forget notification and fulfillment dispatch."""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Set

from config import DISPATCH_MAX_ATTEMPTS, DISPATCH_RETRY_BACKOFF_SECONDS
from monitoring import dispatch_failures_counter
from services.external_service import ExternalServiceClient

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    """
    Runs side effects of a completed order as background asyncio tasks.

    Each job is retried with linear backoff. A job that exhausts its attempts
    is logged and counted; it never raises into, or waits on, the request
    that scheduled it.
    """

    def __init__(
        self,
        external_service: ExternalServiceClient,
        max_attempts: int = DISPATCH_MAX_ATTEMPTS,
        backoff_seconds: float = DISPATCH_RETRY_BACKOFF_SECONDS
    ):
        self.external_service = external_service
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self._tasks: Set[asyncio.Task] = set()

    def order_confirmed(self, order: Dict[str, Any]) -> None:
        """Schedule the confirmation email and shipment creation."""
        self._schedule("order_confirmation_email", self.external_service.send_order_confirmation, order)
        self._schedule("create_shipment", self.external_service.create_shipment, order)

    def order_shipped(self, order: Dict[str, Any]) -> None:
        """Schedule the shipping-update email."""
        self._schedule("shipping_update_email", self.external_service.send_shipping_update, order)

    def _schedule(
        self,
        job: str,
        handler: Callable[[Dict[str, Any]], Awaitable[Any]],
        order: Dict[str, Any]
    ) -> None:
        task = asyncio.get_running_loop().create_task(
            self._run(job, handler, order),
            name=f"dispatch:{job}:{order.get('id')}"
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(
        self,
        job: str,
        handler: Callable[[Dict[str, Any]], Awaitable[Any]],
        order: Dict[str, Any]
    ) -> None:
        for attempt in range(1, self.max_attempts + 1):
            try:
                await handler(order)
                return
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning("Dispatch attempt failed", extra={
                    "job": job,
                    "order_id": order.get("id"),
                    "attempt": attempt,
                    "error": str(e)
                })
                if attempt < self.max_attempts:
                    await asyncio.sleep(self.backoff_seconds * attempt)

        dispatch_failures_counter.add(1, {"job": job})
        logger.error("Dispatch job failed after retries", extra={
            "job": job,
            "order_id": order.get("id"),
            "attempts": self.max_attempts
        })

    async def drain(self) -> None:
        """Wait for scheduled jobs; used on shutdown."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
