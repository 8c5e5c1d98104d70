"""Order-inserted queue consumer.

Each message gets exactly one processing attempt. Anything short of a
generated coupon is negatively acknowledged without requeue, which discards
the message: there is no retry and no dead-letter queue.
"""

from __future__ import annotations

import asyncio

import structlog
from aio_pika.abc import AbstractChannel, AbstractIncomingMessage, AbstractQueue
from pydantic import ValidationError

from coupon_service.integrations.external_order_client import ExternalOrderClient
from coupon_service.schemas.external_orders import ExternalOrderEvent
from coupon_service.services.coupons import CouponService

logger = structlog.get_logger(__name__)


class ExternalOrderConsumer:
    def __init__(
        self,
        channel: AbstractChannel,
        coupons: CouponService,
        orders: ExternalOrderClient,
        *,
        queue_name: str,
        prefetch: int = 10,
    ):
        self._channel = channel
        self._coupons = coupons
        self._orders = orders
        self.queue_name = queue_name
        self.prefetch = prefetch

        self._queue: AbstractQueue | None = None
        self._consumer_tag: str | None = None
        self._inflight: set[asyncio.Task] = set()

    async def start(self) -> None:
        # prefetch bounds how many handlers run at once
        await self._channel.set_qos(prefetch_count=self.prefetch)
        self._queue = await self._channel.declare_queue(self.queue_name, durable=True)
        self._consumer_tag = await self._queue.consume(self.on_message, no_ack=False)
        logger.info("Consumer listening", queue=self.queue_name, prefetch=self.prefetch)

    async def stop(self) -> None:
        """Stop taking messages and let the ones in flight finish."""
        if self._queue is not None and self._consumer_tag is not None:
            await self._queue.cancel(self._consumer_tag)
            self._consumer_tag = None

        if self._inflight:
            logger.info("Waiting for in-flight messages", count=len(self._inflight))
            await asyncio.gather(*self._inflight, return_exceptions=True)

        logger.info("Consumer stopped", queue=self.queue_name)

    async def on_message(self, message: AbstractIncomingMessage) -> None:
        task = asyncio.current_task()
        if task is not None:
            self._inflight.add(task)

        try:
            with structlog.contextvars.bound_contextvars(delivery_tag=message.delivery_tag):
                if await self.handle(message.body):
                    await message.ack()
                    logger.info("Message acked")
                else:
                    await message.nack(requeue=False)
                    logger.warning("Message nacked and discarded")
        finally:
            if task is not None:
                self._inflight.discard(task)

    async def handle(self, body: bytes) -> bool:
        """Process one message body. True means a coupon was generated."""
        try:
            event = ExternalOrderEvent.model_validate_json(body)
        except ValidationError as e:
            logger.error("Unreadable order-inserted message", error=str(e))
            return False

        try:
            logger.info("Order-inserted message received", platform=event.from_platform, tid=event.tid)

            # the message only locates the order; generate from its current state
            order = await self._orders.query(event.from_platform, event.tid)
            if order is None:
                logger.error("External order not found", platform=event.from_platform, tid=event.tid)
                return False

            result = await self._coupons.generate(order)
            if not result.ok:
                logger.error(
                    "Coupon generation failed",
                    platform=event.from_platform,
                    tid=event.tid,
                    error=result.error,
                    reason=result.msg,
                )
                return False

            return True

        except Exception:
            logger.exception("Order-inserted message crashed", platform=event.from_platform, tid=event.tid)
            return False
