from __future__ import annotations

from dataclasses import dataclass

import aio_pika
import structlog
from aio_pika import DeliveryMode
from aio_pika.abc import AbstractChannel

from coupon_service.schemas.coupons import CouponDTO

logger = structlog.get_logger(__name__)

EXTERNAL_ORDER_INSERTED = "external_order_inserted"
COUPON_GENERATED = "coupon_generated"


def queue_name(prefix: str, name: str) -> str:
    return f"{prefix}{name}"


@dataclass(frozen=True)
class PublishConfig:
    """How coupon-generated messages are published. Built once at startup."""

    routing_key: str
    content_type: str = "text/plain"
    delivery_mode: DeliveryMode = DeliveryMode.PERSISTENT


class CouponPublisher:
    """Publishes generated coupons to the outbound queue.

    Fire and forget: the channel runs without publisher confirms and a failed
    publish is logged, not retried.
    """

    def __init__(self, channel: AbstractChannel, config: PublishConfig):
        self._channel = channel
        self._config = config

    async def declare(self) -> None:
        await self._channel.declare_queue(self._config.routing_key, durable=True)

    async def publish(self, coupon: CouponDTO) -> bool:
        message = aio_pika.Message(
            body=coupon.model_dump_json().encode("utf-8"),
            content_type=self._config.content_type,
            delivery_mode=self._config.delivery_mode,
        )

        try:
            await self._channel.default_exchange.publish(message, routing_key=self._config.routing_key)
        except Exception as e:
            logger.error(
                "Coupon generated event not published",
                coupon=coupon.coupon,
                queue=self._config.routing_key,
                error=str(e),
            )
            return False

        logger.info("Coupon generated event published", coupon=coupon.coupon, queue=self._config.routing_key)
        return True
