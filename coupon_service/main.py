from contextlib import asynccontextmanager
from datetime import timedelta

import aio_pika
import structlog
from fastapi import FastAPI

# IMPORTANT:
# This imports ALL models so SQLAlchemy registers tables + indexes correctly
import coupon_service.models  # noqa: F401
from coupon_service.core.cache import create_redis
from coupon_service.core.config import settings
from coupon_service.core.db import SessionLocal, engine
from coupon_service.core.logging import configure_logging
from coupon_service.integrations.credentials import CredentialStore
from coupon_service.integrations.external_order_client import ExternalOrderClient
from coupon_service.integrations.rabbitmq import (
    COUPON_GENERATED,
    EXTERNAL_ORDER_INSERTED,
    CouponPublisher,
    PublishConfig,
    queue_name,
)
from coupon_service.integrations.sexytea_client import SexyteaClient
from coupon_service.schemas.enums import TargetProxy
from coupon_service.services.coupons import CouponService
from coupon_service.services.proxy_orders import ProxyOrderService, StalenessPolicy
from coupon_service.services.stores import CouponStore, build_proxy_order_stores
from coupon_service.workers.consumer import ExternalOrderConsumer

# Routers
from coupon_service.routers.coupons import router as coupons_router
from coupon_service.routers.proxy_orders import router as proxy_orders_router

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()

    cache = create_redis()
    connection = await aio_pika.connect_robust(settings.RABBITMQ_URL)

    # no publisher confirms: coupon-generated events are fire and forget
    publish_channel = await connection.channel(publisher_confirms=False)
    publisher = CouponPublisher(
        publish_channel,
        PublishConfig(routing_key=queue_name(settings.QUEUE_PREFIX, COUPON_GENERATED)),
    )
    await publisher.declare()

    coupon_store = CouponStore(SessionLocal, cache, ttl_sec=settings.CACHE_TTL_SEC)
    proxy_stores = build_proxy_order_stores(SessionLocal, cache, ttl_sec=settings.PROXY_ORDER_CACHE_TTL_SEC)
    orders = ExternalOrderClient()

    coupon_service = CouponService(
        coupon_store,
        publisher,
        SessionLocal,
        secret=settings.COUPON_GEN_SECRET,
    )
    proxy_order_service = ProxyOrderService(
        coupon_store,
        proxy_stores,
        orders,
        {TargetProxy.SEXYTEA: SexyteaClient()},
        CredentialStore(cache, {TargetProxy.SEXYTEA: settings.SEXYTEA_TOKEN_HASH}),
        SessionLocal,
        policy=StalenessPolicy(timedelta(hours=settings.PROXY_ORDER_STALE_AFTER_HOURS)),
    )

    app.state.coupon_service = coupon_service
    app.state.proxy_order_service = proxy_order_service

    consumer = None
    if settings.CONSUMER_ENABLED:
        consumer = ExternalOrderConsumer(
            await connection.channel(),
            coupon_service,
            orders,
            queue_name=queue_name(settings.QUEUE_PREFIX, EXTERNAL_ORDER_INSERTED),
            prefetch=settings.CONSUMER_PREFETCH,
        )
        await consumer.start()

    logger.info("Coupon service started", consumer_enabled=consumer is not None)

    try:
        yield
    finally:
        if consumer is not None:
            await consumer.stop()
        await connection.close()
        await cache.aclose()
        await engine.dispose()


app = FastAPI(title="Coupon Service", lifespan=lifespan)

app.include_router(coupons_router)
app.include_router(proxy_orders_router)


@app.get("/health")
async def health():
    return {"status": "ok"}
