from __future__ import annotations

from redis.asyncio import Redis

from coupon_service.core.config import settings
from coupon_service.schemas.enums import TargetProxy


def create_redis(url: str | None = None) -> Redis:
    # decode_responses: every cached value is JSON text
    return Redis.from_url(url or settings.REDIS_URL, decode_responses=True)


def coupon_key(code: str) -> str:
    return f"coupon.{code}"


def coupon_tid_key(platform: str, tid: str) -> str:
    return f"coupon.{platform}.{tid}"


def proxy_order_key(target_proxy: TargetProxy | str, proxy_order_id: str) -> str:
    proxy = target_proxy.value if isinstance(target_proxy, TargetProxy) else target_proxy
    return f"proxyorder.{proxy}.{proxy_order_id}"


def proxy_order_coupon_key(code: str) -> str:
    return f"proxyorder.{code}"


# codes generated and not yet consumed, read by the redemption side
NOT_USED_COUPONS_KEY = "coupon.not_used"
