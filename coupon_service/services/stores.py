from __future__ import annotations

import structlog
from redis.asyncio import Redis
from redis.exceptions import RedisError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from coupon_service.core.cache import (
    NOT_USED_COUPONS_KEY,
    coupon_key,
    coupon_tid_key,
    proxy_order_coupon_key,
    proxy_order_key,
)
from coupon_service.models.coupon import Coupon
from coupon_service.models.proxy_order import PROXY_ORDER_MODELS, ProxyOrderMixin
from coupon_service.schemas.coupons import CouponDTO
from coupon_service.schemas.enums import TargetProxy
from coupon_service.schemas.proxy_orders import ProxyOrderDTO
from coupon_service.services.cache_aside import CacheAsideStore, Lookup

logger = structlog.get_logger(__name__)


class CouponStore(CacheAsideStore[Coupon, CouponDTO]):
    model = Coupon
    dto = CouponDTO
    key_columns = ("coupon", "external_order_from_platform", "external_order_tid")

    def by_code(self, code: str) -> Lookup:
        return Lookup(coupon_key(code), (Coupon.coupon == code,))

    def by_tid(self, platform: str, tid: str) -> Lookup:
        return Lookup(
            coupon_tid_key(platform, tid),
            (
                Coupon.external_order_from_platform == platform,
                Coupon.external_order_tid == tid,
            ),
        )

    def cache_keys(self, dto: CouponDTO) -> list[str]:
        return [
            coupon_key(dto.coupon),
            coupon_tid_key(dto.external_order_from_platform, dto.external_order_tid),
        ]

    def business_criteria(self, dto: CouponDTO):
        return (
            Coupon.external_order_from_platform == dto.external_order_from_platform,
            Coupon.external_order_tid == dto.external_order_tid,
        )

    async def mark_not_used(self, code: str) -> None:
        try:
            await self._cache.sadd(NOT_USED_COUPONS_KEY, code)
        except RedisError as e:
            logger.warning("Not-used coupon set update failed", coupon=code, error=str(e))


class ProxyOrderStore(CacheAsideStore[ProxyOrderMixin, ProxyOrderDTO]):
    """Proxy orders of one target proxy, backed by that proxy's own table."""

    dto = ProxyOrderDTO
    key_columns = ("target_proxy", "proxy_order_id")

    def __init__(
        self,
        target_proxy: TargetProxy,
        sessionmaker: async_sessionmaker[AsyncSession],
        cache: Redis,
        *,
        ttl_sec: int = 60,
    ):
        super().__init__(sessionmaker, cache, ttl_sec=ttl_sec)
        self.target_proxy = target_proxy
        self.model = PROXY_ORDER_MODELS[target_proxy]

    def by_proxy_order_id(self, proxy_order_id: str) -> Lookup:
        return Lookup(
            proxy_order_key(self.target_proxy, proxy_order_id),
            (
                self.model.target_proxy == self.target_proxy.value,
                self.model.proxy_order_id == proxy_order_id,
            ),
        )

    def by_coupon(self, code: str) -> Lookup:
        return Lookup(
            proxy_order_coupon_key(code),
            (
                self.model.target_proxy == self.target_proxy.value,
                self.model.coupon == code,
            ),
        )

    def cache_keys(self, dto: ProxyOrderDTO) -> list[str]:
        return [
            proxy_order_key(dto.target_proxy, dto.proxy_order_id),
            proxy_order_coupon_key(dto.coupon),
        ]

    def business_criteria(self, dto: ProxyOrderDTO):
        return (
            self.model.target_proxy == dto.target_proxy.value,
            self.model.proxy_order_id == dto.proxy_order_id,
        )


def build_proxy_order_stores(
    sessionmaker: async_sessionmaker[AsyncSession],
    cache: Redis,
    *,
    ttl_sec: int = 60,
) -> dict[TargetProxy, ProxyOrderStore]:
    return {
        proxy: ProxyOrderStore(proxy, sessionmaker, cache, ttl_sec=ttl_sec)
        for proxy in PROXY_ORDER_MODELS
    }
