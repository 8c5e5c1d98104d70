# coupon_service/services/proxy_orders.py
"""Proxy order resolution.

A proxy order can be read from three places: the cache, the proxy's own
table, or the proxy's live API. Coupons older than the staleness threshold
are assumed settled, so a local copy is trusted when one exists. Younger
coupons always go to the API. API results are not stored here; `backup`
is what persists them.
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Protocol

import structlog
from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from coupon_service.core.errors import NotFound, PersistenceFailure, UpstreamFailure, ValidationFailure
from coupon_service.integrations.credentials import CredentialStore
from coupon_service.integrations.external_order_client import ExternalOrderClient
from coupon_service.models.coupon import Coupon
from coupon_service.models.external_order import ExternalOrder
from coupon_service.schemas.common import ApiResponse
from coupon_service.schemas.coupons import CouponDTO
from coupon_service.schemas.enums import Origin, TargetProxy
from coupon_service.schemas.proxy_orders import ProxyCredential, ProxyOrderDTO
from coupon_service.services.results import reports_failures
from coupon_service.services.stores import CouponStore, ProxyOrderStore

logger = structlog.get_logger(__name__)


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(dt: datetime) -> datetime:
    # sqlite hands timestamps back without tzinfo; everything is stored in UTC
    return dt.replace(tzinfo=timezone.utc) if dt.tzinfo is None else dt


class ProxyOrderUpstream(Protocol):
    async def fetch_order(self, credential: ProxyCredential, proxy_order_id: str) -> dict | None: ...

    def parse_status(self, payload: dict) -> str | None: ...


@dataclass(frozen=True)
class StalenessPolicy:
    threshold: timedelta = timedelta(days=1)

    def trusts_local(self, created_at: datetime | None, now: datetime) -> bool:
        if created_at is None:
            return False
        return now - _as_utc(created_at) > self.threshold


class ProxyOrderService:
    def __init__(
        self,
        coupon_store: CouponStore,
        proxy_stores: dict[TargetProxy, ProxyOrderStore],
        orders: ExternalOrderClient,
        upstreams: dict[TargetProxy, ProxyOrderUpstream],
        credentials: CredentialStore,
        sessionmaker: async_sessionmaker[AsyncSession],
        *,
        policy: StalenessPolicy | None = None,
        clock: Callable[[], datetime] = _now_utc,
    ):
        self.coupon_store = coupon_store
        self.proxy_stores = proxy_stores
        self.orders = orders
        self.upstreams = upstreams
        self.credentials = credentials
        self._sessionmaker = sessionmaker
        self.policy = policy or StalenessPolicy()
        self._clock = clock

    def _target_proxy(self, value: str | None) -> TargetProxy:
        try:
            proxy = TargetProxy(value)
        except ValueError:
            raise ValidationFailure(f"unknown target proxy [{value}]")

        if proxy not in self.proxy_stores or proxy not in self.upstreams:
            raise ValidationFailure(f"target proxy [{proxy.value}] is not configured")
        return proxy

    # -------------------------
    # Resolution
    # -------------------------
    @reports_failures("proxy_order.get")
    async def get(self, code: str) -> ApiResponse[ProxyOrderDTO]:
        found = await self.coupon_store.get(self.coupon_store.by_code(code))
        if found is None:
            raise NotFound(f"cannot find coupon [{code}]")
        coupon = found.value

        order = await self.orders.query(coupon.external_order_from_platform, coupon.external_order_tid)
        if order is None:
            raise NotFound(
                f"cannot find external order [{coupon.external_order_from_platform}, {coupon.external_order_tid}]"
            )

        target_proxy = self._target_proxy(order.target_proxy)
        if not coupon.proxy_order_id:
            raise NotFound(f"coupon [{code}] has no proxy order")

        now = self._clock()

        if self.policy.trusts_local(coupon.create_time, now):
            store = self.proxy_stores[target_proxy]
            local = await store.get(store.by_coupon(coupon.coupon))
            if local is not None:
                return ApiResponse[ProxyOrderDTO].success(
                    local.value, msg=f"from {local.origin.value}", origin=local.origin
                )

        proxy_order = await self._fetch_live(target_proxy, coupon, now)
        return ApiResponse[ProxyOrderDTO].success(proxy_order, msg="from api", origin=Origin.API)

    async def _fetch_live(self, target_proxy: TargetProxy, coupon: CouponDTO, now: datetime) -> ProxyOrderDTO:
        credential = await self.credentials.get(target_proxy, coupon.proxy_open_id)
        if credential is None or credential.is_expired(now):
            raise UpstreamFailure(f"credential expired: {target_proxy.value} account [{coupon.proxy_open_id}]")

        upstream = self.upstreams[target_proxy]
        payload = await upstream.fetch_order(credential, coupon.proxy_order_id)
        if payload is None:
            raise NotFound(f"{target_proxy.value} found nothing with proxy order [{coupon.proxy_order_id}]")

        return ProxyOrderDTO(
            target_proxy=target_proxy,
            proxy_order_id=coupon.proxy_order_id,
            coupon=coupon.coupon,
            external_order_from_platform=coupon.external_order_from_platform,
            external_order_tid=coupon.external_order_tid,
            order=json.dumps(payload, ensure_ascii=False),
            order_status=upstream.parse_status(payload),
        )

    @reports_failures("proxy_order.get_many")
    async def get_many(
        self,
        target_proxy: TargetProxy,
        codes: list[str],
        order_status: str | None = None,
    ) -> ApiResponse[list[ProxyOrderDTO]]:
        if not codes:
            return ApiResponse[list[ProxyOrderDTO]].success([], msg="input coupons is blank")

        unique = list(dict.fromkeys(codes))
        results = await asyncio.gather(*(self.get(code) for code in unique))

        proxy_orders = [
            r.data
            for r in results
            if r.ok and r.data is not None and r.data.target_proxy == target_proxy
        ]
        if order_status is not None:
            proxy_orders = [po for po in proxy_orders if po.order_status == order_status]

        return ApiResponse[list[ProxyOrderDTO]].success(proxy_orders)

    # -------------------------
    # Backfill
    # -------------------------
    @reports_failures("proxy_order.backup")
    async def backup(self, target_proxy: TargetProxy, start: datetime, end: datetime) -> ApiResponse[int]:
        """Persist proxy orders that so far were only ever read from the API.

        Items are inserted one by one; a failure midway keeps earlier inserts.
        """
        store = self._store_for(target_proxy)

        stmt = (
            select(Coupon.coupon)
            .join(
                ExternalOrder,
                and_(
                    Coupon.external_order_from_platform == ExternalOrder.from_platform,
                    Coupon.external_order_tid == ExternalOrder.tid,
                ),
            )
            .where(
                Coupon.create_time > start,
                Coupon.create_time < end,
                Coupon.is_deleted.is_(False),
                Coupon.proxy_order_id.is_not(None),
                Coupon.proxy_order_id != "",
                ExternalOrder.target_proxy == target_proxy.value,
            )
            .order_by(Coupon.create_time)
        )

        async with self._sessionmaker() as session:
            codes = list((await session.execute(stmt)).scalars().all())

        logger.info(
            "Backup candidates found",
            target_proxy=target_proxy.value,
            count=len(codes),
            start=start.isoformat(),
            end=end.isoformat(),
        )

        inserted = 0
        for code in codes:
            resp = await self.get(code)
            if not resp.ok or resp.origin is not Origin.API:
                continue

            try:
                await store.insert(resp.data)
            except PersistenceFailure as e:
                logger.warning("Backup insert failed", coupon=code, error=str(e))
                continue
            inserted += 1

        logger.info("Backup finished", target_proxy=target_proxy.value, inserted=inserted)
        return ApiResponse[int].success(inserted)

    # -------------------------
    # Writes
    # -------------------------
    def _store_for(self, target_proxy: TargetProxy) -> ProxyOrderStore:
        store = self.proxy_stores.get(target_proxy)
        if store is None:
            raise ValidationFailure(f"target proxy [{target_proxy.value}] is not configured")
        return store

    @reports_failures("proxy_order.insert")
    async def insert(self, proxy_order: ProxyOrderDTO) -> ApiResponse[bool]:
        await self._store_for(proxy_order.target_proxy).insert(proxy_order)
        logger.info("Proxy order inserted", proxy_order_id=proxy_order.proxy_order_id)
        return ApiResponse[bool].success(True)

    @reports_failures("proxy_order.update")
    async def update(self, proxy_order: ProxyOrderDTO) -> ApiResponse[bool]:
        await self._store_for(proxy_order.target_proxy).write(proxy_order)
        logger.info("Proxy order updated", proxy_order_id=proxy_order.proxy_order_id)
        return ApiResponse[bool].success(True)

    @reports_failures("proxy_order.delete")
    async def delete(self, target_proxy: TargetProxy, proxy_order_id: str) -> ApiResponse[bool]:
        store = self._store_for(target_proxy)
        await store.delete(store.by_proxy_order_id(proxy_order_id))
        logger.info("Proxy order deleted", target_proxy=target_proxy.value, proxy_order_id=proxy_order_id)
        return ApiResponse[bool].success(True)
