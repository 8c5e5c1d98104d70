from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from fakeredis import aioredis
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

import coupon_service.models  # noqa: F401
from coupon_service.core.db import Base
from coupon_service.integrations.credentials import CredentialStore
from coupon_service.integrations.sexytea_client import SexyteaClient
from coupon_service.models.external_order import ExternalOrder
from coupon_service.schemas.coupons import CouponDTO
from coupon_service.schemas.enums import CouponStatus, TargetProxy
from coupon_service.schemas.external_orders import ExternalOrderDTO
from coupon_service.schemas.proxy_orders import ProxyCredential, ProxyOrderDTO
from coupon_service.services.coupons import CouponService
from coupon_service.services.proxy_orders import ProxyOrderService
from coupon_service.services.stores import CouponStore, build_proxy_order_stores

TOKEN_HASH = "sexytea.token.account"
SECRET = "test-secret"


# ---------------------------------------------------------------------------
# Fakes for the remote collaborators
# ---------------------------------------------------------------------------
class FakePublisher:
    def __init__(self):
        self.published: list[CouponDTO] = []

    async def publish(self, coupon: CouponDTO) -> bool:
        self.published.append(coupon)
        return True


class FakeExternalOrders:
    def __init__(self):
        self.orders: dict[tuple[str, str], ExternalOrderDTO] = {}
        self.calls: list[tuple[str, str]] = []
        self.error: Exception | None = None

    def add(self, from_platform: str, tid: str, payment="10.00", target_proxy="sexytea") -> ExternalOrderDTO:
        order = ExternalOrderDTO(
            from_platform=from_platform,
            tid=tid,
            payment=Decimal(payment),
            target_proxy=target_proxy,
            status="paid",
        )
        self.orders[(from_platform, tid)] = order
        return order

    async def query(self, from_platform: str, tid: str) -> ExternalOrderDTO | None:
        self.calls.append((from_platform, tid))
        if self.error is not None:
            raise self.error
        return self.orders.get((from_platform, tid))


class FakeSexytea(SexyteaClient):
    def __init__(self):
        super().__init__(base_url="http://sexytea.invalid")
        self.payloads: dict[str, dict] = {}
        self.calls: list[str] = []

    def add(self, proxy_order_id: str, status: str = "FINISHED") -> dict:
        payload = {"code": 0, "data": {"orderId": proxy_order_id, "status": status}}
        self.payloads[proxy_order_id] = payload
        return payload

    async def fetch_order(self, credential: ProxyCredential, proxy_order_id: str) -> dict | None:
        self.calls.append(proxy_order_id)
        return self.payloads.get(proxy_order_id)


# ---------------------------------------------------------------------------
# Infrastructure
# ---------------------------------------------------------------------------
@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'coupon.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def sessionmaker(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture
async def cache():
    redis = aioredis.FakeRedis(decode_responses=True)
    yield redis
    await redis.flushall()
    await redis.aclose()


@pytest.fixture
def publisher():
    return FakePublisher()


@pytest.fixture
def external_orders():
    return FakeExternalOrders()


@pytest.fixture
def sexytea():
    return FakeSexytea()


@pytest.fixture
def coupon_store(sessionmaker, cache):
    return CouponStore(sessionmaker, cache, ttl_sec=60)


@pytest.fixture
def proxy_stores(sessionmaker, cache):
    return build_proxy_order_stores(sessionmaker, cache, ttl_sec=60)


@pytest.fixture
def coupon_service(coupon_store, publisher, sessionmaker):
    return CouponService(coupon_store, publisher, sessionmaker, secret=SECRET)


@pytest.fixture
def credentials(cache):
    return CredentialStore(cache, {TargetProxy.SEXYTEA: TOKEN_HASH})


@pytest.fixture
def proxy_order_service(coupon_store, proxy_stores, external_orders, sexytea, credentials, sessionmaker):
    return ProxyOrderService(
        coupon_store,
        proxy_stores,
        external_orders,
        {TargetProxy.SEXYTEA: sexytea},
        credentials,
        sessionmaker,
    )


# ---------------------------------------------------------------------------
# Seeding helpers
# ---------------------------------------------------------------------------
def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def make_coupon(
    code: str,
    *,
    platform: str = "TAOBAO",
    tid: str | None = None,
    amount: str = "10.00",
    age: timedelta = timedelta(0),
    proxy_open_id: str | None = "open-1",
    proxy_order_id: str | None = None,
    status: CouponStatus = CouponStatus.GENERATED,
) -> CouponDTO:
    created = now_utc() - age
    return CouponDTO(
        coupon=code,
        external_order_from_platform=platform,
        external_order_tid=tid or f"tid-{code}",
        payment=Decimal(amount),
        available_balance=Decimal(amount),
        status=status,
        proxy_open_id=proxy_open_id,
        proxy_order_id=proxy_order_id,
        create_time=created,
        update_time=created,
    )


def make_proxy_order(coupon: CouponDTO, status: str = "LOCAL") -> ProxyOrderDTO:
    return ProxyOrderDTO(
        target_proxy=TargetProxy.SEXYTEA,
        proxy_order_id=coupon.proxy_order_id,
        coupon=coupon.coupon,
        external_order_from_platform=coupon.external_order_from_platform,
        external_order_tid=coupon.external_order_tid,
        order='{"data": {"status": "%s"}}' % status,
        order_status=status,
    )


async def store_credential(cache, open_id: str = "open-1", expires_in: timedelta = timedelta(hours=1)) -> None:
    credential = ProxyCredential(value=f"token-{open_id}", expiry=now_utc() + expires_in)
    await cache.hset(TOKEN_HASH, open_id, credential.model_dump_json())


async def store_external_order(sessionmaker, coupon: CouponDTO, target_proxy: str = "sexytea") -> None:
    async with sessionmaker() as session:
        async with session.begin():
            session.add(
                ExternalOrder(
                    from_platform=coupon.external_order_from_platform,
                    tid=coupon.external_order_tid,
                    target_proxy=target_proxy,
                    payment=coupon.payment,
                    status="paid",
                    create_time=coupon.create_time,
                )
            )
