# coupon_service/services/coupons.py
from __future__ import annotations

import hashlib
import hmac
from datetime import datetime, timezone
from decimal import Decimal

import structlog
from sqlalchemy import and_, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from coupon_service.core.errors import NotFound, ValidationFailure
from coupon_service.integrations.rabbitmq import CouponPublisher
from coupon_service.models.coupon import Coupon
from coupon_service.models.external_order import ExternalOrder
from coupon_service.schemas.common import ApiResponse, PageResult
from coupon_service.schemas.coupons import CouponDTO
from coupon_service.schemas.enums import CouponEvent, CouponStatus, TargetProxy
from coupon_service.schemas.external_orders import ExternalOrderDTO
from coupon_service.services.results import reports_failures
from coupon_service.services.stores import CouponStore

logger = structlog.get_logger(__name__)


# (event, current status) -> new status
STATUS_TRANSITIONS: dict[tuple[CouponEvent, CouponStatus], CouponStatus] = {
    (CouponEvent.CONSUME, CouponStatus.GENERATED): CouponStatus.CONSUMED,
    (CouponEvent.MANUAL_CANCEL, CouponStatus.GENERATED): CouponStatus.INVALIDATED,
    (CouponEvent.RECYCLE, CouponStatus.CONSUMED): CouponStatus.RECYCLED,
}


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def manual_coupon_code(from_platform: str, tid: str) -> str:
    return hashlib.sha256(f"{from_platform}{tid}".encode("utf-8")).hexdigest()[:32]


def order_coupon_code(secret: str, from_platform: str, tid: str) -> str:
    digest = hmac.new(secret.encode("utf-8"), f"{from_platform}{tid}".encode("utf-8"), hashlib.sha256)
    return digest.hexdigest()[:32]


def next_status(current: CouponStatus, event: CouponEvent) -> CouponStatus:
    new_status = STATUS_TRANSITIONS.get((event, current))
    if new_status is None:
        raise ValidationFailure(f"event [{event.value}] not allowed for status [{current.name}]")
    return new_status


class CouponService:
    def __init__(
        self,
        store: CouponStore,
        publisher: CouponPublisher,
        sessionmaker: async_sessionmaker[AsyncSession],
        *,
        secret: str,
    ):
        self.store = store
        self.publisher = publisher
        self._sessionmaker = sessionmaker
        self._secret = secret

    # -------------------------
    # Generation
    # -------------------------
    @reports_failures("coupon.generate")
    async def generate(self, order: ExternalOrderDTO) -> ApiResponse[CouponDTO]:
        reason = order.generation_error()
        if reason:
            raise ValidationFailure(reason)

        logger.info("Order passed generation checks", platform=order.from_platform, tid=order.tid)

        coupon = self._new_coupon(
            code=order_coupon_code(self._secret, order.from_platform, order.tid),
            from_platform=order.from_platform,
            tid=order.tid,
            amount=order.payment,
        )
        return await self._create(coupon)

    @reports_failures("coupon.generate_manual")
    async def generate_manual(self, from_platform: str, tid: str, amount: Decimal) -> ApiResponse[CouponDTO]:
        reason = ExternalOrderDTO(from_platform=from_platform, tid=tid, payment=amount).generation_error()
        if reason:
            raise ValidationFailure(reason)

        coupon = self._new_coupon(
            code=manual_coupon_code(from_platform, tid),
            from_platform=from_platform,
            tid=tid,
            amount=amount,
        )
        return await self._create(coupon)

    def _new_coupon(self, *, code: str, from_platform: str, tid: str, amount: Decimal) -> CouponDTO:
        now = _now_utc()
        return CouponDTO(
            coupon=code,
            external_order_from_platform=from_platform,
            external_order_tid=tid,
            payment=amount,
            available_balance=amount,
            status=CouponStatus.GENERATED,
            create_time=now,
            update_time=now,
        )

    async def _create(self, coupon: CouponDTO) -> ApiResponse[CouponDTO]:
        stored = await self.store.insert(coupon)
        logger.info(
            "Coupon generated",
            coupon=stored.coupon,
            platform=stored.external_order_from_platform,
            tid=stored.external_order_tid,
        )

        # committed already; neither follow-up is retried
        await self.store.mark_not_used(stored.coupon)
        await self.publisher.publish(stored)

        return ApiResponse[CouponDTO].success(stored)

    # -------------------------
    # Reads
    # -------------------------
    @reports_failures("coupon.get")
    async def get(self, code: str) -> ApiResponse[CouponDTO]:
        found = await self.store.get(self.store.by_code(code))
        if found is None:
            raise NotFound(f"coupon [{code}] not found")
        return ApiResponse[CouponDTO].success(found.value, msg=f"from {found.origin.value}", origin=found.origin)

    @reports_failures("coupon.get_by_tid")
    async def get_by_tid(self, from_platform: str, tid: str) -> ApiResponse[CouponDTO]:
        found = await self.store.get(self.store.by_tid(from_platform, tid))
        if found is None:
            raise NotFound(f"coupon for [{from_platform}, {tid}] not found")
        return ApiResponse[CouponDTO].success(found.value, msg=f"from {found.origin.value}", origin=found.origin)

    @reports_failures("coupon.get_many")
    async def get_many(self, codes: list[str], status: CouponStatus | None = None) -> ApiResponse[list[CouponDTO]]:
        if not codes:
            return ApiResponse[list[CouponDTO]].success([], msg="input coupons is blank")

        predicate = (lambda c: c.status == status) if status is not None else None

        coupons = await self.store.batch_get((self.store.by_code(code) for code in codes), predicate)
        return ApiResponse[list[CouponDTO]].success(coupons)

    @reports_failures("coupon.page")
    async def page(
        self,
        page: int = 1,
        size: int = 10,
        status: CouponStatus | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> ApiResponse[PageResult[CouponDTO]]:
        if page < 1 or size < 1:
            raise ValidationFailure("page and size must be positive")

        stmt = select(Coupon).where(Coupon.is_deleted.is_(False))
        if status is not None:
            stmt = stmt.where(Coupon.status == int(status))
        if start is not None:
            stmt = stmt.where(Coupon.create_time >= start)
        if end is not None:
            stmt = stmt.where(Coupon.create_time <= end)

        async with self._sessionmaker() as session:
            total = (await session.execute(select(func.count()).select_from(stmt.subquery()))).scalar_one()
            res = await session.execute(
                stmt.order_by(Coupon.create_time.desc()).offset((page - 1) * size).limit(size)
            )
            items = [CouponDTO.model_validate(c) for c in res.scalars().all()]

        return ApiResponse[PageResult[CouponDTO]].success(
            PageResult[CouponDTO](total=total, page=page, size=size, items=items)
        )

    @reports_failures("coupon.personal_coupons")
    async def personal_coupons(
        self,
        code: str,
        target_proxy: TargetProxy,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int | None = None,
    ) -> ApiResponse[list[CouponDTO]]:
        """Coupons redeemed through the same proxy account as `code`, newest first."""
        if limit is not None and limit < 1:
            raise ValidationFailure("limit must be positive")

        found = await self.store.get(self.store.by_code(code))
        if found is None:
            raise NotFound(f"coupon [{code}] not found")

        open_id = found.value.proxy_open_id
        if not open_id:
            return ApiResponse[list[CouponDTO]].success([], msg=f"coupon [{code}] has no proxy account")

        stmt = (
            select(Coupon)
            .join(
                ExternalOrder,
                and_(
                    Coupon.external_order_from_platform == ExternalOrder.from_platform,
                    Coupon.external_order_tid == ExternalOrder.tid,
                ),
            )
            .where(
                Coupon.is_deleted.is_(False),
                Coupon.proxy_open_id == open_id,
                ExternalOrder.target_proxy == target_proxy.value,
            )
        )
        if start is not None:
            stmt = stmt.where(Coupon.create_time >= start)
        if end is not None:
            stmt = stmt.where(Coupon.create_time <= end)

        stmt = stmt.order_by(Coupon.create_time.desc())
        if limit is not None:
            stmt = stmt.limit(limit)

        async with self._sessionmaker() as session:
            res = await session.execute(stmt)
            items = [CouponDTO.model_validate(c) for c in res.scalars().all()]

        return ApiResponse[list[CouponDTO]].success(items)

    # -------------------------
    # Writes
    # -------------------------
    @reports_failures("coupon.update")
    async def update(self, coupon: CouponDTO) -> ApiResponse[bool]:
        await self.store.write(coupon)
        logger.info("Coupon updated", coupon=coupon.coupon, status=coupon.status.name)
        return ApiResponse[bool].success(True)

    @reports_failures("coupon.apply_event")
    async def apply_event(self, code: str, event: CouponEvent) -> ApiResponse[bool]:
        found = await self.store.get(self.store.by_code(code))
        if found is None:
            raise NotFound(f"coupon [{code}] not found")

        coupon = found.value
        new_status = next_status(coupon.status, event)
        logger.info(
            "Coupon status transition",
            coupon=code,
            coupon_event=event.value,
            old_status=coupon.status.name,
            new_status=new_status.name,
        )

        await self.store.write(coupon.model_copy(update={"status": new_status}))
        return ApiResponse[bool].success(True)

    @reports_failures("coupon.update_error_code")
    async def update_error_code(self, code: str, error_code: str) -> ApiResponse[bool]:
        found = await self.store.get(self.store.by_code(code))
        if found is None:
            raise NotFound(f"coupon [{code}] not exist")

        await self.store.write(found.value.model_copy(update={"error_code": error_code}))
        return ApiResponse[bool].success(True)

    @reports_failures("coupon.delete")
    async def delete(self, code: str) -> ApiResponse[bool]:
        await self.store.delete(self.store.by_code(code))
        logger.info("Coupon deleted", coupon=code)
        return ApiResponse[bool].success(True)
