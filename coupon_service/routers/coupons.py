# coupon_service/routers/coupons.py
from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, Query

from coupon_service.core.deps import get_coupon_service
from coupon_service.schemas.common import ApiResponse, PageResult
from coupon_service.schemas.coupons import (
    CouponCodeRequest,
    CouponDTO,
    CouponErrorCodeRequest,
    CouponUpdateRequest,
    GenerateManualRequest,
)
from coupon_service.schemas.enums import CouponEvent, CouponStatus, TargetProxy
from coupon_service.schemas.external_orders import ExternalOrderDTO
from coupon_service.services.coupons import CouponService

router = APIRouter(prefix="/api/coupon", tags=["Coupons"])


@router.get("/query-coupon", response_model=ApiResponse[CouponDTO])
async def query_coupon(
    coupon: str,
    service: CouponService = Depends(get_coupon_service),
):
    return await service.get(coupon)


@router.get("/query-tid", response_model=ApiResponse[CouponDTO])
async def query_tid(
    tid: str,
    from_platform: str,
    service: CouponService = Depends(get_coupon_service),
):
    return await service.get_by_tid(from_platform, tid)


@router.get("/validate", response_model=ApiResponse[list[CouponDTO]])
async def validate(
    coupons: list[str] = Query(default=[]),
    status: CouponStatus = Query(default=CouponStatus.DEFAULT),
    service: CouponService = Depends(get_coupon_service),
):
    # DEFAULT means "any status"
    wanted = None if status == CouponStatus.DEFAULT else status
    return await service.get_many(coupons, wanted)


@router.post("/invalidate", response_model=ApiResponse[bool])
async def invalidate(
    body: CouponCodeRequest,
    service: CouponService = Depends(get_coupon_service),
):
    return await service.apply_event(body.coupon, CouponEvent.MANUAL_CANCEL)


@router.get("/page-query", response_model=ApiResponse[PageResult[CouponDTO]])
async def page_query(
    page: int = Query(default=1, ge=1),
    size: int = Query(default=10, ge=1, le=500),
    status: CouponStatus | None = Query(default=None),
    start: datetime | None = Query(default=None, alias="from"),
    end: datetime | None = Query(default=None, alias="to"),
    service: CouponService = Depends(get_coupon_service),
):
    return await service.page(page, size, status, start, end)


@router.get("/personal-coupons", response_model=ApiResponse[list[CouponDTO]])
async def personal_coupons(
    coupon: str,
    target_proxy: TargetProxy,
    start: datetime | None = Query(default=None, alias="from"),
    end: datetime | None = Query(default=None, alias="to"),
    limit: int | None = Query(default=None, ge=1),
    service: CouponService = Depends(get_coupon_service),
):
    return await service.personal_coupons(coupon, target_proxy, start, end, limit)


@router.post("/generate", response_model=ApiResponse[CouponDTO])
async def generate(
    body: ExternalOrderDTO,
    service: CouponService = Depends(get_coupon_service),
):
    return await service.generate(body)


@router.post("/generate-manual", response_model=ApiResponse[CouponDTO])
async def generate_manual(
    body: GenerateManualRequest,
    service: CouponService = Depends(get_coupon_service),
):
    return await service.generate_manual(body.from_platform, body.tid, body.amount)


@router.post("/delete", response_model=ApiResponse[bool])
async def delete(
    body: CouponCodeRequest,
    service: CouponService = Depends(get_coupon_service),
):
    return await service.delete(body.coupon)


@router.post("/update", response_model=ApiResponse[bool])
async def update(
    body: CouponUpdateRequest,
    service: CouponService = Depends(get_coupon_service),
):
    return await service.apply_event(body.coupon, body.event)


@router.post("/update-error", response_model=ApiResponse[bool])
async def update_error(
    body: CouponErrorCodeRequest,
    service: CouponService = Depends(get_coupon_service),
):
    return await service.update_error_code(body.coupon, body.error_code)
