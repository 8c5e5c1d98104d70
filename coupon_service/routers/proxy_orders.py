# coupon_service/routers/proxy_orders.py
from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from coupon_service.core.deps import get_proxy_order_service
from coupon_service.schemas.common import ApiResponse
from coupon_service.schemas.enums import TargetProxy
from coupon_service.schemas.proxy_orders import BackupRequest, ProxyOrderDeleteRequest, ProxyOrderDTO
from coupon_service.services.proxy_orders import ProxyOrderService

router = APIRouter(prefix="/api/proxy-order", tags=["Proxy Orders"])


@router.get("/query", response_model=ApiResponse[ProxyOrderDTO])
async def query(
    coupon: str,
    service: ProxyOrderService = Depends(get_proxy_order_service),
):
    return await service.get(coupon)


@router.get("/query-coupons", response_model=ApiResponse[list[ProxyOrderDTO]])
async def query_coupons(
    target_proxy: TargetProxy,
    coupons: list[str] = Query(default=[]),
    order_status: str | None = Query(default=None),
    service: ProxyOrderService = Depends(get_proxy_order_service),
):
    return await service.get_many(target_proxy, coupons, order_status)


@router.post("/insert", response_model=ApiResponse[bool])
async def insert(
    body: ProxyOrderDTO,
    service: ProxyOrderService = Depends(get_proxy_order_service),
):
    return await service.insert(body)


@router.post("/update", response_model=ApiResponse[bool])
async def update(
    body: ProxyOrderDTO,
    service: ProxyOrderService = Depends(get_proxy_order_service),
):
    return await service.update(body)


@router.post("/delete", response_model=ApiResponse[bool])
async def delete(
    body: ProxyOrderDeleteRequest,
    service: ProxyOrderService = Depends(get_proxy_order_service),
):
    return await service.delete(body.target_proxy, body.proxy_order_id)


@router.post("/backup", response_model=ApiResponse[int])
async def backup(
    body: BackupRequest,
    service: ProxyOrderService = Depends(get_proxy_order_service),
):
    return await service.backup(body.target_proxy, body.start, body.end)
