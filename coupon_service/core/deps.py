from __future__ import annotations

from fastapi import Request

from coupon_service.services.coupons import CouponService
from coupon_service.services.proxy_orders import ProxyOrderService


# Services are built once in the app lifespan and kept on app.state.
def get_coupon_service(request: Request) -> CouponService:
    return request.app.state.coupon_service


def get_proxy_order_service(request: Request) -> ProxyOrderService:
    return request.app.state.proxy_order_service
