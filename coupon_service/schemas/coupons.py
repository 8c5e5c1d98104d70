# coupon_service/schemas/coupons.py
from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from coupon_service.schemas.enums import CouponEvent, CouponStatus


class CouponDTO(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    coupon: str
    external_order_from_platform: str
    external_order_tid: str

    payment: Decimal
    available_balance: Decimal

    status: CouponStatus = CouponStatus.DEFAULT
    error_code: str | None = None

    proxy_open_id: str | None = None
    proxy_order_id: str | None = None

    create_time: datetime | None = None
    update_time: datetime | None = None

    is_deleted: bool = False


class GenerateManualRequest(BaseModel):
    from_platform: str
    tid: str
    amount: Decimal


class CouponCodeRequest(BaseModel):
    coupon: str


class CouponUpdateRequest(BaseModel):
    coupon: str
    event: CouponEvent


class CouponErrorCodeRequest(BaseModel):
    coupon: str
    error_code: str = Field(..., max_length=64)
