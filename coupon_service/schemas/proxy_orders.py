from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict

from coupon_service.schemas.enums import TargetProxy


class ProxyOrderDTO(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    target_proxy: TargetProxy
    proxy_order_id: str

    coupon: str
    external_order_from_platform: str
    external_order_tid: str

    order: str | None = None
    order_status: str | None = None

    create_time: datetime | None = None
    update_time: datetime | None = None

    is_deleted: bool = False


class ProxyOrderDeleteRequest(BaseModel):
    target_proxy: TargetProxy
    proxy_order_id: str


class BackupRequest(BaseModel):
    target_proxy: TargetProxy
    start: datetime
    end: datetime


class ProxyCredential(BaseModel):
    """Session credential issued for one proxy account."""

    value: str
    expiry: datetime

    def is_expired(self, now: datetime) -> bool:
        expiry = self.expiry
        if expiry.tzinfo is None:
            expiry = expiry.replace(tzinfo=timezone.utc)
        return expiry <= now
