# coupon_service/models/proxy_order.py
from __future__ import annotations

from datetime import datetime

from sqlalchemy import BigInteger, Boolean, DateTime, Index, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from coupon_service.core.db import Base
from coupon_service.schemas.enums import TargetProxy


class ProxyOrderMixin:
    """Columns shared by every per-proxy order table."""

    id: Mapped[int] = mapped_column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True)

    target_proxy: Mapped[str] = mapped_column(String(32), nullable=False)
    proxy_order_id: Mapped[str] = mapped_column(String(128), nullable=False)

    coupon: Mapped[str] = mapped_column(String(64), nullable=False)
    external_order_from_platform: Mapped[str] = mapped_column(String(32), nullable=False)
    external_order_tid: Mapped[str] = mapped_column(String(64), nullable=False)

    # raw upstream payload, kept as returned
    order: Mapped[str | None] = mapped_column(Text, nullable=True)
    order_status: Mapped[str | None] = mapped_column(String(32), nullable=True)

    create_time: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    update_time: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)


class SexyteaOrder(ProxyOrderMixin, Base):
    __tablename__ = "sexytea_order"


Index(
    "uq_sexytea_order_live",
    SexyteaOrder.target_proxy,
    SexyteaOrder.proxy_order_id,
    unique=True,
    postgresql_where=SexyteaOrder.is_deleted.is_(False),
    sqlite_where=SexyteaOrder.is_deleted.is_(False),
)


# One table per target proxy. New proxies get a model here and an entry below.
PROXY_ORDER_MODELS: dict[TargetProxy, type[ProxyOrderMixin]] = {
    TargetProxy.SEXYTEA: SexyteaOrder,
}
