# coupon_service/models/external_order.py
from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import BigInteger, DateTime, Integer, Numeric, String, func
from sqlalchemy.orm import Mapped, mapped_column

from coupon_service.core.db import Base


class ExternalOrder(Base):
    """Orders table owned by the order service.

    Only read here, to find which target proxy a coupon's order went to.
    """

    __tablename__ = "external_order"

    id: Mapped[int] = mapped_column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True)

    from_platform: Mapped[str] = mapped_column(String(32), nullable=False)
    tid: Mapped[str] = mapped_column(String(64), nullable=False)
    target_proxy: Mapped[str] = mapped_column(String(32), nullable=False)

    payment: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    status: Mapped[str | None] = mapped_column(String(32), nullable=True)

    create_time: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
