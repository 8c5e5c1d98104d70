# coupon_service/models/coupon.py
from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import BigInteger, Boolean, DateTime, Index, Integer, Numeric, SmallInteger, String, func
from sqlalchemy.orm import Mapped, mapped_column

from coupon_service.core.db import Base


class Coupon(Base):
    __tablename__ = "coupon"

    # sqlite only autoincrements a plain INTEGER primary key
    id: Mapped[int] = mapped_column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True)

    coupon: Mapped[str] = mapped_column(String(64), nullable=False)

    external_order_from_platform: Mapped[str] = mapped_column(String(32), nullable=False)
    external_order_tid: Mapped[str] = mapped_column(String(64), nullable=False)

    payment: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    available_balance: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    status: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    error_code: Mapped[str | None] = mapped_column(String(64), nullable=True)

    proxy_open_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    proxy_order_id: Mapped[str | None] = mapped_column(String(128), nullable=True)

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


# At most one live coupon per source order and per code. Generation relies on
# these to reject repeated or concurrent attempts for the same order.
Index(
    "uq_coupon_platform_tid_live",
    Coupon.external_order_from_platform,
    Coupon.external_order_tid,
    unique=True,
    postgresql_where=Coupon.is_deleted.is_(False),
    sqlite_where=Coupon.is_deleted.is_(False),
)

Index(
    "uq_coupon_code_live",
    Coupon.coupon,
    unique=True,
    postgresql_where=Coupon.is_deleted.is_(False),
    sqlite_where=Coupon.is_deleted.is_(False),
)

Index("ix_coupon_create_time", Coupon.create_time)
