from __future__ import annotations

from typing import Generic, TypeVar

from pydantic import BaseModel, Field

from coupon_service.core.errors import CouponServiceError
from coupon_service.schemas.enums import Origin, ResponseCode

T = TypeVar("T")


class ApiResponse(BaseModel, Generic[T]):
    """Uniform result of every service operation."""

    code: ResponseCode = ResponseCode.FAIL
    msg: str = ""
    data: T | None = None
    error: str | None = None
    origin: Origin | None = None

    @property
    def ok(self) -> bool:
        return self.code == ResponseCode.SUCCESS

    @classmethod
    def success(cls, data: T | None = None, msg: str = "", origin: Origin | None = None) -> "ApiResponse[T]":
        return cls(code=ResponseCode.SUCCESS, msg=msg, data=data, origin=origin)

    @classmethod
    def failure(cls, exc: Exception) -> "ApiResponse[T]":
        kind = exc.kind if isinstance(exc, CouponServiceError) else "error"
        return cls(code=ResponseCode.FAIL, msg=str(exc), error=kind)


class PageResult(BaseModel, Generic[T]):
    total: int
    page: int
    size: int
    items: list[T] = Field(default_factory=list)
