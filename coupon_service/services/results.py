from __future__ import annotations

import functools

import structlog

from coupon_service.core.errors import CouponServiceError
from coupon_service.schemas.common import ApiResponse

logger = structlog.get_logger(__name__)


def reports_failures(operation: str):
    """Turn anything raised by a service operation into a failed ApiResponse."""

    def decorator(fn):
        @functools.wraps(fn)
        async def wrapper(*args, **kwargs):
            try:
                return await fn(*args, **kwargs)
            except CouponServiceError as e:
                logger.warning("Operation failed", operation=operation, error=e.kind, reason=str(e))
                return ApiResponse.failure(e)
            except Exception as e:
                logger.exception("Operation crashed", operation=operation)
                return ApiResponse.failure(e)

        return wrapper

    return decorator
