from __future__ import annotations

from enum import Enum, IntEnum


class CouponStatus(IntEnum):
    DEFAULT = 0
    GENERATED = 1
    CONSUMED = 2
    INVALIDATED = 3
    RECYCLED = 4


class CouponEvent(str, Enum):
    CONSUME = "consume"
    MANUAL_CANCEL = "manual_cancel"
    RECYCLE = "recycle"


class TargetProxy(str, Enum):
    SEXYTEA = "sexytea"


class Origin(str, Enum):
    """Where a returned value was read from."""

    CACHE = "cache"
    STORE = "store"
    API = "api"

    @property
    def is_local(self) -> bool:
        return self is not Origin.API


class ResponseCode(IntEnum):
    SUCCESS = 0
    FAIL = 1
