from __future__ import annotations


class CouponServiceError(Exception):
    """Base for every failure a service operation reports back to its caller."""

    kind = "error"


class ValidationFailure(CouponServiceError):
    kind = "validation_failure"


class NotFound(CouponServiceError):
    kind = "not_found"


class UpstreamFailure(CouponServiceError):
    kind = "upstream_failure"


class PersistenceFailure(CouponServiceError):
    kind = "persistence_failure"
