from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class ExternalOrderEvent(BaseModel):
    """Body of an order-inserted message.

    Only a locator: the order itself is re-fetched before anything is generated.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    from_platform: str
    tid: str


class ExternalOrderDTO(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    from_platform: str | None = None
    tid: str | None = None
    target_proxy: str | None = None

    payment: Decimal | None = None
    status: str | None = None

    create_time: datetime | None = None

    def generation_error(self) -> str | None:
        """Return why this order cannot produce a coupon, or None if it can."""
        if not (self.from_platform or "").strip():
            return "from_platform is required"
        if not (self.tid or "").strip():
            return "tid is required"
        if self.payment is None or self.payment <= 0:
            return f"payment must be positive, got [{self.payment}]"
        return None
