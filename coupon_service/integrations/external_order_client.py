import httpx

from coupon_service.core.config import settings
from coupon_service.core.errors import UpstreamFailure
from coupon_service.schemas.external_orders import ExternalOrderDTO


class ExternalOrderClient:
    """Remote order query against the order service."""

    def __init__(self, base_url: str | None = None, timeout: float | None = None):
        self.base_url = base_url or settings.EXTERNAL_ORDER_API_BASE_URL
        self.timeout = timeout or settings.HTTP_TIMEOUT_SEC

    async def query(self, from_platform: str, tid: str) -> ExternalOrderDTO | None:
        params = {
            "from_platform": from_platform,
            "tid": tid,
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                r = await client.get(f"{self.base_url}/api/external-order/query", params=params)
        except httpx.HTTPError as e:
            raise UpstreamFailure(f"External order API unreachable: {e}") from e

        if r.status_code != 200:
            raise UpstreamFailure(f"External order API error: {r.text}")

        try:
            body = r.json()
        except ValueError as e:
            raise UpstreamFailure(f"External order API returned non-JSON body: {r.text[:200]}") from e
        if not isinstance(body, dict):
            raise UpstreamFailure(f"External order API returned unexpected body: {r.text[:200]}")

        if body.get("code") != 0 or not body.get("data"):
            return None

        return ExternalOrderDTO.model_validate(body["data"])
