from __future__ import annotations

import httpx

from coupon_service.core.config import settings
from coupon_service.core.errors import UpstreamFailure
from coupon_service.schemas.proxy_orders import ProxyCredential


class SexyteaClient:
    def __init__(self, base_url: str | None = None, timeout: float | None = None):
        self.base_url = base_url or settings.SEXYTEA_API_BASE_URL
        self.timeout = timeout or settings.HTTP_TIMEOUT_SEC

    async def fetch_order(self, credential: ProxyCredential, proxy_order_id: str) -> dict | None:
        headers = {"Authorization": credential.value}

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                r = await client.get(
                    f"{self.base_url}/api/order/info",
                    params={"orderId": proxy_order_id},
                    headers=headers,
                )
        except httpx.HTTPError as e:
            raise UpstreamFailure(f"Sexytea API unreachable: {e}") from e

        if r.status_code == 404:
            return None
        if r.status_code != 200:
            raise UpstreamFailure(f"Sexytea API error: {r.text}")

        try:
            payload = r.json()
        except ValueError as e:
            raise UpstreamFailure(f"Sexytea API returned non-JSON body: {r.text[:200]}") from e
        if not isinstance(payload, dict):
            raise UpstreamFailure(f"Sexytea API returned unexpected body: {r.text[:200]}")

        if payload.get("data") is None:
            return None
        return payload

    @staticmethod
    def parse_status(payload: dict) -> str | None:
        try:
            status = payload["data"]["status"]
        except (KeyError, TypeError) as e:
            raise UpstreamFailure(f"Sexytea order payload has no data.status: {e}") from e
        return None if status is None else str(status)
