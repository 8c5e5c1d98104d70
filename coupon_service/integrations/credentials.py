from __future__ import annotations

import structlog
from pydantic import ValidationError
from redis.asyncio import Redis
from redis.exceptions import RedisError

from coupon_service.core.errors import UpstreamFailure
from coupon_service.schemas.enums import TargetProxy
from coupon_service.schemas.proxy_orders import ProxyCredential

logger = structlog.get_logger(__name__)


class CredentialStore:
    """Reads proxy session credentials.

    Credentials are issued elsewhere and stored as one Redis hash per target
    proxy: field = proxy open id, value = ``{"value": ..., "expiry": ...}``.
    """

    def __init__(self, cache: Redis, hash_names: dict[TargetProxy, str]):
        self._cache = cache
        self._hash_names = dict(hash_names)

    async def get(self, target_proxy: TargetProxy, proxy_open_id: str | None) -> ProxyCredential | None:
        hash_name = self._hash_names.get(target_proxy)
        if hash_name is None or not proxy_open_id:
            return None

        try:
            raw = await self._cache.hget(hash_name, proxy_open_id)
        except RedisError as e:
            raise UpstreamFailure(f"credential store unavailable: {e}") from e

        if raw is None:
            return None

        try:
            return ProxyCredential.model_validate_json(raw)
        except ValidationError:
            logger.warning("Unreadable credential", target_proxy=target_proxy.value, proxy_open_id=proxy_open_id)
            return None
