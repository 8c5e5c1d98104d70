from datetime import timedelta
from decimal import Decimal

import httpx
import pytest

from coupon_service.core.errors import UpstreamFailure
from coupon_service.integrations.external_order_client import ExternalOrderClient
from coupon_service.integrations.sexytea_client import SexyteaClient
from coupon_service.schemas.enums import TargetProxy
from coupon_service.schemas.proxy_orders import ProxyCredential
from tests.conftest import TOKEN_HASH, now_utc, store_credential

_RealAsyncClient = httpx.AsyncClient


@pytest.fixture
def upstream(monkeypatch):
    """Route every httpx.AsyncClient through a handler the test installs."""
    requests = []
    state = {"handler": None}

    def transport_handler(request):
        requests.append(request)
        return state["handler"](request)

    def client_factory(**kwargs):
        return _RealAsyncClient(transport=httpx.MockTransport(transport_handler), **kwargs)

    monkeypatch.setattr(httpx, "AsyncClient", client_factory)

    def install(handler):
        state["handler"] = handler
        return requests

    return install


# -------------------------
# External order API
# -------------------------
async def test_order_query_found(upstream):
    requests = upstream(
        lambda r: httpx.Response(
            200,
            json={
                "code": 0,
                "msg": "",
                "data": {"fromPlatform": "JD", "tid": "t-1", "payment": "5.00", "targetProxy": "sexytea"},
            },
        )
    )

    order = await ExternalOrderClient(base_url="http://orders.test").query("JD", "t-1")

    assert order.from_platform == "JD"
    assert order.payment == Decimal("5.00")
    assert order.target_proxy == "sexytea"
    assert requests[0].url.path == "/api/external-order/query"
    assert requests[0].url.params["from_platform"] == "JD"
    assert requests[0].url.params["tid"] == "t-1"


@pytest.mark.parametrize(
    "body",
    [
        {"code": 1, "msg": "no such order", "data": None},
        {"code": 0, "msg": "", "data": None},
    ],
)
async def test_order_query_not_found(upstream, body):
    upstream(lambda r: httpx.Response(200, json=body))

    assert await ExternalOrderClient(base_url="http://orders.test").query("JD", "t-1") is None


async def test_order_query_http_error(upstream):
    upstream(lambda r: httpx.Response(502, text="bad gateway"))

    with pytest.raises(UpstreamFailure):
        await ExternalOrderClient(base_url="http://orders.test").query("JD", "t-1")


async def test_order_query_unreachable(upstream):
    def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    upstream(refuse)

    with pytest.raises(UpstreamFailure):
        await ExternalOrderClient(base_url="http://orders.test").query("JD", "t-1")


# -------------------------
# Sexytea API
# -------------------------
def credential():
    return ProxyCredential(value="token-abc", expiry=now_utc() + timedelta(hours=1))


async def test_sexytea_fetch_sends_credential(upstream):
    payload = {"code": 0, "data": {"orderId": "po-1", "status": "FINISHED"}}
    requests = upstream(lambda r: httpx.Response(200, json=payload))

    client = SexyteaClient(base_url="http://sexytea.test")
    result = await client.fetch_order(credential(), "po-1")

    assert result == payload
    assert client.parse_status(result) == "FINISHED"
    assert requests[0].headers["Authorization"] == "token-abc"
    assert requests[0].url.params["orderId"] == "po-1"


async def test_sexytea_missing_order(upstream):
    upstream(lambda r: httpx.Response(404))
    assert await SexyteaClient(base_url="http://sexytea.test").fetch_order(credential(), "po-1") is None

    upstream(lambda r: httpx.Response(200, json={"code": 0, "data": None}))
    assert await SexyteaClient(base_url="http://sexytea.test").fetch_order(credential(), "po-1") is None


async def test_sexytea_server_error(upstream):
    upstream(lambda r: httpx.Response(500, text="boom"))

    with pytest.raises(UpstreamFailure):
        await SexyteaClient(base_url="http://sexytea.test").fetch_order(credential(), "po-1")


def test_sexytea_status_requires_data():
    with pytest.raises(UpstreamFailure):
        SexyteaClient.parse_status({"code": 0})


# -------------------------
# Credential store
# -------------------------
async def test_credential_roundtrip(credentials, cache):
    await store_credential(cache, "open-7")

    found = await credentials.get(TargetProxy.SEXYTEA, "open-7")

    assert found.value == "token-open-7"
    assert not found.is_expired(now_utc())


async def test_credential_absent_or_unreadable(credentials, cache):
    assert await credentials.get(TargetProxy.SEXYTEA, "nobody") is None
    assert await credentials.get(TargetProxy.SEXYTEA, None) is None

    await cache.hset(TOKEN_HASH, "open-8", "garbage")
    assert await credentials.get(TargetProxy.SEXYTEA, "open-8") is None


@pytest.mark.parametrize(
    "body",
    [
        {"text": "<html>maintenance</html>"},
        {"json": ["not", "an", "object"]},
    ],
)
async def test_order_query_unreadable_body(upstream, body):
    upstream(lambda r: httpx.Response(200, **body))

    with pytest.raises(UpstreamFailure):
        await ExternalOrderClient(base_url="http://orders.test").query("JD", "t-1")


@pytest.mark.parametrize(
    "body",
    [
        {"text": "<html>maintenance</html>"},
        {"json": "FINISHED"},
    ],
)
async def test_sexytea_unreadable_body(upstream, body):
    upstream(lambda r: httpx.Response(200, **body))

    with pytest.raises(UpstreamFailure):
        await SexyteaClient(base_url="http://sexytea.test").fetch_order(credential(), "po-1")
