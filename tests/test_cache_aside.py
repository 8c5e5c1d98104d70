from datetime import timedelta
from decimal import Decimal

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy import select

from coupon_service.core.cache import coupon_key, coupon_tid_key
from coupon_service.core.errors import PersistenceFailure
from coupon_service.models.coupon import Coupon
from coupon_service.schemas.enums import CouponStatus, Origin
from coupon_service.services.stores import CouponStore
from tests.conftest import make_coupon


class BrokenCache:
    """Redis stand-in whose every call fails."""

    async def get(self, key):
        raise RedisConnectionError("redis down")

    async def set(self, key, value, ex=None):
        raise RedisConnectionError("redis down")

    async def delete(self, *keys):
        raise RedisConnectionError("redis down")


async def test_get_reads_store_then_cache(coupon_store, cache):
    await coupon_store.insert(make_coupon("A"))

    first = await coupon_store.get(coupon_store.by_code("A"))
    assert first.origin is Origin.STORE
    assert first.value.coupon == "A"

    ttl = await cache.ttl(coupon_key("A"))
    assert 0 < ttl <= 60

    second = await coupon_store.get(coupon_store.by_code("A"))
    assert second.origin is Origin.CACHE
    assert second.value == first.value


async def test_get_missing_caches_nothing(coupon_store, cache):
    assert await coupon_store.get(coupon_store.by_code("nope")) is None
    assert await cache.exists(coupon_key("nope")) == 0


async def test_get_by_tid_uses_its_own_key(coupon_store, cache):
    await coupon_store.insert(make_coupon("A", platform="JD", tid="t-1"))

    found = await coupon_store.get(coupon_store.by_tid("JD", "t-1"))
    assert found.value.coupon == "A"
    assert await cache.exists(coupon_tid_key("JD", "t-1")) == 1


async def test_write_invalidates_cached_copy(coupon_store):
    await coupon_store.insert(make_coupon("A"))
    cached = (await coupon_store.get(coupon_store.by_code("A"))).value

    await coupon_store.write(cached.model_copy(update={"status": CouponStatus.CONSUMED}))

    after = await coupon_store.get(coupon_store.by_code("A"))
    assert after.origin is Origin.STORE
    assert after.value.status is CouponStatus.CONSUMED


async def test_write_without_matching_row_fails(coupon_store, cache):
    with pytest.raises(PersistenceFailure):
        await coupon_store.write(make_coupon("ghost"))

    assert await cache.exists(coupon_key("ghost")) == 0


async def test_delete_is_soft_and_clears_every_key(coupon_store, cache, sessionmaker):
    await coupon_store.insert(make_coupon("A", platform="JD", tid="t-1"))
    await coupon_store.get(coupon_store.by_code("A"))
    await coupon_store.get(coupon_store.by_tid("JD", "t-1"))

    await coupon_store.delete(coupon_store.by_code("A"))

    assert await cache.exists(coupon_key("A"), coupon_tid_key("JD", "t-1")) == 0
    assert await coupon_store.get(coupon_store.by_code("A")) is None
    assert await coupon_store.get(coupon_store.by_tid("JD", "t-1")) is None

    async with sessionmaker() as session:
        row = (await session.execute(select(Coupon).where(Coupon.coupon == "A"))).scalar_one()
    assert row.is_deleted is True


async def test_delete_twice_fails(coupon_store):
    await coupon_store.insert(make_coupon("A"))
    await coupon_store.delete(coupon_store.by_code("A"))

    with pytest.raises(PersistenceFailure):
        await coupon_store.delete(coupon_store.by_code("A"))


async def test_live_uniqueness_ignores_deleted_rows(coupon_store):
    await coupon_store.insert(make_coupon("A", platform="JD", tid="t-1"))

    with pytest.raises(PersistenceFailure):
        await coupon_store.insert(make_coupon("B", platform="JD", tid="t-1"))

    await coupon_store.delete(coupon_store.by_code("A"))
    stored = await coupon_store.insert(make_coupon("B", platform="JD", tid="t-1"))
    assert stored.coupon == "B"


async def test_batch_get_dedupes_and_keeps_order(coupon_store):
    await coupon_store.insert(make_coupon("A", age=timedelta(hours=1)))
    await coupon_store.insert(make_coupon("B"))

    codes = ["B", "missing", "A", "B", "A"]
    values = await coupon_store.batch_get(coupon_store.by_code(c) for c in codes)

    assert [v.coupon for v in values] == ["B", "A"]


async def test_batch_get_looks_up_each_key_once(coupon_store, monkeypatch):
    await coupon_store.insert(make_coupon("A"))

    seen = []
    real_get = coupon_store.get

    async def counting_get(lookup):
        seen.append(lookup.cache_key)
        return await real_get(lookup)

    monkeypatch.setattr(coupon_store, "get", counting_get)

    values = await coupon_store.batch_get(coupon_store.by_code(c) for c in ["A", "A", "B"])

    assert [v.coupon for v in values] == ["A"]
    assert sorted(seen) == [coupon_key("A"), coupon_key("B")]


async def test_batch_get_applies_predicate(coupon_store):
    await coupon_store.insert(make_coupon("A"))
    await coupon_store.insert(make_coupon("B", status=CouponStatus.CONSUMED))

    values = await coupon_store.batch_get(
        (coupon_store.by_code(c) for c in ["A", "B"]),
        lambda c: c.status is CouponStatus.CONSUMED,
    )

    assert [v.coupon for v in values] == ["B"]


async def test_unreadable_cache_entry_is_a_miss(coupon_store, cache):
    await coupon_store.insert(make_coupon("A"))
    await cache.set(coupon_key("A"), "{not json")

    found = await coupon_store.get(coupon_store.by_code("A"))
    assert found.origin is Origin.STORE


async def test_cache_outage_degrades_to_store(sessionmaker):
    store = CouponStore(sessionmaker, BrokenCache(), ttl_sec=60)

    await store.insert(make_coupon("A"))
    found = await store.get(store.by_code("A"))
    assert found.origin is Origin.STORE

    await store.write(found.value.model_copy(update={"error_code": "E1"}))
    assert (await store.get(store.by_code("A"))).value.error_code == "E1"


async def test_write_clears_keys_of_the_stored_row(coupon_store):
    await coupon_store.insert(make_coupon("REAL", platform="JD", tid="t-1"))
    assert (await coupon_store.get(coupon_store.by_code("REAL"))).origin is Origin.STORE

    # same order, different code: the row is matched by (platform, tid)
    await coupon_store.write(make_coupon("OTHER", platform="JD", tid="t-1", amount="3.00"))

    after = await coupon_store.get(coupon_store.by_code("REAL"))
    assert after.origin is Origin.STORE
    assert after.value.available_balance == Decimal("3.00")


async def test_insert_always_stores_a_live_row(coupon_store):
    stored = await coupon_store.insert(make_coupon("A").model_copy(update={"is_deleted": True}))

    assert stored.is_deleted is False
    found = await coupon_store.get(coupon_store.by_code("A"))
    assert found is not None
    assert found.value.is_deleted is False
