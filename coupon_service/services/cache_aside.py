# coupon_service/services/cache_aside.py
"""Cache-aside access to soft-deletable tables.

Reads go cache first and fall back to the database, repopulating the cache
with a fixed TTL. Writes go to the database inside one transaction and then
delete (never repopulate) every cache key derived from the written row.

Invalidation runs after commit, so a crash in between leaves a stale entry
for at most one TTL.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Generic, Iterable, TypeVar

import structlog
from pydantic import BaseModel, ValidationError
from redis.asyncio import Redis
from redis.exceptions import RedisError
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.sql.elements import ColumnElement

from coupon_service.core.errors import PersistenceFailure
from coupon_service.schemas.enums import Origin

logger = structlog.get_logger(__name__)

ModelT = TypeVar("ModelT")
DtoT = TypeVar("DtoT", bound=BaseModel)

# never written by write(): identity, soft-delete flag and creation stamp
_PROTECTED_COLUMNS = ("id", "is_deleted", "create_time")


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Lookup:
    """One business key: the cache key and the matching row criteria."""

    cache_key: str
    criteria: tuple[ColumnElement[bool], ...]


@dataclass(frozen=True)
class Found(Generic[DtoT]):
    value: DtoT
    origin: Origin


class CacheAsideStore(Generic[ModelT, DtoT]):
    model: type[ModelT]
    dto: type[DtoT]

    # columns naming the row; matched on by write() and never overwritten
    key_columns: tuple[str, ...] = ()

    def __init__(
        self,
        sessionmaker: async_sessionmaker[AsyncSession],
        cache: Redis,
        *,
        ttl_sec: int = 60,
    ):
        self._sessionmaker = sessionmaker
        self._cache = cache
        self.ttl_sec = ttl_sec

    # -------------------------
    # Per-entity hooks
    # -------------------------
    def cache_keys(self, dto: DtoT) -> list[str]:
        """Every cache key that can hold a copy of this entity."""
        raise NotImplementedError

    def business_criteria(self, dto: DtoT) -> tuple[ColumnElement[bool], ...]:
        raise NotImplementedError

    def to_dto(self, row: ModelT) -> DtoT:
        return self.dto.model_validate(row)

    def to_row(self, dto: DtoT) -> dict[str, Any]:
        columns = self.model.__table__.columns.keys()
        row = {}
        for name, value in dto.model_dump().items():
            if name not in columns or name == "id":
                continue
            row[name] = value.value if isinstance(value, Enum) else value
        return row

    def _live(self, criteria: Iterable[ColumnElement[bool]]) -> tuple[ColumnElement[bool], ...]:
        return (*criteria, self.model.is_deleted.is_(False))

    # -------------------------
    # Cache primitives (failures degrade to a miss)
    # -------------------------
    async def _cache_get(self, key: str) -> DtoT | None:
        try:
            raw = await self._cache.get(key)
        except RedisError as e:
            logger.warning("Cache read failed, falling back to store", key=key, error=str(e))
            return None

        if raw is None:
            return None

        try:
            return self.dto.model_validate_json(raw)
        except ValidationError:
            logger.warning("Discarding unreadable cache entry", key=key)
            return None

    async def _cache_set(self, key: str, dto: DtoT) -> None:
        try:
            await self._cache.set(key, dto.model_dump_json(), ex=self.ttl_sec)
        except RedisError as e:
            logger.warning("Cache populate failed", key=key, error=str(e))

    async def invalidate(self, keys: Iterable[str]) -> None:
        keys = list(dict.fromkeys(keys))
        if not keys:
            return
        try:
            await self._cache.delete(*keys)
        except RedisError as e:
            # the entries expire on their own within one TTL
            logger.error("Cache invalidation failed", keys=keys, error=str(e))

    # -------------------------
    # Operations
    # -------------------------
    async def get(self, lookup: Lookup) -> Found[DtoT] | None:
        cached = await self._cache_get(lookup.cache_key)
        if cached is not None:
            logger.debug("cache hit", key=lookup.cache_key)
            return Found(cached, Origin.CACHE)

        logger.debug("cache miss", key=lookup.cache_key)

        try:
            async with self._sessionmaker() as session:
                res = await session.execute(select(self.model).where(*self._live(lookup.criteria)).limit(1))
                row = res.scalars().first()
                dto = self.to_dto(row) if row is not None else None
        except SQLAlchemyError as e:
            raise PersistenceFailure(f"store read failed for [{lookup.cache_key}]: {e}") from e

        if dto is None:
            logger.debug("store miss", key=lookup.cache_key)
            return None

        await self._cache_set(lookup.cache_key, dto)
        return Found(dto, Origin.STORE)

    async def batch_get(
        self,
        lookups: Iterable[Lookup],
        predicate: Callable[[DtoT], bool] | None = None,
    ) -> list[DtoT]:
        """Concurrent get() per distinct key, results in input order."""
        unique = list({lk.cache_key: lk for lk in lookups}.values())

        found = await asyncio.gather(*(self.get(lk) for lk in unique))

        values = [f.value for f in found if f is not None]
        if predicate is not None:
            values = [v for v in values if predicate(v)]
        return values

    async def insert(self, dto: DtoT) -> DtoT:
        now = _now_utc()
        values = self.to_row(dto)
        if values.get("create_time") is None:
            values["create_time"] = now
        if values.get("update_time") is None:
            values["update_time"] = values["create_time"]
        values["is_deleted"] = False

        try:
            async with self._sessionmaker() as session:
                async with session.begin():
                    row = self.model(**values)
                    session.add(row)
                    await session.flush()
                    stored = self.to_dto(row)
        except IntegrityError as e:
            raise PersistenceFailure(f"{self.model.__tablename__} insert rejected: {e.orig}") from e
        except SQLAlchemyError as e:
            raise PersistenceFailure(f"{self.model.__tablename__} insert failed: {e}") from e

        await self.invalidate(self.cache_keys(stored))
        return stored

    async def write(self, dto: DtoT) -> None:
        values = {
            k: v
            for k, v in self.to_row(dto).items()
            if k not in self.key_columns and k not in _PROTECTED_COLUMNS
        }
        values["update_time"] = _now_utc()

        live = self._live(self.business_criteria(dto))

        try:
            async with self._sessionmaker() as session:
                async with session.begin():
                    row = (await session.execute(select(self.model).where(*live).limit(1))).scalars().first()

                    res = await session.execute(
                        update(self.model)
                        .where(*live)
                        .values(**values)
                        .execution_options(synchronize_session=False)
                    )
                    if res.rowcount != 1 or row is None:
                        raise PersistenceFailure(
                            f"{self.model.__tablename__} update expected 1 row, affected {res.rowcount}"
                        )
                    # keys of the row as stored; the caller's copy may name it differently
                    stored_keys = self.cache_keys(self.to_dto(row))
        except SQLAlchemyError as e:
            raise PersistenceFailure(f"{self.model.__tablename__} update failed: {e}") from e

        await self.invalidate([*stored_keys, *self.cache_keys(dto)])

    async def delete(self, lookup: Lookup) -> None:
        """Soft delete the live row matching `lookup`."""
        live = self._live(lookup.criteria)

        try:
            async with self._sessionmaker() as session:
                async with session.begin():
                    row = (await session.execute(select(self.model).where(*live).limit(1))).scalars().first()

                    res = await session.execute(
                        update(self.model)
                        .where(*live)
                        .values(is_deleted=True, update_time=_now_utc())
                        .execution_options(synchronize_session=False)
                    )
                    if res.rowcount != 1 or row is None:
                        raise PersistenceFailure(
                            f"{self.model.__tablename__} delete expected 1 row, affected {res.rowcount}"
                        )
                    deleted = self.to_dto(row)
        except SQLAlchemyError as e:
            raise PersistenceFailure(f"{self.model.__tablename__} delete failed: {e}") from e

        await self.invalidate([lookup.cache_key, *self.cache_keys(deleted)])
