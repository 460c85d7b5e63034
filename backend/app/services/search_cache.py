"""Result cache: pages of search results stored in ``search_cache``.

Rows carry an ``expires_at`` column instead of relying on native expiry, so
every read checks it and an expired row is reported as a miss. Writes are an
atomic upsert on ``cache_key`` (last write wins). Cache failures never reach
the caller: a failed read is a miss, a failed write is a no-op.
"""

from __future__ import annotations

import hashlib
import json
import logging
from datetime import UTC, datetime, timedelta

from sqlalchemy import delete, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.constants import QueryType
from app.models import SearchCacheEntry
from app.search.schemas import CacheEntry, ScoredResult, SearchFilters
from app.services.background import start_background

logger = logging.getLogger(__name__)


def make_cache_key(
    user_id: str,
    normalized_query: str,
    query_type: QueryType,
    filters: SearchFilters,
    limit: int,
    offset: int,
) -> str:
    """Return a stable SHA-256 fingerprint of one search request.

    The payload is serialized as canonical JSON (sorted keys, sorted filter
    sets, absent filters omitted), so equal requests always share a key.
    """
    payload = {
        "user_id": user_id,
        "query": normalized_query,
        "type": QueryType(query_type).value,
        "filters": filters.canonical(),
        "limit": limit,
        "offset": offset,
    }
    encoded = json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


def _row_to_entry(row: SearchCacheEntry) -> CacheEntry:
    return CacheEntry(
        key=row.cache_key,
        user_id=row.user_id,
        query=row.query,
        filters=row.filters or {},
        results=[ScoredResult.model_validate(item) for item in row.results or []],
        result_count=row.result_count,
        total=row.total,
        created_at=row.created_at,
        expires_at=row.expires_at,
        hit_count=row.hit_count or 0,
        last_hit_at=row.last_hit_at,
    )


class SearchCache:
    """TTL cache of result pages, scoped per user.

    Args:
        session_factory: Factory of async sessions.
        ttl_minutes: Default time-to-live.
        dated_ttl_minutes: Time-to-live when the date filter reaches the present,
            since new content can still land inside that window.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        ttl_minutes: int = 60,
        dated_ttl_minutes: int = 5,
    ) -> None:
        if ttl_minutes <= 0 or dated_ttl_minutes <= 0:
            raise ValueError("Cache TTL must be positive")
        self._session_factory = session_factory
        self._ttl = timedelta(minutes=ttl_minutes)
        self._dated_ttl = timedelta(minutes=dated_ttl_minutes)

    def ttl_for(self, filters: SearchFilters, now: datetime | None = None) -> timedelta:
        now = now or datetime.now(UTC)
        if filters.date_range is not None and filters.date_range.to >= now:
            return self._dated_ttl
        return self._ttl

    async def get(self, key: str, user_id: str, now: datetime | None = None) -> CacheEntry | None:
        """Return the live entry for *key*, or None on miss, expiry, or failure.

        A hit schedules the hit-count update in the background.
        """
        now = now or datetime.now(UTC)
        stmt = select(SearchCacheEntry).where(
            SearchCacheEntry.cache_key == key,
            SearchCacheEntry.user_id == user_id,
        )
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                row = result.scalar_one_or_none()
                entry = _row_to_entry(row) if row is not None else None
        except (SQLAlchemyError, ValueError) as exc:
            logger.warning("Cache read failed, treating as miss: %s", exc)
            return None

        if entry is None or entry.is_expired(now):
            return None

        start_background(self.record_hit(key, now), name="search-cache-hit")
        return entry

    async def record_hit(self, key: str, now: datetime | None = None) -> None:
        """Increment ``hit_count`` and stamp ``last_hit_at``; failures are logged only."""
        now = now or datetime.now(UTC)
        stmt = (
            update(SearchCacheEntry)
            .where(SearchCacheEntry.cache_key == key)
            .values(hit_count=SearchCacheEntry.hit_count + 1, last_hit_at=now)
        )
        try:
            async with self._session_factory() as session:
                await session.execute(stmt)
                await session.commit()
        except SQLAlchemyError:
            logger.exception("Failed to record cache hit")

    async def put(
        self,
        key: str,
        user_id: str,
        query: str,
        filters: SearchFilters,
        results: list[ScoredResult],
        total: int,
        ttl: timedelta | None = None,
        now: datetime | None = None,
    ) -> bool:
        """Store a result page under *key*. Returns False when the write failed."""
        now = now or datetime.now(UTC)
        ttl = ttl or self.ttl_for(filters, now)
        values = {
            "cache_key": key,
            "user_id": user_id,
            "query": query,
            "filters": filters.canonical(),
            "results": [r.model_dump(mode="json") for r in results],
            "result_count": len(results),
            "total": total,
            "created_at": now,
            "expires_at": now + ttl,
            "hit_count": 0,
            "last_hit_at": None,
        }
        stmt = pg_insert(SearchCacheEntry).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[SearchCacheEntry.cache_key],
            set_={name: stmt.excluded[name] for name in values if name != "cache_key"},
        )
        try:
            async with self._session_factory() as session:
                await session.execute(stmt)
                await session.commit()
        except SQLAlchemyError as exc:
            logger.warning("Cache write failed for user=%s: %s", user_id, exc)
            return False
        return True

    async def purge_expired(self, now: datetime | None = None) -> int:
        """Delete expired rows and return how many were removed."""
        now = now or datetime.now(UTC)
        async with self._session_factory() as session:
            result = await session.execute(delete(SearchCacheEntry).where(SearchCacheEntry.expires_at <= now))
            await session.commit()
        return result.rowcount or 0
