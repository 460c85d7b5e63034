"""Tests for the result cache: key determinism, TTL handling, failure tolerance."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from sqlalchemy.dialects import postgresql
from sqlalchemy.exc import OperationalError

from app.constants import QueryType
from app.search.schemas import DateRange, ScoredResult, SearchFilters
from app.services.background import drain_background
from app.services.search_cache import SearchCache, make_cache_key
from conftest import FakeSessionFactory, make_mock_session

NOW = datetime(2026, 3, 15, 12, 0, tzinfo=UTC)


def _result(item_id: str = "a") -> ScoredResult:
    return ScoredResult(
        id=item_id,
        entity_type="note",
        content="machine learning",
        created_at=NOW,
        updated_at=NOW,
        text_rank=0.5,
        combined_rank=0.5,
    )


def _cache_row(expires_at: datetime, **overrides):
    values = {
        "cache_key": "k",
        "user_id": "u1",
        "query": "machine learning",
        "filters": {},
        "results": [_result().model_dump(mode="json")],
        "result_count": 1,
        "total": 7,
        "created_at": NOW - timedelta(minutes=10),
        "expires_at": expires_at,
        "hit_count": 2,
        "last_hit_at": None,
    }
    values.update(overrides)
    return SimpleNamespace(**values)


def _session_returning(row):
    session = make_mock_session()
    result = MagicMock()
    result.scalar_one_or_none.return_value = row
    session.execute.return_value = result
    return session


# ---------------------------------------------------------------------------
# 1. Key determinism
# ---------------------------------------------------------------------------


class TestMakeCacheKey:
    def test_equal_inputs_equal_keys(self):
        a = make_cache_key("u1", "machine learning", QueryType.KEYWORD, SearchFilters(tags=frozenset({"x", "y"})), 20, 0)
        b = make_cache_key("u1", "machine learning", QueryType.KEYWORD, SearchFilters(tags=frozenset({"y", "x"})), 20, 0)
        assert a == b
        assert len(a) == 64

    @pytest.mark.parametrize(
        "changed",
        [
            {"user_id": "u2"},
            {"normalized_query": "machine"},
            {"query_type": QueryType.HYBRID},
            {"filters": SearchFilters(tags=frozenset({"x"}))},
            {"filters": SearchFilters(categories=frozenset({"x"}))},
            {"limit": 10},
            {"offset": 20},
        ],
    )
    def test_any_difference_changes_key(self, changed):
        base = {
            "user_id": "u1",
            "normalized_query": "machine learning",
            "query_type": QueryType.KEYWORD,
            "filters": SearchFilters(),
            "limit": 20,
            "offset": 0,
        }
        assert make_cache_key(**base) != make_cache_key(**{**base, **changed})

    def test_absent_and_any_entity_type_share_key(self):
        from app.constants import EntityType

        a = make_cache_key("u1", "q", QueryType.KEYWORD, SearchFilters(), 20, 0)
        b = make_cache_key("u1", "q", QueryType.KEYWORD, SearchFilters(entity_type=EntityType.ANY), 20, 0)
        assert a == b


# ---------------------------------------------------------------------------
# 2. Reads
# ---------------------------------------------------------------------------


class TestCacheGet:
    @pytest.mark.asyncio
    async def test_live_entry_is_returned_and_hit_recorded(self):
        session = _session_returning(_cache_row(NOW + timedelta(minutes=50)))
        cache = SearchCache(FakeSessionFactory(session))

        entry = await cache.get("k", "u1", now=NOW)
        await drain_background()

        assert entry is not None
        assert entry.total == 7
        assert entry.results[0].id == "a"
        # one SELECT plus the background hit-count UPDATE
        assert session.execute.await_count == 2
        update_sql = str(session.execute.await_args_list[1].args[0].compile(dialect=postgresql.dialect()))
        assert "search_cache.hit_count + " in update_sql

    @pytest.mark.asyncio
    async def test_expired_entry_is_a_miss(self):
        session = _session_returning(_cache_row(NOW - timedelta(seconds=1)))
        cache = SearchCache(FakeSessionFactory(session))

        assert await cache.get("k", "u1", now=NOW) is None
        await drain_background()
        assert session.execute.await_count == 1

    @pytest.mark.asyncio
    async def test_entry_expiring_exactly_now_is_a_miss(self):
        cache = SearchCache(FakeSessionFactory(_session_returning(_cache_row(NOW))))
        assert await cache.get("k", "u1", now=NOW) is None

    @pytest.mark.asyncio
    async def test_missing_entry(self):
        cache = SearchCache(FakeSessionFactory(_session_returning(None)))
        assert await cache.get("k", "u1", now=NOW) is None

    @pytest.mark.asyncio
    async def test_read_failure_is_a_miss(self):
        session = make_mock_session()
        session.execute.side_effect = OperationalError("SELECT", {}, Exception("down"))
        cache = SearchCache(FakeSessionFactory(session))
        assert await cache.get("k", "u1", now=NOW) is None

    @pytest.mark.asyncio
    async def test_lookup_is_scoped_to_user(self):
        session = _session_returning(None)
        await SearchCache(FakeSessionFactory(session)).get("k", "u1", now=NOW)
        sql = str(session.execute.await_args.args[0].compile(dialect=postgresql.dialect()))
        assert "search_cache.user_id = " in sql

    @pytest.mark.asyncio
    async def test_hit_count_failure_is_swallowed(self):
        session = make_mock_session()
        session.execute.side_effect = OperationalError("UPDATE", {}, Exception("down"))
        await SearchCache(FakeSessionFactory(session)).record_hit("k", now=NOW)


# ---------------------------------------------------------------------------
# 3. Writes
# ---------------------------------------------------------------------------


class TestCachePut:
    @pytest.mark.asyncio
    async def test_put_upserts_on_cache_key(self):
        session = make_mock_session()
        cache = SearchCache(FakeSessionFactory(session))

        ok = await cache.put("k", "u1", "machine learning", SearchFilters(), [_result()], total=3, now=NOW)

        assert ok is True
        sql = str(session.execute.await_args.args[0].compile(dialect=postgresql.dialect()))
        assert "ON CONFLICT (cache_key) DO UPDATE" in sql
        session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_put_failure_is_silent(self):
        session = make_mock_session()
        session.execute.side_effect = OperationalError("INSERT", {}, Exception("down"))
        cache = SearchCache(FakeSessionFactory(session))
        assert await cache.put("k", "u1", "q", SearchFilters(), [], total=0, now=NOW) is False

    def test_default_ttl_is_sixty_minutes(self):
        cache = SearchCache(FakeSessionFactory())
        assert cache.ttl_for(SearchFilters(), NOW) == timedelta(minutes=60)

    def test_date_range_reaching_now_gets_short_ttl(self):
        cache = SearchCache(FakeSessionFactory(), ttl_minutes=60, dated_ttl_minutes=5)
        open_range = SearchFilters(date_range=DateRange(from_=NOW - timedelta(days=7), to=NOW + timedelta(hours=1)))
        closed_range = SearchFilters(date_range=DateRange(from_=NOW - timedelta(days=7), to=NOW - timedelta(days=1)))
        assert cache.ttl_for(open_range, NOW) == timedelta(minutes=5)
        assert cache.ttl_for(closed_range, NOW) == timedelta(minutes=60)

    def test_non_positive_ttl_rejected(self):
        with pytest.raises(ValueError):
            SearchCache(FakeSessionFactory(), ttl_minutes=0)

    @pytest.mark.asyncio
    async def test_purge_expired_returns_rowcount(self):
        session = make_mock_session(rowcount=4)
        assert await SearchCache(FakeSessionFactory(session)).purge_expired(now=NOW) == 4
