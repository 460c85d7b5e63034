"""Tests for analytics recording and period summaries."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock

import pytest
from sqlalchemy.dialects import postgresql
from sqlalchemy.exc import OperationalError

from app.constants import AnalyticsPeriod, QueryType
from app.models import SearchAnalytics
from app.search.schemas import AnalyticsRecord
from app.services.search_analytics import SearchAnalyticsService, summarize_records
from conftest import FakeSessionFactory, make_mock_session

NOW = datetime(2026, 3, 15, 12, 0, tzinfo=UTC)


def _record(query: str, ms: int, results: int = 1, qtype: QueryType = QueryType.KEYWORD, days_ago: float = 0):
    return AnalyticsRecord(
        user_id="u1",
        query=query,
        query_type=qtype,
        results_count=results,
        execution_time_ms=ms,
        created_at=NOW - timedelta(days=days_ago),
    )


class TestSummarizeRecords:
    def test_empty(self):
        summary = summarize_records([])
        assert summary.total_queries == 0
        assert summary.average_execution_time == 0.0
        assert summary.most_popular_queries == []
        assert summary.time_series_data == []

    def test_totals_and_buckets(self):
        records = [
            _record("a", 100, results=2),
            _record("b", 500, results=4, qtype=QueryType.HYBRID),
            _record("c", 1500, results=0, qtype=QueryType.SEMANTIC),
            _record("d", 1000),
            _record("e", 200),
        ]
        summary = summarize_records(records)

        assert summary.total_queries == 5
        assert summary.average_execution_time == pytest.approx(660.0)
        assert summary.performance_metrics.fast_queries == 1  # strictly below 200
        assert summary.performance_metrics.slow_queries == 1  # strictly above 1000
        assert summary.performance_metrics.average_result_count == pytest.approx(8 / 5)
        dist = summary.query_type_distribution
        assert (dist.keyword, dist.semantic, dist.hybrid) == (3, 1, 1)

    def test_popular_queries_grouped_case_insensitively(self):
        records = [
            _record("Machine Learning", 10, results=4),
            _record("machine learning", 10, results=2),
            _record("databases", 10, results=1),
        ]
        popular = summarize_records(records).most_popular_queries
        assert popular[0].query == "Machine Learning"
        assert popular[0].count == 2
        assert popular[0].average_results == pytest.approx(3.0)
        assert popular[1].query == "databases"

    def test_popular_queries_capped(self):
        records = [_record(f"q{i}", 10) for i in range(15)]
        assert len(summarize_records(records).most_popular_queries) == 10

    def test_daily_time_series(self):
        records = [_record("a", 100, days_ago=1), _record("b", 300, days_ago=1), _record("c", 50)]
        series = summarize_records(records).time_series_data
        assert [p.date for p in series] == ["2026-03-14", "2026-03-15"]
        assert series[0].query_count == 2
        assert series[0].average_execution_time == pytest.approx(200.0)

    def test_total_equals_record_count(self):
        for n in (1, 3, 8):
            assert summarize_records([_record("q", 5) for _ in range(n)]).total_queries == n

    def test_records_are_not_mutated(self):
        records = [_record("a", 100)]
        before = [r.model_dump() for r in records]
        summarize_records(records)
        assert [r.model_dump() for r in records] == before


class TestAnalyticsService:
    @pytest.mark.asyncio
    async def test_record_appends_row(self):
        session = make_mock_session()
        service = SearchAnalyticsService(FakeSessionFactory(session))

        await service.record("u1", "q", QueryType.HYBRID, 3, 120, {"tags": ["a"]})

        added = session.add.call_args.args[0]
        assert isinstance(added, SearchAnalytics)
        assert added.query_type == "hybrid"
        assert added.execution_time_ms == 120
        session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_record_failure_is_swallowed(self):
        session = make_mock_session()
        session.commit.side_effect = OperationalError("INSERT", {}, Exception("down"))
        service = SearchAnalyticsService(FakeSessionFactory(session))
        assert await service.record("u1", "q", QueryType.KEYWORD, 0, 5) is None

    @pytest.mark.asyncio
    async def test_summarize_reads_only_the_period_for_the_user(self):
        rows = [
            SearchAnalytics(
                id="r1",
                user_id="u1",
                query="q",
                query_type="keyword",
                results_count=2,
                execution_time_ms=90,
                filters={},
                created_at=NOW - timedelta(hours=3),
            )
        ]
        session = make_mock_session()
        result = MagicMock()
        result.scalars.return_value.all.return_value = rows
        session.execute.return_value = result

        summary = await SearchAnalyticsService(FakeSessionFactory(session)).summarize(
            "u1", AnalyticsPeriod.DAY, QueryType.KEYWORD, now=NOW
        )

        assert summary.total_queries == 1
        compiled = session.execute.await_args.args[0].compile(dialect=postgresql.dialect())
        sql = str(compiled)
        assert "search_analytics.user_id = " in sql
        assert "search_analytics.query_type = " in sql
        assert NOW - timedelta(days=1) in compiled.params.values()
