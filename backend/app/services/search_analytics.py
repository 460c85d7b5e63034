"""Search analytics: fire-and-forget event recording plus period summaries."""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.constants import (
    FAST_QUERY_MS,
    PERIOD_LENGTHS,
    POPULAR_QUERY_LIMIT,
    SLOW_QUERY_MS,
    AnalyticsPeriod,
    QueryType,
)
from app.models import SearchAnalytics, SearchHistory
from app.search.errors import RetrievalError
from app.search.schemas import (
    AnalyticsRecord,
    AnalyticsSummary,
    PerformanceMetrics,
    PopularQuery,
    QueryTypeDistribution,
    SearchStats,
    TimeSeriesPoint,
)

logger = logging.getLogger(__name__)


def _utc_day(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).date().isoformat()


def _mean(total: float, count: int) -> float:
    return total / count if count else 0.0


def summarize_records(records: Iterable[AnalyticsRecord], popular_limit: int = POPULAR_QUERY_LIMIT) -> AnalyticsSummary:
    """Aggregate *records* into a summary. Pure; the records are never modified."""
    records = list(records)
    total = len(records)

    type_counts = Counter(QueryType(r.query_type).value for r in records)
    distribution = QueryTypeDistribution(**{t.value: type_counts.get(t.value, 0) for t in QueryType})

    # Popular queries grouped case-insensitively; the first spelling seen is shown
    groups: dict[str, dict[str, Any]] = {}
    for record in records:
        group = groups.setdefault(record.query.lower(), {"query": record.query, "count": 0, "results": 0})
        group["count"] += 1
        group["results"] += record.results_count
    ranked = sorted(groups.values(), key=lambda g: (-g["count"], g["query"].lower()))
    popular = [
        PopularQuery(query=g["query"], count=g["count"], average_results=_mean(g["results"], g["count"]))
        for g in ranked[:popular_limit]
    ]

    days: dict[str, list[int]] = {}
    for record in records:
        days.setdefault(_utc_day(record.created_at), []).append(record.execution_time_ms)
    series = [
        TimeSeriesPoint(date=day, query_count=len(times), average_execution_time=_mean(sum(times), len(times)))
        for day, times in sorted(days.items())
    ]

    return AnalyticsSummary(
        total_queries=total,
        average_execution_time=_mean(sum(r.execution_time_ms for r in records), total),
        most_popular_queries=popular,
        query_type_distribution=distribution,
        performance_metrics=PerformanceMetrics(
            fast_queries=sum(1 for r in records if r.execution_time_ms < FAST_QUERY_MS),
            slow_queries=sum(1 for r in records if r.execution_time_ms > SLOW_QUERY_MS),
            average_result_count=_mean(sum(r.results_count for r in records), total),
        ),
        time_series_data=series,
    )


class SearchAnalyticsService:
    """Record executed searches and summarize them per user."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def record(
        self,
        user_id: str,
        query: str,
        query_type: QueryType,
        results_count: int,
        execution_time_ms: int,
        filters: dict[str, Any] | None = None,
    ) -> str | None:
        """Append one analytics row using a fresh session (fire-and-forget).

        Returns the new row id, or None when the write failed.
        """
        try:
            async with self._session_factory() as session:
                event = SearchAnalytics(
                    user_id=user_id,
                    query=query,
                    query_type=QueryType(query_type).value,
                    results_count=results_count,
                    execution_time_ms=max(0, int(execution_time_ms)),
                    filters=filters or {},
                )
                session.add(event)
                await session.commit()
                return event.id
        except SQLAlchemyError:
            logger.exception("Failed to record search analytics for user=%s", user_id)
            return None

    async def load_records(
        self,
        user_id: str,
        since: datetime,
        until: datetime,
        query_type: QueryType | None = None,
    ) -> list[AnalyticsRecord]:
        stmt = select(SearchAnalytics).where(
            SearchAnalytics.user_id == user_id,
            SearchAnalytics.created_at >= since,
            SearchAnalytics.created_at <= until,
        )
        if query_type is not None:
            stmt = stmt.where(SearchAnalytics.query_type == QueryType(query_type).value)

        try:
            async with self._session_factory() as session:
                rows = (await session.execute(stmt)).scalars().all()
        except SQLAlchemyError as exc:
            logger.error("Analytics query failed for user=%s: %s", user_id, exc)
            raise RetrievalError("search analytics are unavailable") from exc
        return [AnalyticsRecord.model_validate(row) for row in rows]

    async def summarize(
        self,
        user_id: str,
        period: AnalyticsPeriod = AnalyticsPeriod.WEEK,
        query_type: QueryType | None = None,
        now: datetime | None = None,
    ) -> AnalyticsSummary:
        """Summarize the user's searches in ``[now - period, now]``."""
        now = now or datetime.now(UTC)
        since = now - PERIOD_LENGTHS[AnalyticsPeriod(period)]
        records = await self.load_records(user_id, since, now, query_type)
        return summarize_records(records)

    async def stats(self, user_id: str, now: datetime | None = None) -> SearchStats:
        """All-time totals for the user, plus today's count (UTC)."""
        now = now or datetime.now(UTC)
        start_of_day = now.astimezone(UTC).replace(hour=0, minute=0, second=0, microsecond=0)

        totals_stmt = select(
            func.count(SearchAnalytics.id),
            func.count(func.distinct(SearchAnalytics.query)),
            func.avg(SearchAnalytics.results_count),
            func.avg(SearchAnalytics.execution_time_ms),
        ).where(SearchAnalytics.user_id == user_id)
        today_stmt = select(func.count(SearchAnalytics.id)).where(
            SearchAnalytics.user_id == user_id,
            SearchAnalytics.created_at >= start_of_day,
        )
        top_stmt = (
            select(SearchHistory.query)
            .where(SearchHistory.user_id == user_id)
            .order_by(SearchHistory.use_count.desc(), SearchHistory.last_used_at.desc())
            .limit(1)
        )

        try:
            async with self._session_factory() as session:
                totals = (await session.execute(totals_stmt)).one()
                searches_today = (await session.execute(today_stmt)).scalar() or 0
                most_used = (await session.execute(top_stmt)).scalar_one_or_none()
        except SQLAlchemyError as exc:
            logger.error("Search stats failed for user=%s: %s", user_id, exc)
            raise RetrievalError("search statistics are unavailable") from exc

        return SearchStats(
            total_searches=totals[0] or 0,
            unique_queries=totals[1] or 0,
            average_results_per_search=float(totals[2] or 0),
            most_used_query=most_used,
            searches_today=searches_today,
            average_execution_time=float(totals[3] or 0),
        )
