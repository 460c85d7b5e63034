"""Search history and query suggestions.

One row per (user, normalized query). Recording is an atomic upsert, so
concurrent identical searches only ever bump ``use_count``.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from typing import Any

from sqlalchemy import delete, func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.constants import QueryType
from app.models import SearchHistory
from app.search.errors import RetrievalError
from app.search.query_preprocessor import normalize_query, sanitize_query
from app.search.schemas import HistoryEntry, Suggestion

logger = logging.getLogger(__name__)


class SearchHistoryStore:
    """Per-user query history backing the suggestion box.

    Args:
        session_factory: Factory of async sessions.
        suggestion_window_days: Only queries used within this many days are
            suggested; 0 disables the window.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], suggestion_window_days: int = 30) -> None:
        self._session_factory = session_factory
        self._window = timedelta(days=suggestion_window_days) if suggestion_window_days > 0 else None

    async def record(
        self,
        user_id: str,
        query: str,
        query_type: QueryType,
        filters: dict[str, Any] | None = None,
        result_count: int = 0,
        now: datetime | None = None,
    ) -> bool:
        """Upsert the history row for *query*; returns False when the write failed.

        A repeated query increments ``use_count`` and refreshes
        ``last_used_at`` along with the latest type, filters and result count.
        """
        now = now or datetime.now(UTC)
        stmt = pg_insert(SearchHistory).values(
            user_id=user_id,
            query=sanitize_query(query),
            normalized_query=normalize_query(query),
            query_type=QueryType(query_type).value,
            filters=filters or {},
            result_count=result_count,
            use_count=1,
            last_used_at=now,
            created_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            constraint="uq_search_history_user_query",
            set_={
                "use_count": SearchHistory.use_count + 1,
                "last_used_at": stmt.excluded.last_used_at,
                "query": stmt.excluded.query,
                "query_type": stmt.excluded.query_type,
                "filters": stmt.excluded.filters,
                "result_count": stmt.excluded.result_count,
            },
        )
        try:
            async with self._session_factory() as session:
                await session.execute(stmt)
                await session.commit()
        except SQLAlchemyError:
            logger.exception("Failed to record search history for user=%s", user_id)
            return False
        return True

    async def suggest(
        self,
        user_id: str,
        prefix: str = "",
        limit: int = 10,
        now: datetime | None = None,
    ) -> list[Suggestion]:
        """Past queries starting with *prefix*, most used first, then most recent."""
        now = now or datetime.now(UTC)
        stmt = select(SearchHistory).where(SearchHistory.user_id == user_id)

        normalized_prefix = normalize_query(prefix or "")
        if normalized_prefix:
            stmt = stmt.where(SearchHistory.normalized_query.startswith(normalized_prefix, autoescape=True))
        if self._window is not None:
            stmt = stmt.where(SearchHistory.last_used_at >= now - self._window)

        stmt = stmt.order_by(
            SearchHistory.use_count.desc(),
            SearchHistory.last_used_at.desc(),
            SearchHistory.id,
        ).limit(limit)

        rows = await self._fetch(stmt, user_id)
        return [Suggestion.model_validate(row) for row in rows]

    async def list_history(
        self,
        user_id: str,
        limit: int = 20,
        offset: int = 0,
        query_type: QueryType | None = None,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
    ) -> tuple[list[HistoryEntry], int]:
        """Page of history entries by most recent use, with the total count."""
        conditions = [SearchHistory.user_id == user_id]
        if query_type is not None:
            conditions.append(SearchHistory.query_type == QueryType(query_type).value)
        if date_from is not None:
            conditions.append(SearchHistory.created_at >= date_from)
        if date_to is not None:
            conditions.append(SearchHistory.created_at <= date_to)

        count_stmt = select(func.count(SearchHistory.id)).where(*conditions)
        page_stmt = (
            select(SearchHistory)
            .where(*conditions)
            .order_by(SearchHistory.last_used_at.desc(), SearchHistory.id)
            .limit(limit)
            .offset(offset)
        )

        try:
            async with self._session_factory() as session:
                total = (await session.execute(count_stmt)).scalar() or 0
                rows = (await session.execute(page_stmt)).scalars().all()
        except SQLAlchemyError as exc:
            logger.error("History listing failed for user=%s: %s", user_id, exc)
            raise RetrievalError("search history is unavailable") from exc

        return [HistoryEntry.model_validate(row) for row in rows], total

    async def clear(self, user_id: str, older_than: datetime | None = None) -> int:
        """Delete the user's entries created before *older_than* (all when None)."""
        stmt = delete(SearchHistory).where(SearchHistory.user_id == user_id)
        if older_than is not None:
            stmt = stmt.where(SearchHistory.created_at < older_than)
        return await self._delete(stmt, user_id)

    async def delete(self, user_id: str, entry_id: str) -> bool:
        """Delete one entry; False when it does not exist or belongs to someone else."""
        stmt = delete(SearchHistory).where(SearchHistory.id == entry_id, SearchHistory.user_id == user_id)
        return await self._delete(stmt, user_id) > 0

    async def _fetch(self, stmt, user_id: str) -> list[SearchHistory]:
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                return list(result.scalars().all())
        except SQLAlchemyError as exc:
            logger.error("History lookup failed for user=%s: %s", user_id, exc)
            raise RetrievalError("search history is unavailable") from exc

    async def _delete(self, stmt, user_id: str) -> int:
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                await session.commit()
        except SQLAlchemyError as exc:
            logger.error("History delete failed for user=%s: %s", user_id, exc)
            raise RetrievalError("search history is unavailable") from exc
        return result.rowcount or 0
