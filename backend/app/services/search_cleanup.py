"""Storage hygiene for the search tables.

Removes analytics past retention, stale rarely-used history, and expired
cache rows. Safe to run at any time; every statement is an independent delete.
"""

import asyncio
import logging
from datetime import UTC, datetime

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.constants import ANALYTICS_RETENTION, HISTORY_KEEP_MIN_USES, HISTORY_RETENTION
from app.models import SearchAnalytics, SearchHistory
from app.services.search_cache import SearchCache

logger = logging.getLogger(__name__)


async def cleanup_search_data(
    session_factory: async_sessionmaker[AsyncSession],
    now: datetime | None = None,
) -> dict[str, int]:
    """Delete old search data and return the number of rows removed per table."""
    now = now or datetime.now(UTC)
    statements = {
        "analytics": delete(SearchAnalytics).where(SearchAnalytics.created_at < now - ANALYTICS_RETENTION),
        "history": delete(SearchHistory).where(
            SearchHistory.created_at < now - HISTORY_RETENTION,
            SearchHistory.use_count < HISTORY_KEEP_MIN_USES,
        ),
    }

    removed: dict[str, int] = {}
    async with session_factory() as session:
        for name, stmt in statements.items():
            result = await session.execute(stmt)
            removed[name] = result.rowcount or 0
        await session.commit()
    removed["cache"] = await SearchCache(session_factory).purge_expired(now)

    logger.info(
        "Search cleanup removed %d analytics, %d history, %d cache rows",
        removed["analytics"],
        removed["history"],
        removed["cache"],
    )
    return removed


async def run_periodic_cleanup(session_factory: async_sessionmaker[AsyncSession], interval_minutes: int) -> None:
    """Run ``cleanup_search_data`` every *interval_minutes* until cancelled."""
    while True:
        await asyncio.sleep(interval_minutes * 60)
        try:
            await cleanup_search_data(session_factory)
        except Exception:
            logger.exception("Search cleanup failed")
