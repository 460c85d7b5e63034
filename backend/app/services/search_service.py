"""Search orchestration: cache lookup, concurrent ranking, blending, side effects.

Flow for one request::

    cache hit  -> return cached page
    cache miss -> text ranker || (embed query -> vector ranker)
               -> [hybrid] fill in missing scores of the candidate pool
               -> combine -> slice page -> cache write -> return

Hybrid candidates are the top ``candidate_depth`` items of each ranker,
independent of the requested offset, so consecutive pages are slices of one
ordering. Each candidate found by only one ranker gets a second, id-restricted
lookup on the other ranker before blending.

History and analytics writes are dispatched as background tasks and never
delay or fail the response. The vector branch never raises: when the query
cannot be embedded or vector storage fails, the request degrades to
keyword-only results, which are not cached. A text ranker failure or a
missed deadline fails the whole request with ``RetrievalError``.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Coroutine
from typing import Any, NamedTuple

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import Settings, get_settings
from app.constants import MAX_PAGE_SIZE, QueryType
from app.search.combiner import RankCombiner
from app.search.embeddings import EmbeddingError, EmbeddingService
from app.search.engine import FullTextSearchEngine, RankedHit, RankedPage, SemanticSearchEngine
from app.search.errors import RetrievalError
from app.search.params import get_search_params
from app.search.query_preprocessor import analyze_query
from app.search.schemas import ScoredResult, SearchOutcome, SearchQuery
from app.services.background import start_background
from app.services.search_analytics import SearchAnalyticsService
from app.services.search_cache import SearchCache, make_cache_key
from app.services.search_history import SearchHistoryStore

logger = logging.getLogger(__name__)


class _Ranking(NamedTuple):
    results: list[ScoredResult]
    total: int
    degraded: bool = False


class _VectorSide(NamedTuple):
    embedding: list[float]
    terms: list[str]
    page: RankedPage


def _elapsed_ms(started: float) -> int:
    return max(0, int((time.perf_counter() - started) * 1000))


async def _gather_or_cancel(*coros: Coroutine[Any, Any, Any]) -> list[Any]:
    """Run *coros* concurrently; whatever is still running on exit is cancelled."""
    tasks = [asyncio.create_task(coro) for coro in coros]
    try:
        return await asyncio.gather(*tasks)
    finally:
        for task in tasks:
            if not task.done():
                task.cancel()


def _missing(hits: list[RankedHit], present: set[tuple[str, str]]) -> list[RankedHit]:
    return [hit for hit in hits if hit.identity not in present]


class SearchService:
    """Run searches for one user at a time against shared stores.

    Args:
        text_ranker: Keyword ranker.
        vector_ranker: Similarity ranker.
        embedder: Turns query text into a vector for ``vector_ranker``.
        cache: Result page cache.
        history: History and suggestion store.
        analytics: Analytics recorder.
        combiner: Blends the two rankings; defaults to the 0.4/0.6 blend.
        timeout_seconds: Deadline for the ranking phase of one request.
        candidate_depth: Hybrid candidates taken from each ranker. Pages
            reaching past it widen the pool to ``offset + limit``.
    """

    def __init__(
        self,
        text_ranker: FullTextSearchEngine,
        vector_ranker: SemanticSearchEngine,
        embedder: EmbeddingService,
        cache: SearchCache,
        history: SearchHistoryStore,
        analytics: SearchAnalyticsService,
        combiner: RankCombiner | None = None,
        timeout_seconds: float = 5.0,
        candidate_depth: int = MAX_PAGE_SIZE,
    ) -> None:
        if candidate_depth < 1:
            raise ValueError("candidate_depth must be positive")
        self._text_ranker = text_ranker
        self._vector_ranker = vector_ranker
        self._embedder = embedder
        self._cache = cache
        self._history = history
        self._analytics = analytics
        self._combiner = combiner or RankCombiner()
        self._timeout = timeout_seconds
        self._candidate_depth = candidate_depth

    @classmethod
    def from_settings(
        cls,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings | None = None,
        embedder: EmbeddingService | None = None,
    ) -> SearchService:
        settings = settings or get_settings()
        params = get_search_params(settings)
        return cls(
            text_ranker=FullTextSearchEngine(session_factory),
            vector_ranker=SemanticSearchEngine(session_factory, min_similarity=params["semantic_min_similarity"]),
            embedder=embedder or EmbeddingService.from_settings(settings),
            cache=SearchCache(
                session_factory,
                ttl_minutes=settings.SEARCH_CACHE_TTL_MINUTES,
                dated_ttl_minutes=settings.SEARCH_CACHE_TTL_DATED_MINUTES,
            ),
            history=SearchHistoryStore(session_factory, suggestion_window_days=settings.SUGGESTION_WINDOW_DAYS),
            analytics=SearchAnalyticsService(session_factory),
            combiner=RankCombiner(params["text_weight"], params["vector_weight"]),
            timeout_seconds=settings.SEARCH_TIMEOUT_SECONDS,
            candidate_depth=max(1, settings.SEARCH_CANDIDATE_DEPTH),
        )

    @property
    def history(self) -> SearchHistoryStore:
        return self._history

    @property
    def analytics(self) -> SearchAnalyticsService:
        return self._analytics

    async def search(self, query: SearchQuery, timeout: float | None = None) -> SearchOutcome:
        """Execute *query* and return one page of ranked results.

        ``total`` is exact for keyword and semantic requests. For hybrid
        requests it is the union of both match sets, exact when each ranker's
        matches fit in the candidate pool and otherwise an upper bound.

        Args:
            query: Validated request.
            timeout: Deadline for ranking in seconds; defaults to the service setting.

        Raises:
            RetrievalError: The text ranker failed or the deadline passed.
        """
        started = time.perf_counter()
        key = make_cache_key(
            query.user_id,
            query.normalized_text,
            query.query_type,
            query.filters,
            query.limit,
            query.offset,
        )

        cached = await self._cache.get(key, query.user_id)
        if cached is not None:
            outcome = SearchOutcome(
                results=cached.results,
                total=cached.total,
                execution_time_ms=_elapsed_ms(started),
                cached=True,
            )
            self._record(query, outcome.total, outcome.execution_time_ms, success=True)
            logger.info(
                "Search user=%s type=%s served from cache (%d results)",
                query.user_id,
                query.query_type,
                len(outcome.results),
            )
            return outcome

        try:
            ranking = await self._rank(query, self._timeout if timeout is None else timeout)
        except RetrievalError:
            self._record(query, 0, _elapsed_ms(started), success=False)
            raise

        page = self._combiner.paginate(ranking.results, query.limit, query.offset)
        # A degraded page must not outlive the outage
        if not ranking.degraded:
            await self._cache.put(key, query.user_id, query.raw_text, query.filters, page, ranking.total)

        outcome = SearchOutcome(
            results=page,
            total=ranking.total,
            execution_time_ms=_elapsed_ms(started),
            degraded=ranking.degraded,
        )
        self._record(query, outcome.total, outcome.execution_time_ms, success=True)
        logger.info(
            "Search user=%s type=%s returned %d of %d results in %dms%s",
            query.user_id,
            query.query_type,
            len(page),
            ranking.total,
            outcome.execution_time_ms,
            " (keyword fallback)" if ranking.degraded else "",
        )
        return outcome

    async def _rank(self, query: SearchQuery, timeout: float) -> _Ranking:
        try:
            return await asyncio.wait_for(self._collect(query), timeout=timeout)
        except TimeoutError as exc:
            logger.warning("Search user=%s exceeded %.1fs deadline", query.user_id, timeout)
            raise RetrievalError("search timed out") from exc

    async def _collect(self, query: SearchQuery) -> _Ranking:
        # Single-ranker modes page inside the ranker's own ordering
        depth = query.offset + query.limit
        if query.query_type == QueryType.HYBRID:
            depth = max(self._candidate_depth, depth)

        text_call = self._text_ranker.search(query.user_id, query.raw_text, query.filters, limit=depth, offset=0)
        if query.query_type == QueryType.KEYWORD:
            (text_page,) = await _gather_or_cancel(text_call)
            return _Ranking(self._combiner.passthrough_text(text_page.hits), text_page.total)

        text_page, vector_side = await _gather_or_cancel(text_call, self._vector_branch(query, depth))
        if vector_side is None:
            return _Ranking(self._combiner.passthrough_text(text_page.hits), text_page.total, degraded=True)

        if query.query_type == QueryType.SEMANTIC:
            return _Ranking(self._combiner.passthrough_vector(vector_side.page.hits), vector_side.page.total)

        return await self._blend(query, text_page, vector_side)

    async def _blend(self, query: SearchQuery, text_page: RankedPage, vector_side: _VectorSide) -> _Ranking:
        """Complete both signals for every candidate, then merge the pool."""
        text_hits = list(text_page.hits)
        vector_hits = list(vector_side.page.hits)
        need_vector = _missing(text_hits, {hit.identity for hit in vector_hits})
        need_text = _missing(vector_hits, {hit.identity for hit in text_hits})

        extra_text, extra_vector = await _gather_or_cancel(
            self._fill_text(query, need_text),
            self._fill_vector(query, vector_side, need_vector),
        )
        if extra_vector is None:
            return _Ranking(self._combiner.passthrough_text(text_hits), text_page.total, degraded=True)

        text_hits.extend(extra_text)
        vector_hits.extend(extra_vector)
        merged = self._combiner.merge(text_hits, vector_hits)

        overlap = len({hit.identity for hit in text_hits} & {hit.identity for hit in vector_hits})
        total = max(len(merged), text_page.total + vector_side.page.total - overlap)
        return _Ranking(merged, total)

    async def _fill_text(self, query: SearchQuery, candidates: list[RankedHit]) -> list[RankedHit]:
        if not candidates:
            return []
        wanted = {hit.identity for hit in candidates}
        page = await self._text_ranker.search(
            query.user_id,
            query.raw_text,
            query.filters,
            limit=len(candidates),
            offset=0,
            ids=[hit.id for hit in candidates],
        )
        return [hit for hit in page.hits if hit.identity in wanted]

    async def _fill_vector(
        self,
        query: SearchQuery,
        vector_side: _VectorSide,
        candidates: list[RankedHit],
    ) -> list[RankedHit] | None:
        """Similarity of keyword-only candidates; None when vector storage failed."""
        if not candidates:
            return []
        wanted = {hit.identity for hit in candidates}
        try:
            page = await self._vector_ranker.search(
                query.user_id,
                vector_side.embedding,
                query.filters,
                limit=len(candidates),
                offset=0,
                terms=vector_side.terms,
                ids=[hit.id for hit in candidates],
            )
        except RetrievalError as exc:
            logger.warning("Vector ranker unavailable, falling back to keyword search: %s", exc)
            return None
        return [hit for hit in page.hits if hit.identity in wanted]

    async def _vector_branch(self, query: SearchQuery, depth: int) -> _VectorSide | None:
        """Embed the query and run the vector ranker; None means keyword-only fallback."""
        try:
            embedding = await self._embedder.embed_text(query.raw_text)
        except EmbeddingError as exc:
            logger.warning("Query embedding failed, falling back to keyword search: %s", exc)
            return None
        if not embedding:
            logger.warning("No embedding for query, falling back to keyword search")
            return None

        terms = analyze_query(query.raw_text).terms
        try:
            page = await self._vector_ranker.search(
                query.user_id,
                embedding,
                query.filters,
                limit=depth,
                offset=0,
                terms=terms,
            )
        except RetrievalError as exc:
            logger.warning("Vector ranker unavailable, falling back to keyword search: %s", exc)
            return None
        return _VectorSide(embedding, terms, page)

    def _record(self, query: SearchQuery, result_count: int, execution_time_ms: int, *, success: bool) -> None:
        filters = query.filters.canonical()
        if success:
            start_background(
                self._history.record(query.user_id, query.raw_text, query.query_type, filters, result_count),
                name="search-history",
            )
        start_background(
            self._analytics.record(
                query.user_id,
                query.raw_text,
                query.query_type,
                result_count,
                execution_time_ms,
                filters,
            ),
            name="search-analytics",
        )
