"""Search API endpoints.

Provides:
- ``POST /search`` and ``GET /search`` -- Run a keyword, semantic or hybrid search.
- ``GET /search/suggestions`` -- Suggestions from the caller's history.
- ``GET /search/history`` / ``DELETE /search/history[/{id}]`` -- History management.
- ``GET /search/analytics`` -- Period summary of the caller's searches.
- ``GET /search/stats`` -- All-time search statistics.

All endpoints require JWT Bearer authentication and only ever touch the
caller's own data.
"""

from __future__ import annotations

import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import Field, ValidationError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.constants import MAX_PAGE_SIZE, AnalyticsPeriod, QueryType
from app.database import get_session_factory
from app.search.errors import RetrievalError, SearchValidationError
from app.search.schemas import (
    AnalyticsSummary,
    CamelModel,
    DateRange,
    HistoryEntry,
    ScoredResult,
    SearchFilters,
    SearchQuery,
    SearchStats,
    Suggestion,
)
from app.services.auth_service import get_current_user
from app.services.search_service import SearchService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/search", tags=["search"])


# ---------------------------------------------------------------------------
# Request & response schemas
# ---------------------------------------------------------------------------


class SearchRequest(CamelModel):
    query: str
    type: QueryType = QueryType.KEYWORD
    limit: int = Field(20, ge=1, le=MAX_PAGE_SIZE)
    offset: int = Field(0, ge=0)
    filters: SearchFilters | None = None


class SearchResponse(CamelModel):
    """One page of results plus paging metadata."""

    results: list[ScoredResult]
    total: int
    execution_time_ms: int
    query: str
    type: QueryType
    limit: int
    offset: int
    has_next: bool
    has_prev: bool
    cached: bool = False
    degraded: bool = False


class SuggestionsResponse(CamelModel):
    suggestions: list[Suggestion]


class HistoryResponse(CamelModel):
    history: list[HistoryEntry]
    total: int
    limit: int
    offset: int
    has_next: bool


class HistoryClearResponse(CamelModel):
    deleted_count: int


class HistoryDeleteResponse(CamelModel):
    id: str
    deleted: bool


# ---------------------------------------------------------------------------
# Service factory (extracted for easy mocking in tests)
# ---------------------------------------------------------------------------


def _build_search_service(session_factory: async_sessionmaker[AsyncSession]) -> SearchService:
    """Create a SearchService wired to *session_factory*.

    Extracted as a function to allow easy mocking in tests.
    """
    return SearchService.from_settings(session_factory)


def _parse_tags(raw: str | None) -> frozenset[str] | None:
    """Split a comma-separated tag list; blank input means no filter."""
    if not raw:
        return None
    tags = frozenset(t.strip() for t in raw.split(",") if t.strip())
    return tags or None


async def _run_search(service: SearchService, request: SearchRequest, user_id: str) -> SearchResponse:
    try:
        query = SearchQuery.create(
            raw_text=request.query,
            user_id=user_id,
            query_type=request.type,
            filters=request.filters or SearchFilters(),
            limit=request.limit,
            offset=request.offset,
        )
    except SearchValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from None

    try:
        outcome = await service.search(query)
    except RetrievalError as exc:
        logger.error("Search failed for user=%s: %s", user_id, exc)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Search is temporarily unavailable",
        ) from None

    return SearchResponse(
        results=outcome.results,
        total=outcome.total,
        execution_time_ms=outcome.execution_time_ms,
        query=query.raw_text,
        type=query.query_type,
        limit=query.limit,
        offset=query.offset,
        has_next=query.offset + len(outcome.results) < outcome.total,
        has_prev=query.offset > 0,
        cached=outcome.cached,
        degraded=outcome.degraded,
    )


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.post("", response_model=SearchResponse)
async def search(
    body: SearchRequest,
    current_user: dict = Depends(get_current_user),  # noqa: B008
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),  # noqa: B008
) -> SearchResponse:
    """Run a search described by a JSON body."""
    service = _build_search_service(session_factory)
    return await _run_search(service, body, current_user["user_id"])


@router.get("", response_model=SearchResponse)
async def search_by_query_string(
    q: str = Query(..., description="Search query"),  # noqa: B008
    type: QueryType = Query(QueryType.KEYWORD, description="Search type"),  # noqa: A002, B008
    limit: int = Query(20, ge=1, le=MAX_PAGE_SIZE),  # noqa: B008
    offset: int = Query(0, ge=0),  # noqa: B008
    tags: str | None = Query(None, description="Comma-separated tags (any match)"),  # noqa: B008
    date_from: datetime | None = Query(None, alias="dateFrom"),  # noqa: B008
    date_to: datetime | None = Query(None, alias="dateTo"),  # noqa: B008
    current_user: dict = Depends(get_current_user),  # noqa: B008
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),  # noqa: B008
) -> SearchResponse:
    """Query-string form of ``POST /search``.

    A date range needs both ``dateFrom`` and ``dateTo``; an open end is
    filled with the epoch or the current time.
    """
    try:
        date_range = None
        if date_from is not None or date_to is not None:
            date_range = DateRange(
                from_=date_from or datetime(1970, 1, 1),
                to=date_to or datetime.now().astimezone(),
            )
        filters = SearchFilters(tags=_parse_tags(tags), date_range=date_range)
    except ValidationError as exc:
        detail = "; ".join(err["msg"] for err in exc.errors())
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=detail) from None

    request = SearchRequest(query=q, type=type, limit=limit, offset=offset, filters=filters)
    service = _build_search_service(session_factory)
    return await _run_search(service, request, current_user["user_id"])


@router.get("/suggestions", response_model=SuggestionsResponse)
async def suggestions(
    query_prefix: str = Query("", alias="queryPrefix", max_length=200),  # noqa: B008
    limit: int = Query(10, ge=1, le=50),  # noqa: B008
    current_user: dict = Depends(get_current_user),  # noqa: B008
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),  # noqa: B008
) -> SuggestionsResponse:
    """Past queries of the caller starting with ``queryPrefix``."""
    service = _build_search_service(session_factory)
    try:
        items = await service.history.suggest(current_user["user_id"], query_prefix, limit)
    except RetrievalError:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Suggestions unavailable") from None
    return SuggestionsResponse(suggestions=items)


@router.get("/history", response_model=HistoryResponse)
async def list_history(
    limit: int = Query(20, ge=1, le=MAX_PAGE_SIZE),  # noqa: B008
    offset: int = Query(0, ge=0),  # noqa: B008
    query_type: QueryType | None = Query(None, alias="queryType"),  # noqa: B008
    date_from: datetime | None = Query(None, alias="dateFrom"),  # noqa: B008
    date_to: datetime | None = Query(None, alias="dateTo"),  # noqa: B008
    current_user: dict = Depends(get_current_user),  # noqa: B008
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),  # noqa: B008
) -> HistoryResponse:
    service = _build_search_service(session_factory)
    try:
        entries, total = await service.history.list_history(
            current_user["user_id"],
            limit=limit,
            offset=offset,
            query_type=query_type,
            date_from=date_from,
            date_to=date_to,
        )
    except RetrievalError:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="History unavailable") from None
    return HistoryResponse(
        history=entries,
        total=total,
        limit=limit,
        offset=offset,
        has_next=offset + len(entries) < total,
    )


@router.delete("/history", response_model=HistoryClearResponse)
async def clear_history(
    older_than: datetime | None = Query(None, alias="olderThan"),  # noqa: B008
    current_user: dict = Depends(get_current_user),  # noqa: B008
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),  # noqa: B008
) -> HistoryClearResponse:
    """Delete history created before ``olderThan``, or all of it."""
    service = _build_search_service(session_factory)
    try:
        deleted = await service.history.clear(current_user["user_id"], older_than)
    except RetrievalError:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="History unavailable") from None
    return HistoryClearResponse(deleted_count=deleted)


@router.delete("/history/{entry_id}", response_model=HistoryDeleteResponse)
async def delete_history_entry(
    entry_id: str,
    current_user: dict = Depends(get_current_user),  # noqa: B008
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),  # noqa: B008
) -> HistoryDeleteResponse:
    service = _build_search_service(session_factory)
    try:
        deleted = await service.history.delete(current_user["user_id"], entry_id)
    except RetrievalError:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="History unavailable") from None
    if not deleted:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Search history item not found")
    return HistoryDeleteResponse(id=entry_id, deleted=True)


@router.get("/analytics", response_model=AnalyticsSummary)
async def analytics(
    period: AnalyticsPeriod = Query(AnalyticsPeriod.WEEK),  # noqa: B008
    query_type: QueryType | None = Query(None, alias="queryType"),  # noqa: B008
    current_user: dict = Depends(get_current_user),  # noqa: B008
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),  # noqa: B008
) -> AnalyticsSummary:
    service = _build_search_service(session_factory)
    try:
        return await service.analytics.summarize(current_user["user_id"], period, query_type)
    except RetrievalError:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Analytics unavailable") from None


@router.get("/stats", response_model=SearchStats)
async def stats(
    current_user: dict = Depends(get_current_user),  # noqa: B008
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),  # noqa: B008
) -> SearchStats:
    service = _build_search_service(session_factory)
    try:
        return await service.analytics.stats(current_user["user_id"])
    except RetrievalError:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Statistics unavailable") from None
