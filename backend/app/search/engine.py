"""Full-text and semantic rankers over the ``content_items`` table.

Full-text search: PostgreSQL tsvector + ``ts_rank_cd`` cover-density scoring.
Semantic search: pgvector cosine similarity against precomputed embeddings.

The stored ``search_vector`` combines the 'simple' configuration (keeps Korean
tokens intact) with the 'english' configuration (adds English stems and drops
stop words). Title lexemes carry weight A (1.0) and body lexemes weight B
(0.5), so a title match counts twice as much as a body match. Scores are
normalized into [0, 1) with ``ts_rank_cd`` normalization flag 32.

Every query is scoped to one user and excludes soft-deleted items.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field
from sqlalchemy import Select, func, literal_column, select
from sqlalchemy.dialects.postgresql import array
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.constants import EntityType
from app.models import ContentItem
from app.search.errors import RetrievalError
from app.search.highlight import build_snippet, build_term_pattern, highlight
from app.search.query_preprocessor import analyze_query
from app.search.schemas import SearchFilters

logger = logging.getLogger(__name__)

# ts_rank_cd weights for {D, C, B, A}: tags are C, content B, title A.
_RANK_WEIGHTS = literal_column("'{0.1, 0.2, 0.5, 1.0}'::float4[]")
# 32 = rank / (rank + 1), keeps scores in [0, 1)
_RANK_NORMALIZATION = 32


def _clamp(value: float) -> float:
    return min(1.0, max(0.0, value))


class RankedHit(BaseModel):
    """A single content item produced by one ranker."""

    id: str
    entity_type: EntityType
    content: str
    title: str | None = None
    tags: list[str] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime
    score: float = Field(ge=0.0, le=1.0)
    snippet: str | None = None
    highlighted: str | None = None

    @property
    def identity(self) -> tuple[str, str]:
        return self.id, self.entity_type.value


class RankedPage(BaseModel):
    """Page of hits from one ranker with the total match count."""

    hits: list[RankedHit]
    total: int


def apply_filters(stmt: Select, user_id: str, filters: SearchFilters | None) -> Select:
    """Restrict *stmt* to the user's live items matching *filters*.

    Empty tag/category sets are treated like absent ones.
    """
    stmt = stmt.where(ContentItem.user_id == user_id, ContentItem.deleted_at.is_(None))
    if filters is None:
        return stmt

    if filters.tags:
        stmt = stmt.where(ContentItem.tags.has_any(array(sorted(filters.tags))))
    if filters.categories:
        stmt = stmt.where(ContentItem.categories.has_any(array(sorted(filters.categories))))
    if filters.date_range is not None:
        stmt = stmt.where(
            ContentItem.created_at >= filters.date_range.from_,
            ContentItem.created_at <= filters.date_range.to,
        )
    if filters.importance is not None:
        stmt = stmt.where(ContentItem.importance == filters.importance.value)
    if filters.sentiment is not None:
        stmt = stmt.where(ContentItem.sentiment == filters.sentiment.value)
    if filters.restricted_entity_type is not None:
        stmt = stmt.where(ContentItem.entity_type == filters.restricted_entity_type.value)
    return stmt


def _item_columns() -> tuple:
    return (
        ContentItem.id,
        ContentItem.entity_type,
        ContentItem.title,
        ContentItem.content,
        ContentItem.tags,
        ContentItem.created_at,
        ContentItem.updated_at,
    )


def _row_to_hit(row: Any, score: float, terms: list[str]) -> RankedHit:
    content = row.content or ""
    pattern = build_term_pattern(terms)
    return RankedHit(
        id=str(row.id),
        entity_type=EntityType(row.entity_type),
        content=content,
        title=row.title,
        tags=list(row.tags or []),
        created_at=row.created_at,
        updated_at=row.updated_at,
        score=_clamp(score),
        snippet=build_snippet(content, pattern),
        highlighted=highlight(content, pattern),
    )


class FullTextSearchEngine:
    """PostgreSQL tsvector-based keyword ranker.

    Args:
        session_factory: Factory of async sessions (``async_session_factory``).
            Each search opens its own session so that it can run concurrently
            with the semantic ranker.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def search(
        self,
        user_id: str,
        query: str,
        filters: SearchFilters | None = None,
        limit: int = 20,
        offset: int = 0,
        ids: list[str] | None = None,
    ) -> RankedPage:
        """Execute a full-text search for *user_id*.

        *ids* restricts the match set to those items (used to fill in the
        keyword score of hybrid candidates). A query with no usable terms
        yields an empty page without touching storage. Storage failures
        raise ``RetrievalError``.
        """
        analysis = analyze_query(query)
        if not analysis.tsquery_expr:
            return RankedPage(hits=[], total=0)

        stmt = self.build_statement(user_id, analysis.tsquery_expr, filters, limit, offset, ids)

        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                rows = result.fetchall()
        except SQLAlchemyError as exc:
            logger.error("Full-text search failed for user=%s: %s", user_id, exc)
            raise RetrievalError("full-text search is unavailable") from exc

        total = rows[0].total_count if rows else 0
        hits = [_row_to_hit(row, float(row.rank), analysis.terms) for row in rows]
        return RankedPage(hits=hits, total=total)

    @staticmethod
    def build_statement(
        user_id: str,
        tsquery_expr: str,
        filters: SearchFilters | None,
        limit: int,
        offset: int,
        ids: list[str] | None = None,
    ) -> Select:
        """Build the ranked match query for an analyzed tsquery expression."""
        tsquery = (
            func.to_tsquery(literal_column("'simple'"), tsquery_expr)
            .op("||")(func.to_tsquery(literal_column("'english'"), tsquery_expr))
            .self_group()
        )
        rank = func.ts_rank_cd(_RANK_WEIGHTS, ContentItem.search_vector, tsquery, _RANK_NORMALIZATION).label("rank")

        # COUNT(*) OVER() gives total matching rows without a separate query
        total_count = func.count().over().label("total_count")

        stmt = (
            select(*_item_columns(), rank, total_count)
            .where(ContentItem.search_vector.op("@@")(tsquery))
            .order_by(rank.desc(), ContentItem.updated_at.desc(), ContentItem.id)
            .limit(limit)
            .offset(offset)
        )
        if ids is not None:
            stmt = stmt.where(ContentItem.id.in_(ids))
        return apply_filters(stmt, user_id, filters)


class SemanticSearchEngine:
    """pgvector-based similarity ranker.

    The query embedding comes from the caller; items without a stored
    embedding are never returned.

    Args:
        session_factory: Factory of async sessions (``async_session_factory``).
        min_similarity: Default similarity threshold (exclusive).
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], min_similarity: float = 0.5) -> None:
        self._session_factory = session_factory
        self._min_similarity = min_similarity

    async def search(
        self,
        user_id: str,
        query_embedding: list[float],
        filters: SearchFilters | None = None,
        limit: int = 20,
        offset: int = 0,
        min_similarity: float | None = None,
        terms: list[str] | None = None,
        ids: list[str] | None = None,
    ) -> RankedPage:
        """Return items whose cosine similarity to *query_embedding* exceeds the threshold.

        Ordered by similarity descending, ties broken by most recent update.
        *terms* are only used to highlight the returned content; *ids*
        restricts the match set to those items.
        """
        if not query_embedding:
            return RankedPage(hits=[], total=0)

        threshold = self._min_similarity if min_similarity is None else min_similarity
        stmt = self.build_statement(user_id, query_embedding, threshold, filters, limit, offset, ids)

        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                rows = result.fetchall()
        except SQLAlchemyError as exc:
            logger.error("Semantic search failed for user=%s: %s", user_id, exc)
            raise RetrievalError("semantic search is unavailable") from exc

        total = rows[0].total_count if rows else 0
        hits = [_row_to_hit(row, 1.0 - float(row.cosine_distance), terms or []) for row in rows]
        return RankedPage(hits=hits, total=total)

    @staticmethod
    def build_statement(
        user_id: str,
        query_embedding: list[float],
        threshold: float,
        filters: SearchFilters | None,
        limit: int,
        offset: int,
        ids: list[str] | None = None,
    ) -> Select:
        """Build the nearest-neighbour query (``embedding <=> :query_vector``)."""
        cosine_distance = ContentItem.embedding.cosine_distance(query_embedding)
        total_count = func.count().over().label("total_count")

        stmt = (
            select(*_item_columns(), cosine_distance.label("cosine_distance"), total_count)
            .where(ContentItem.embedding.is_not(None))
            .where(1 - cosine_distance > threshold)
            .order_by(cosine_distance.asc(), ContentItem.updated_at.desc(), ContentItem.id)
            .limit(limit)
            .offset(offset)
        )
        if ids is not None:
            stmt = stmt.where(ContentItem.id.in_(ids))
        return apply_filters(stmt, user_id, filters)

