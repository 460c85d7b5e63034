"""Typed search inputs and outputs.

Filters are a closed structure: every field is optional and an absent field
means "no constraint". Wire names are camelCase; Python attributes stay
snake_case (``populate_by_name`` accepts both).
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from pydantic.alias_generators import to_camel

from app.constants import (
    MAX_FILTER_VALUE_LENGTH,
    MAX_FILTER_VALUES,
    MAX_PAGE_SIZE,
    MAX_QUERY_LENGTH,
    EntityType,
    Importance,
    QueryType,
    Sentiment,
)
from app.search.errors import SearchValidationError
from app.search.query_preprocessor import normalize_query, sanitize_query


class CamelModel(BaseModel):
    """Base model serialising to camelCase."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _as_utc(value: datetime) -> datetime:
    return value.replace(tzinfo=UTC) if value.tzinfo is None else value.astimezone(UTC)


def _clean_values(values: frozenset[str] | None, label: str) -> frozenset[str] | None:
    if values is None:
        return None
    cleaned = {v.strip() for v in values}
    if any(not v or len(v) > MAX_FILTER_VALUE_LENGTH for v in cleaned):
        raise ValueError(f"{label} must be 1-{MAX_FILTER_VALUE_LENGTH} characters each")
    if len(cleaned) > MAX_FILTER_VALUES:
        raise ValueError(f"at most {MAX_FILTER_VALUES} {label} may be given")
    return frozenset(cleaned)


class DateRange(BaseModel):
    """Inclusive creation-date window."""

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    from_: datetime = Field(alias="from")
    to: datetime

    @field_validator("from_", "to")
    @classmethod
    def _to_utc(cls, value: datetime) -> datetime:
        return _as_utc(value)

    @model_validator(mode="after")
    def _check_order(self) -> DateRange:
        if self.from_ > self.to:
            raise ValueError("Start date must be before or equal to end date")
        return self


class SearchFilters(CamelModel):
    """Structured constraints applied by both rankers."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True, extra="forbid")

    tags: frozenset[str] | None = None
    date_range: DateRange | None = None
    importance: Importance | None = None
    sentiment: Sentiment | None = None
    categories: frozenset[str] | None = None
    entity_type: EntityType | None = None

    @field_validator("tags")
    @classmethod
    def _check_tags(cls, value: frozenset[str] | None) -> frozenset[str] | None:
        return _clean_values(value, "tags")

    @field_validator("categories")
    @classmethod
    def _check_categories(cls, value: frozenset[str] | None) -> frozenset[str] | None:
        return _clean_values(value, "categories")

    @property
    def restricted_entity_type(self) -> EntityType | None:
        """The entity type to filter on, or None when any type is accepted."""
        if self.entity_type in (None, EntityType.ANY):
            return None
        return self.entity_type

    def canonical(self) -> dict[str, Any]:
        """Deterministic JSON-ready form: absent fields omitted, sets sorted."""
        data: dict[str, Any] = {}
        if self.tags is not None:
            data["tags"] = sorted(self.tags)
        if self.date_range is not None:
            data["dateRange"] = {
                "from": self.date_range.from_.isoformat(),
                "to": self.date_range.to.isoformat(),
            }
        if self.importance is not None:
            data["importance"] = self.importance.value
        if self.sentiment is not None:
            data["sentiment"] = self.sentiment.value
        if self.categories is not None:
            data["categories"] = sorted(self.categories)
        if self.restricted_entity_type is not None:
            data["entityType"] = self.restricted_entity_type.value
        return data


class SearchQuery(BaseModel):
    """One search request, immutable once built."""

    model_config = ConfigDict(frozen=True)

    raw_text: str
    user_id: str = Field(min_length=1)
    query_type: QueryType = QueryType.KEYWORD
    filters: SearchFilters = Field(default_factory=SearchFilters)
    limit: int = Field(20, ge=1, le=MAX_PAGE_SIZE)
    offset: int = Field(0, ge=0)

    @field_validator("raw_text")
    @classmethod
    def _check_text(cls, value: str) -> str:
        cleaned = sanitize_query(value)
        if not cleaned:
            raise ValueError("Search query cannot be empty")
        if len(cleaned) > MAX_QUERY_LENGTH:
            raise ValueError(f"Search query cannot exceed {MAX_QUERY_LENGTH} characters")
        return cleaned

    @property
    def normalized_text(self) -> str:
        return normalize_query(self.raw_text)

    @classmethod
    def create(cls, **kwargs: Any) -> SearchQuery:
        """Build a query, converting pydantic errors into ``SearchValidationError``."""
        try:
            return cls(**kwargs)
        except ValidationError as exc:
            messages = "; ".join(err["msg"] for err in exc.errors())
            raise SearchValidationError(messages) from exc


class ScoredResult(CamelModel):
    """A ranked content item as returned to the caller."""

    id: str
    entity_type: EntityType
    content: str
    title: str | None = None
    tags: list[str] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime
    text_rank: float = Field(0.0, ge=0.0, le=1.0)
    vector_rank: float | None = Field(None, ge=0.0, le=1.0)
    combined_rank: float = Field(0.0, ge=0.0, le=1.0)
    snippet: str | None = None
    highlighted: str | None = None


class SearchOutcome(CamelModel):
    """Result page of one search call.

    ``degraded`` marks a semantic or hybrid request answered with keyword
    results only because the vector side was unavailable.
    """

    results: list[ScoredResult]
    total: int
    execution_time_ms: int = Field(ge=0)
    cached: bool = False
    degraded: bool = False


class CacheEntry(CamelModel):
    """A cached result page."""

    key: str
    user_id: str
    query: str
    filters: dict[str, Any] = Field(default_factory=dict)
    results: list[ScoredResult]
    result_count: int
    total: int
    created_at: datetime
    expires_at: datetime
    hit_count: int = 0
    last_hit_at: datetime | None = None

    def is_expired(self, now: datetime) -> bool:
        return _as_utc(self.expires_at) <= _as_utc(now)


class HistoryEntry(CamelModel):
    """A distinct query a user has run."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    id: str
    user_id: str
    query: str
    query_type: QueryType
    filters: dict[str, Any] = Field(default_factory=dict)
    result_count: int
    use_count: int = Field(ge=1)
    last_used_at: datetime
    created_at: datetime


class Suggestion(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    query: str
    use_count: int
    last_used_at: datetime


class AnalyticsRecord(CamelModel):
    """One executed search; never mutated after creation."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True, frozen=True)

    id: str | None = None
    user_id: str
    query: str
    query_type: QueryType
    results_count: int = 0
    execution_time_ms: int = Field(0, ge=0)
    filters: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime


class PopularQuery(CamelModel):
    query: str
    count: int
    average_results: float


class QueryTypeDistribution(CamelModel):
    keyword: int = 0
    semantic: int = 0
    hybrid: int = 0


class PerformanceMetrics(CamelModel):
    fast_queries: int = 0
    slow_queries: int = 0
    average_result_count: float = 0.0


class TimeSeriesPoint(CamelModel):
    date: str  # YYYY-MM-DD (UTC)
    query_count: int
    average_execution_time: float


class AnalyticsSummary(CamelModel):
    total_queries: int
    average_execution_time: float
    most_popular_queries: list[PopularQuery]
    query_type_distribution: QueryTypeDistribution
    performance_metrics: PerformanceMetrics
    time_series_data: list[TimeSeriesPoint]


class SearchStats(CamelModel):
    total_searches: int
    unique_queries: int
    average_results_per_search: float
    most_used_query: str | None
    searches_today: int
    average_execution_time: float
