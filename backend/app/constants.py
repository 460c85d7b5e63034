from datetime import timedelta
from enum import StrEnum


class QueryType(StrEnum):
    KEYWORD = "keyword"
    SEMANTIC = "semantic"
    HYBRID = "hybrid"


class EntityType(StrEnum):
    NOTE = "note"
    DOCUMENT = "document"
    ANY = "any"


class Importance(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Sentiment(StrEnum):
    POSITIVE = "positive"
    NEUTRAL = "neutral"
    NEGATIVE = "negative"


class AnalyticsPeriod(StrEnum):
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"


PERIOD_LENGTHS: dict[AnalyticsPeriod, timedelta] = {
    AnalyticsPeriod.DAY: timedelta(days=1),
    AnalyticsPeriod.WEEK: timedelta(days=7),
    AnalyticsPeriod.MONTH: timedelta(days=30),
    AnalyticsPeriod.YEAR: timedelta(days=365),
}

MAX_QUERY_LENGTH = 2000
MAX_PAGE_SIZE = 100
MAX_FILTER_VALUES = 10
MAX_FILTER_VALUE_LENGTH = 50

# Performance buckets for analytics summaries
FAST_QUERY_MS = 200
SLOW_QUERY_MS = 1000
POPULAR_QUERY_LIMIT = 10

# Retention used by the maintenance sweep
ANALYTICS_RETENTION = timedelta(days=180)
HISTORY_RETENTION = timedelta(days=90)
HISTORY_KEEP_MIN_USES = 3
