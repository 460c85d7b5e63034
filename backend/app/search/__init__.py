"""Hybrid keyword and semantic search over user content."""

from app.search.combiner import RankCombiner
from app.search.embeddings import EmbeddingError, EmbeddingService
from app.search.engine import FullTextSearchEngine, RankedHit, RankedPage, SemanticSearchEngine
from app.search.errors import RetrievalError, SearchValidationError

__all__ = [
    "EmbeddingError",
    "EmbeddingService",
    "FullTextSearchEngine",
    "RankCombiner",
    "RankedHit",
    "RankedPage",
    "RetrievalError",
    "SearchValidationError",
    "SemanticSearchEngine",
]
