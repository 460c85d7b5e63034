"""Rank combiner: blends keyword and vector rankings into one ordered list.

Hybrid mode joins both ranker outputs on ``(id, entity_type)`` (a full outer
join done in memory) and scores each item with a fixed linear blend::

    combined = text_weight * text_rank + vector_weight * vector_rank

A signal missing for an item counts as 0, so a text-only hit scores
``0.4 * text_rank`` under the default weights. Single-ranker modes pass the
ranker score through untouched.

Pagination is merge-then-slice: rankers fetch ``offset + limit`` rows from
offset 0 and the combined list is sliced here.
"""

from __future__ import annotations

from collections.abc import Iterable

from app.search.engine import RankedHit
from app.search.params import DEFAULT_SEARCH_PARAMS
from app.search.schemas import ScoredResult

DEFAULT_TEXT_WEIGHT = DEFAULT_SEARCH_PARAMS["text_weight"]
DEFAULT_VECTOR_WEIGHT = DEFAULT_SEARCH_PARAMS["vector_weight"]


def _clamp(value: float) -> float:
    return min(1.0, max(0.0, value))


def _sort_key(result: ScoredResult) -> tuple[float, float, str]:
    # combined desc, then most recently updated, then id for determinism
    return (-result.combined_rank, -result.updated_at.timestamp(), result.id)


def _to_result(
    hit: RankedHit,
    text_rank: float,
    vector_rank: float | None,
    combined_rank: float,
) -> ScoredResult:
    return ScoredResult(
        id=hit.id,
        entity_type=hit.entity_type,
        content=hit.content,
        title=hit.title,
        tags=list(hit.tags),
        created_at=hit.created_at,
        updated_at=hit.updated_at,
        text_rank=_clamp(text_rank),
        vector_rank=None if vector_rank is None else _clamp(vector_rank),
        combined_rank=_clamp(combined_rank),
        snippet=hit.snippet,
        highlighted=hit.highlighted,
    )


class RankCombiner:
    """Merge ranker outputs and order them by combined rank.

    Args:
        text_weight: Weight of the keyword signal in hybrid mode.
        vector_weight: Weight of the vector signal in hybrid mode.
    """

    def __init__(
        self,
        text_weight: float = DEFAULT_TEXT_WEIGHT,
        vector_weight: float = DEFAULT_VECTOR_WEIGHT,
    ) -> None:
        if text_weight < 0 or vector_weight < 0:
            raise ValueError("Blend weights must be non-negative")
        self.text_weight = text_weight
        self.vector_weight = vector_weight

    def merge(self, text_hits: Iterable[RankedHit], vector_hits: Iterable[RankedHit]) -> list[ScoredResult]:
        """Full outer join of both rankings, sorted by blended score.

        For items found by both rankers the keyword hit supplies the
        snippet and highlight.
        """
        text_by_id: dict[tuple[str, str], RankedHit] = {}
        for hit in text_hits:
            text_by_id.setdefault(hit.identity, hit)

        vector_by_id: dict[tuple[str, str], RankedHit] = {}
        for hit in vector_hits:
            vector_by_id.setdefault(hit.identity, hit)

        merged: list[ScoredResult] = []
        for identity in text_by_id.keys() | vector_by_id.keys():
            text_hit = text_by_id.get(identity)
            vector_hit = vector_by_id.get(identity)

            text_rank = text_hit.score if text_hit is not None else 0.0
            vector_rank = vector_hit.score if vector_hit is not None else None
            combined = self.text_weight * text_rank + self.vector_weight * (vector_rank or 0.0)

            merged.append(_to_result(text_hit or vector_hit, text_rank, vector_rank, combined))

        merged.sort(key=_sort_key)
        return merged

    @staticmethod
    def passthrough_text(hits: Iterable[RankedHit]) -> list[ScoredResult]:
        """Keyword-only mode: ``combined_rank == text_rank``."""
        results = [_to_result(hit, hit.score, None, hit.score) for hit in hits]
        results.sort(key=_sort_key)
        return results

    @staticmethod
    def passthrough_vector(hits: Iterable[RankedHit]) -> list[ScoredResult]:
        """Vector-only mode: ``combined_rank == vector_rank``."""
        results = [_to_result(hit, 0.0, hit.score, hit.score) for hit in hits]
        results.sort(key=_sort_key)
        return results

    @staticmethod
    def paginate(results: list[ScoredResult], limit: int, offset: int = 0) -> list[ScoredResult]:
        return results[offset : offset + limit]
