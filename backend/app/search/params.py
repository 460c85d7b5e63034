"""Centralized search parameter management.

Blend weights and the semantic similarity threshold come from ``Settings``
(environment / ``.env``), so a deployment can retune them without a code
change. Individual call sites may still override them, e.g.::

    from app.search.combiner import RankCombiner
    from app.search.params import get_search_params

    params = get_search_params()
    combiner = RankCombiner(params["text_weight"], params["vector_weight"])
"""

from __future__ import annotations

from typing import Any

from app.config import Settings, get_settings

DEFAULT_SEARCH_PARAMS: dict[str, float] = {
    # Hybrid blend (text * 0.4 + vector * 0.6)
    "text_weight": 0.4,
    "vector_weight": 0.6,
    # Semantic
    "semantic_min_similarity": 0.5,
}


def get_search_params(settings: Settings | None = None) -> dict[str, Any]:
    """Return current search parameters, merging configured values with defaults.

    Weights outside [0, 1] are ignored and the default is kept.
    """
    settings = settings or get_settings()
    configured = {
        "text_weight": settings.SEARCH_TEXT_WEIGHT,
        "vector_weight": settings.SEARCH_VECTOR_WEIGHT,
        "semantic_min_similarity": settings.SEMANTIC_MIN_SIMILARITY,
    }
    merged = {**DEFAULT_SEARCH_PARAMS}
    for key, value in configured.items():
        if value is not None and 0.0 <= float(value) <= 1.0:
            merged[key] = float(value)
    return merged
