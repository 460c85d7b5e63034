"""Tests for blending keyword and vector rankings."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from app.constants import EntityType
from app.search.combiner import RankCombiner
from app.search.engine import RankedHit

T0 = datetime(2026, 3, 1, tzinfo=UTC)


def _hit(item_id: str, score: float, *, entity_type: EntityType = EntityType.NOTE, age_days: int = 0) -> RankedHit:
    return RankedHit(
        id=item_id,
        entity_type=entity_type,
        content=f"content of {item_id}",
        created_at=T0,
        updated_at=T0 - timedelta(days=age_days),
        score=score,
        snippet=f"snippet {item_id}",
    )


class TestMerge:
    def test_item_in_both_sets_uses_weighted_sum(self):
        merged = RankCombiner().merge([_hit("a", 0.5)], [_hit("a", 0.8)])
        assert len(merged) == 1
        assert merged[0].combined_rank == pytest.approx(0.5 * 0.4 + 0.8 * 0.6)
        assert merged[0].text_rank == 0.5
        assert merged[0].vector_rank == 0.8

    def test_text_only_item_is_not_promoted(self):
        merged = RankCombiner().merge([_hit("t", 0.9)], [])
        assert merged[0].combined_rank == pytest.approx(0.9 * 0.4)
        assert merged[0].vector_rank is None

    def test_vector_only_item_has_zero_text_rank(self):
        merged = RankCombiner().merge([], [_hit("v", 0.7)])
        assert merged[0].combined_rank == pytest.approx(0.7 * 0.6)
        assert merged[0].text_rank == 0.0

    def test_full_outer_join_sorted_by_combined(self):
        text = [_hit("a", 0.9), _hit("b", 0.3)]
        vector = [_hit("b", 0.9), _hit("c", 0.6)]
        merged = RankCombiner().merge(text, vector)
        # b: 0.12 + 0.54 = 0.66, c: 0.36, a: 0.36
        assert [r.id for r in merged][0] == "b"
        assert {r.id for r in merged} == {"a", "b", "c"}
        ranks = [r.combined_rank for r in merged]
        assert ranks == sorted(ranks, reverse=True)

    def test_identity_includes_entity_type(self):
        text = [_hit("same", 0.5, entity_type=EntityType.NOTE)]
        vector = [_hit("same", 0.5, entity_type=EntityType.DOCUMENT)]
        merged = RankCombiner().merge(text, vector)
        assert len(merged) == 2

    def test_ties_broken_by_recency(self):
        merged = RankCombiner().merge([_hit("old", 0.5, age_days=3), _hit("new", 0.5)], [])
        assert [r.id for r in merged] == ["new", "old"]

    def test_keyword_hit_supplies_snippet(self):
        text_hit = _hit("a", 0.5)
        vector_hit = _hit("a", 0.9).model_copy(update={"snippet": "vector snippet"})
        merged = RankCombiner().merge([text_hit], [vector_hit])
        assert merged[0].snippet == "snippet a"

    def test_weights_can_be_overridden(self):
        merged = RankCombiner(text_weight=0.5, vector_weight=0.5).merge([_hit("a", 0.4)], [_hit("a", 0.8)])
        assert merged[0].combined_rank == pytest.approx(0.6)

    def test_negative_weights_rejected(self):
        with pytest.raises(ValueError):
            RankCombiner(text_weight=-0.1)


class TestPassthrough:
    def test_keyword_mode_combined_equals_text_rank(self):
        results = RankCombiner.passthrough_text([_hit("a", 0.3), _hit("b", 0.8)])
        assert [r.id for r in results] == ["b", "a"]
        assert all(r.combined_rank == r.text_rank for r in results)
        assert all(r.vector_rank is None for r in results)

    def test_vector_mode_combined_equals_vector_rank(self):
        results = RankCombiner.passthrough_vector([_hit("a", 0.65)])
        assert results[0].combined_rank == 0.65
        assert results[0].vector_rank == 0.65
        assert results[0].text_rank == 0.0


class TestPaginate:
    def test_slices_page(self):
        results = RankCombiner.passthrough_text([_hit(str(i), 1 - i / 10) for i in range(5)])
        page = RankCombiner.paginate(results, limit=2, offset=2)
        assert [r.id for r in page] == ["2", "3"]

    def test_offset_past_end_is_empty(self):
        results = RankCombiner.passthrough_text([_hit("a", 0.5)])
        assert RankCombiner.paginate(results, limit=10, offset=5) == []
