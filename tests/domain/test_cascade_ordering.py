"""Tests for pure rerank-cascade helpers."""

import math

from rag_core.domain.models import ExitReason, FusedResult, RerankedResult
from rag_core.domain.services.reranking import (
    count_above,
    order_cascade,
    should_exit_early,
    sort_by_scores_desc,
)


def _rr(doc_id: str, rank: int, score: float | None, reason: ExitReason) -> RerankedResult:
    fused = FusedResult(doc_id=doc_id, score=1.0 / (60 + rank), rank=rank, text=doc_id)
    return RerankedResult(
        doc_id=doc_id, score=score, prefilter_score=0.5, exit_reason=reason, fused=fused
    )


def test_sort_by_scores_desc_is_stable():
    assert sort_by_scores_desc(["a", "b", "c"], [0.5, 0.9, 0.5]) == ["b", "a", "c"]


def test_count_above_is_strict():
    assert count_above([0.92, 0.93, 0.5], 0.92) == 1


def test_should_exit_early_threshold_and_minimum():
    assert should_exit_early([0.95, 0.93, 0.94], 0.92, 3)
    assert not should_exit_early([0.95, 0.93, 0.91], 0.92, 3)


def test_should_exit_early_disabled_when_min_results_not_positive():
    assert not should_exit_early([0.99, 0.99, 0.99], 0.5, 0)
    assert not should_exit_early([0.99], 0.5, -1)


def test_order_cascade_groups_scored_unscored_failed():
    results = [
        _rr("pre", 1, None, ExitReason.PREFILTERED),
        _rr("low", 2, 0.2, ExitReason.FULL_MODEL),
        _rr("fail", 3, -math.inf, ExitReason.FULL_MODEL),
        _rr("high", 4, 0.9, ExitReason.FULL_MODEL),
        _rr("skipped", 5, None, ExitReason.EARLY_EXIT),
    ]

    ordered = order_cascade(results)

    assert [r.doc_id for r in ordered] == ["high", "low", "pre", "skipped", "fail"]


def test_order_cascade_ties_keep_fused_rank():
    results = [_rr("b", 2, 0.7, ExitReason.FULL_MODEL), _rr("a", 1, 0.7, ExitReason.FULL_MODEL)]
    assert [r.doc_id for r in order_cascade(results)] == ["a", "b"]
