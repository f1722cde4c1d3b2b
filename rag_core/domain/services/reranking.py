"""Pure domain functions for the rerank cascade.

Why: Ordering and early-exit bookkeeping are deterministic and free of I/O;
keeping them here lets the cascade be tested without a scorer.

Functions:
- sort_by_scores_desc: Stable descending sort by scores
- count_above: How many scores strictly exceed a threshold
- should_exit_early: Early-exit policy check
- order_cascade: Final ordering of scored / unscored / failed candidates
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from typing import TypeVar

from rag_core.domain.models import ExitReason, RerankedResult

T = TypeVar("T")


def sort_by_scores_desc(items: Sequence[T], scores: Sequence[float]) -> list[T]:
    """Stable sort (descending) by scores, pure & deterministic.

    Examples:
        >>> sort_by_scores_desc(["a", "b", "c"], [0.2, 0.9, 0.5])
        ['b', 'c', 'a']
    """
    pairs: list[tuple[float, T]] = list(zip(scores, items, strict=True))
    pairs.sort(key=lambda p: p[0], reverse=True)
    return [it for _, it in pairs]


def count_above(scores: Sequence[float], threshold: float) -> int:
    return sum(1 for s in scores if s > threshold)


def should_exit_early(scores: Sequence[float], threshold: float, min_results: int) -> bool:
    """True once ``min_results`` scores strictly exceed ``threshold``.

    ``min_results <= 0`` disables early exit.
    """
    if min_results <= 0:
        return False
    return count_above(scores, threshold) >= min_results


def order_cascade(results: Sequence[RerankedResult]) -> list[RerankedResult]:
    """Final cascade ordering.

    1. full-model scored candidates by rerank score desc (ties: fused rank)
    2. un-scored candidates (early exit and prefiltered) in fused order
    3. candidates whose scoring failed (score -inf), in fused order
    """
    scored: list[RerankedResult] = []
    unscored: list[RerankedResult] = []
    failed: list[RerankedResult] = []
    for r in sorted(results, key=lambda x: x.fused.rank):
        if r.exit_reason is ExitReason.FULL_MODEL:
            if r.score is None or r.score == -math.inf or math.isnan(r.score):
                failed.append(r)
            else:
                scored.append(r)
        else:
            unscored.append(r)
    head = sort_by_scores_desc(scored, [r.score or 0.0 for r in scored])
    return head + unscored + failed
