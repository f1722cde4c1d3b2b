from __future__ import annotations

from collections.abc import Sequence

from rag_core.domain.models import RerankedResult, SufficiencyAssessment

DEFAULT_TOP_N = 3


def average_top_relevance(results: Sequence[RerankedResult], top_n: int = DEFAULT_TOP_N) -> float:
    """Mean relevance (clamped to [0, 1]) of the first ``top_n`` reranked results."""
    head = list(results)[: max(top_n, 0)]
    if not head:
        return 0.0
    return sum(r.relevance for r in head) / len(head)


def heuristic_assessment(
    results: Sequence[RerankedResult],
    threshold: float,
    top_n: int = DEFAULT_TOP_N,
) -> SufficiencyAssessment:
    """Sufficiency from average top-N relevance; used when no judge is configured."""
    coverage = average_top_relevance(results, top_n)
    sufficient = coverage >= threshold
    missing = None
    if not sufficient:
        missing = (
            "no relevant evidence retrieved"
            if not results
            else f"top-{top_n} relevance {coverage:.2f} below {threshold:.2f}"
        )
    return SufficiencyAssessment(
        sufficient=sufficient,
        coverage=coverage,
        missing_information=missing,
        source="heuristic",
    )
