# rag_core/domain/services/fusion.py
# Pure domain services: no I/O, deterministic, no external libraries.
from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from rag_core.domain.errors import ConfigurationError
from rag_core.domain.models import Candidate, FusedResult

DEFAULT_RRF_K = 60.0


@dataclass
class _Accumulator:
    doc_id: str
    score: float = 0.0
    dense_rank: int | None = None
    sparse_rank: int | None = None
    text: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)
    from_dense: bool = False


def _best_ranks(candidates: Sequence[Candidate]) -> dict[str, Candidate]:
    """Keep the best-ranked occurrence per document within one list."""
    best: dict[str, Candidate] = {}
    for c in candidates:
        prev = best.get(c.doc_id)
        if prev is None or c.rank < prev.rank:
            best[c.doc_id] = c
    return best


def _tie_break_key(acc: _Accumulator) -> tuple[float, int, int, str]:
    in_both = acc.dense_rank is not None and acc.sparse_rank is not None
    ranks = [r for r in (acc.dense_rank, acc.sparse_rank) if r is not None]
    return (-acc.score, 0 if in_both else 1, min(ranks), acc.doc_id)


def fuse(
    dense: Sequence[Candidate],
    sparse: Sequence[Candidate],
    k: float = DEFAULT_RRF_K,
    dense_weight: float = 1.0,
    sparse_weight: float = 1.0,
) -> list[FusedResult]:
    """Reciprocal Rank Fusion of a dense and a sparse ranking.

    Every document present in either list scores
    ``sum(weight / (k + rank))`` over the lists containing it; ranks are the
    candidates' 1-based source-local ranks. Weights default to 1.0 (plain RRF).

    Ordering is by fused score descending, ties broken by
    (a) presence in both lists first, (b) lower minimum source rank,
    (c) document id ascending. Output ranks are a dense 1..N sequence.

    Examples:
        dense=[A,B,C], sparse=[B,D,A], k=60 -> B, A, D, C (D: 1/62 > C: 1/63)

    Raises:
        ConfigurationError: if ``k`` is not positive or a weight is negative.
    """
    if k <= 0:
        raise ConfigurationError(f"rrf k must be > 0, got {k}")
    if dense_weight < 0 or sparse_weight < 0:
        raise ConfigurationError("fusion weights must be >= 0")

    merged: dict[str, _Accumulator] = {}

    for c in _best_ranks(dense).values():
        acc = merged.setdefault(c.doc_id, _Accumulator(doc_id=c.doc_id))
        acc.dense_rank = c.rank
        acc.score += dense_weight / (k + c.rank)
        acc.text = c.text
        acc.metadata = dict(c.metadata)
        acc.from_dense = True

    for c in _best_ranks(sparse).values():
        acc = merged.setdefault(c.doc_id, _Accumulator(doc_id=c.doc_id))
        acc.sparse_rank = c.rank
        acc.score += sparse_weight / (k + c.rank)
        # Dense text/metadata wins when the document is in both lists
        if not acc.from_dense:
            acc.text = c.text
            acc.metadata = dict(c.metadata)

    ordered = sorted(merged.values(), key=_tie_break_key)
    return [
        FusedResult(
            doc_id=acc.doc_id,
            score=acc.score,
            rank=i,
            dense_rank=acc.dense_rank,
            sparse_rank=acc.sparse_rank,
            text=acc.text,
            metadata=acc.metadata,
        )
        for i, acc in enumerate(ordered, start=1)
    ]
