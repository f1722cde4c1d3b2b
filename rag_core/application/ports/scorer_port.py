"""Cross-encoder scorer port for the expensive rerank stage.

Why (SAM): Application defines the interface (port), infrastructure provides
concrete adapters. The cascade calls it once per candidate so it can stop
early; a failure on one candidate must not fail the batch.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


class CrossEncoderScorer(ABC):
    """Port for scoring a single query-document pair.

    Cross-encoders jointly encode query and passage, which is more accurate
    and much more expensive than embedding similarity.
    """

    @abstractmethod
    def score(self, query: str, document_text: str) -> float:
        """Score one query-document pair (higher = more relevant).

        Args:
            query: Query text
            document_text: Candidate passage

        Returns:
            Relevance score. Early-exit thresholds assume [0, 1] scores, so
            adapters for logit models should apply a sigmoid.

        Raises:
            ScoringError: If scoring fails for this pair

        Note:
            Blocking; the reranker dispatches it to a worker pool.
        """
        ...
