"""Cross-encoder scorer adapter using sentence-transformers.

Why (SAM): Infrastructure adapters wrap external libraries with lazy imports,
cache expensive resources (models), and map errors to domain exceptions.
"""

from __future__ import annotations

import math
from importlib import import_module
from typing import Any, ClassVar

from rag_core.application.ports.scorer_port import CrossEncoderScorer
from rag_core.domain.errors import ScoringError


def _sigmoid(x: float) -> float:
    # exp is only taken of a non-positive value, so it cannot overflow
    if x >= 0:
        return 1.0 / (1.0 + math.exp(-x))
    z = math.exp(x)
    return z / (1.0 + z)


class SentenceTransformersCrossEncoderScorer(CrossEncoderScorer):
    """Scores one query-passage pair per call with ``CrossEncoder.predict``.

    Recommended models:
    - BAAI/bge-reranker-v2-m3 (multilingual, apply sigmoid)
    - cross-encoder/ms-marco-MiniLM-L-6-v2 (English, fast)

    Args:
        model_name: HuggingFace model identifier for the cross-encoder
        device: Computation device ("cpu" or "cuda")
        apply_sigmoid: Map raw logits to [0, 1] (True for BGE rerankers)
    """

    _model_cache: ClassVar[dict[str, Any]] = {}

    def __init__(
        self,
        model_name: str = "BAAI/bge-reranker-v2-m3",
        device: str = "cpu",
        apply_sigmoid: bool = True,
    ) -> None:
        self.model_name = model_name
        self.device = device
        self.apply_sigmoid = apply_sigmoid
        self._model: Any | None = None

    def _load_model(self) -> Any:
        cache_key = f"{self.model_name}:{self.device}"
        if cache_key in self._model_cache:
            return self._model_cache[cache_key]

        try:
            # Lazy import for testability
            st_module = import_module("sentence_transformers")
            model = st_module.CrossEncoder(self.model_name, device=self.device)
        except Exception as e:  # noqa: BLE001
            raise ScoringError(f"Failed to load cross-encoder model {self.model_name}: {e}") from e
        self._model_cache[cache_key] = model
        return model

    def score(self, query: str, document_text: str) -> float:
        if self._model is None:
            self._model = self._load_model()

        try:
            raw = self._model.predict([(query, document_text)], show_progress_bar=False)
            value = float(raw[0])
        except Exception as e:  # noqa: BLE001
            raise ScoringError(f"Cross-encoder scoring failed for query '{query[:50]}': {e}") from e

        if self.apply_sigmoid:
            value = _sigmoid(value)
        return value
