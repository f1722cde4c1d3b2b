"""Query embedding provider over sentence-transformers.

Why (SAM): Infrastructure adapters wrap external libraries with lazy imports,
cache expensive resources (models), and map errors to domain exceptions.
"""

from __future__ import annotations

from dataclasses import dataclass
from importlib import import_module
from typing import Any, ClassVar

from rag_core.application.ports.embedding_port import EmbeddingProvider
from rag_core.domain.errors import EmbeddingError


def _prefix_e5_query(text: str) -> str:
    return f"query: {text}"


@dataclass
class SentenceTransformersEmbeddingProvider(EmbeddingProvider):
    """Blocking ``embed(text)`` for the dense branch (run on the worker pool).

    Args:
        model_name: HuggingFace model identifier
        device: "cpu", "cuda" or "mps"
        e5_prefix: Prepend the E5 "query: " instruction (E5 family models only)
        normalize: L2-normalize vectors (cosine similarity in the vector store)
    """

    model_name: str = "intfloat/multilingual-e5-small"
    device: str = "cpu"
    e5_prefix: bool = True
    normalize: bool = True

    _model_cache: ClassVar[dict[str, Any]] = {}

    def _load_model(self) -> Any:
        cache_key = f"{self.model_name}:{self.device}"
        if cache_key in self._model_cache:
            return self._model_cache[cache_key]
        try:
            # Lazy import for testability
            st_module = import_module("sentence_transformers")
            model = st_module.SentenceTransformer(self.model_name, device=self.device)
        except Exception as ex:  # noqa: BLE001
            raise EmbeddingError(f"load failed for {self.model_name}: {ex}") from ex
        self._model_cache[cache_key] = model
        return model

    def embed(self, text: str) -> list[float]:
        model = self._load_model()
        payload = _prefix_e5_query(text) if self.e5_prefix else text
        try:
            vector = model.encode(payload, normalize_embeddings=self.normalize)
        except Exception as ex:  # noqa: BLE001
            raise EmbeddingError(f"encode failed: {ex}") from ex
        return [float(x) for x in (vector.tolist() if hasattr(vector, "tolist") else vector)]

    def embed_passages(self, texts: list[str], batch_size: int = 64) -> list[list[float]]:
        """Batch-encode corpus passages for indexing (E5 "passage: " prefix)."""
        if not texts:
            return []
        model = self._load_model()
        inputs = [f"passage: {t}" for t in texts] if self.e5_prefix else list(texts)
        try:
            vectors = model.encode(
                inputs,
                batch_size=batch_size,
                normalize_embeddings=self.normalize,
                convert_to_numpy=True,
                show_progress_bar=False,
            )
        except Exception as ex:  # noqa: BLE001
            raise EmbeddingError(f"batch encode failed: {ex}") from ex
        return [[float(x) for x in v.tolist()] for v in vectors]
