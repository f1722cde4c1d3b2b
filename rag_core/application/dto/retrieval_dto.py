# rag_core/application/dto/retrieval_dto.py
from __future__ import annotations

from dataclasses import dataclass, field

from rag_core.domain.errors import ConfigurationError
from rag_core.domain.models import Document, FusedResult, RerankedResult, Source
from rag_core.domain.services.fusion import DEFAULT_RRF_K


def _require(cond: bool, msg: str) -> None:
    if not cond:
        raise ConfigurationError(msg)


@dataclass(frozen=True)
class RetrievalOptions:
    """
    Per-call options for hybrid retrieval.

    - top_k:         fused results kept after filtering
    - dense_top_k:   hits requested from the vector store
    - sparse_top_k:  hits requested from the sparse index
    - dense_weight / sparse_weight: multipliers on each list's RRF contribution
    - rrf_k:         RRF smoothing constant
    - min_score:     fused results below this score are dropped
    - timeout_ms:    bound on the combined dense+sparse wait (None = unbounded)
    """

    top_k: int = 10
    dense_top_k: int = 20
    sparse_top_k: int = 20
    dense_weight: float = 1.0
    sparse_weight: float = 1.0
    rrf_k: float = DEFAULT_RRF_K
    min_score: float = 0.0
    timeout_ms: int | None = 80

    def __post_init__(self) -> None:
        _require(self.top_k > 0, "top_k must be > 0")
        _require(self.dense_top_k > 0, "dense_top_k must be > 0")
        _require(self.sparse_top_k > 0, "sparse_top_k must be > 0")
        _require(self.dense_weight >= 0 and self.sparse_weight >= 0, "weights must be >= 0")
        _require(self.rrf_k > 0, "rrf_k must be > 0")
        _require(self.min_score >= 0, "min_score must be >= 0")
        _require(self.timeout_ms is None or self.timeout_ms > 0, "timeout_ms must be > 0")


@dataclass(frozen=True)
class RerankConfig:
    """
    Cascade configuration.

    - prefilter_threshold:    lexical score below which candidates skip the full model
    - max_full_model_docs:    hard cap on cross-encoder calls per rerank
    - early_exit_threshold:   score a result must exceed to count as strong
    - early_exit_min_results: stop once this many strong results exist (<= 0 disables)
    """

    prefilter_threshold: float = 0.1
    max_full_model_docs: int = 10
    early_exit_threshold: float = 0.92
    early_exit_min_results: int = 3

    def __post_init__(self) -> None:
        _require(0.0 <= self.prefilter_threshold <= 1.0, "prefilter_threshold must be in [0, 1]")
        _require(self.max_full_model_docs >= 0, "max_full_model_docs must be >= 0")


@dataclass(frozen=True)
class AgenticConfig:
    """Bounds and switches for the agentic retrieval loop."""

    max_iterations: int = 3
    sufficiency_threshold: float = 0.8
    query_rewriting_enabled: bool = True
    retrieval: RetrievalOptions = field(default_factory=RetrievalOptions)
    rerank: RerankConfig = field(default_factory=RerankConfig)

    def __post_init__(self) -> None:
        _require(self.max_iterations >= 1, "max_iterations must be >= 1")
        _require(
            0.0 <= self.sufficiency_threshold <= 1.0, "sufficiency_threshold must be in [0, 1]"
        )


@dataclass(frozen=True)
class HybridRetrievalResult:
    """Fused results plus degradation flags for caller visibility."""

    results: list[FusedResult]
    partial: bool = False
    failed_sources: tuple[Source, ...] = ()
    timed_out: tuple[Source, ...] = ()
    latency_ms: float = 0.0

    def __len__(self) -> int:
        return len(self.results)


@dataclass(frozen=True)
class RerankOutcome:
    results: list[RerankedResult]
    full_model_calls: int = 0
    early_exit_triggered: bool = False
    scorer_failures: int = 0


@dataclass(frozen=True)
class RetrievalResponse:
    """Answer to a plain (non-agentic) retrieve call."""

    documents: list[Document]
    partial: bool = False
