"""Application settings with environment-driven configuration.

Why: Single place that reads the environment; feature flags toggle the
agentic loop (query rewriting, LLM judge) and the optional adapters.
"""

import os
from dataclasses import dataclass, field

from rag_core.application.dto.retrieval_dto import AgenticConfig, RerankConfig, RetrievalOptions
from rag_core.domain.errors import ConfigurationError

_PREFETCH_STRATEGIES = ("disabled", "conservative", "aggressive")
_TOKEN_ESTIMATORS = ("chars", "tiktoken")


def _env_int(name: str, default: str) -> int:
    raw = os.getenv(name, default)
    try:
        return int(raw)
    except ValueError as ex:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from ex


def _env_float(name: str, default: str) -> float:
    raw = os.getenv(name, default)
    try:
        return float(raw)
    except ValueError as ex:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from ex


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class AppSettings:
    """Application settings loaded from environment variables.

    This is the ONLY place where environment variables are read.
    All other layers receive settings via dependency injection.

    Feature Flags:
    - query_rewriting_enabled: Let the agentic loop rewrite insufficient queries
    - use_llm_judge: Use the LLM sufficiency judge (authoritative) instead of
      the top-3 relevance heuristic
    - telemetry_enabled: Export OpenTelemetry metrics
    """

    # ===== Hybrid Retrieval =====
    dense_top_k: int = field(default_factory=lambda: _env_int("DENSE_TOP_K", "20"))
    sparse_top_k: int = field(default_factory=lambda: _env_int("SPARSE_TOP_K", "20"))
    final_top_k: int = field(default_factory=lambda: _env_int("FINAL_TOP_K", "10"))
    dense_weight: float = field(default_factory=lambda: _env_float("DENSE_WEIGHT", "1.0"))
    sparse_weight: float = field(default_factory=lambda: _env_float("SPARSE_WEIGHT", "1.0"))
    rrf_k: float = field(default_factory=lambda: _env_float("RRF_K", "60.0"))
    min_score: float = field(default_factory=lambda: _env_float("MIN_SCORE", "0.0"))
    retrieval_timeout_ms: int = field(
        default_factory=lambda: _env_int("RETRIEVAL_TIMEOUT_MS", "80")
    )
    # 0 = no per-call deadline

    # ===== Rerank Cascade =====
    prefilter_threshold: float = field(
        default_factory=lambda: _env_float("PREFILTER_THRESHOLD", "0.1")
    )
    max_full_model_docs: int = field(default_factory=lambda: _env_int("MAX_FULL_MODEL_DOCS", "10"))
    early_exit_threshold: float = field(
        default_factory=lambda: _env_float("EARLY_EXIT_THRESHOLD", "0.92")
    )
    early_exit_min_results: int = field(
        default_factory=lambda: _env_int("EARLY_EXIT_MIN_RESULTS", "3")
    )
    # <= 0 disables early exit

    # ===== Agentic Loop =====
    max_iterations: int = field(default_factory=lambda: _env_int("MAX_ITERATIONS", "3"))
    sufficiency_threshold: float = field(
        default_factory=lambda: _env_float("SUFFICIENCY_THRESHOLD", "0.8")
    )
    query_rewriting_enabled: bool = field(
        default_factory=lambda: _env_bool("QUERY_REWRITING_ENABLED", "true")
    )
    use_llm_judge: bool = field(default_factory=lambda: _env_bool("USE_LLM_JUDGE", "false"))

    # ===== Compute =====
    cache_capacity: int = field(default_factory=lambda: _env_int("CACHE_CAPACITY", "1000"))
    compute_workers: int = field(default_factory=lambda: _env_int("COMPUTE_WORKERS", "4"))
    # Threads shared by embedding and cross-encoder calls

    # ===== Embedding Configuration =====
    embedding_model: str = field(
        default_factory=lambda: os.getenv("EMBEDDING_MODEL", "intfloat/multilingual-e5-small")
    )
    embedding_device: str = field(default_factory=lambda: os.getenv("EMBEDDING_DEVICE", "cpu"))
    # Supported: "cpu" | "cuda" | "mps"
    embedding_e5_prefix: bool = field(
        default_factory=lambda: _env_bool("EMBEDDING_E5_PREFIX", "true")
    )

    # ===== Reranker Configuration =====
    reranker_model: str = field(
        default_factory=lambda: os.getenv("RERANKER_MODEL", "BAAI/bge-reranker-v2-m3")
    )
    reranker_device: str = field(default_factory=lambda: os.getenv("RERANKER_DEVICE", "cpu"))
    reranker_apply_sigmoid: bool = field(
        default_factory=lambda: _env_bool("RERANKER_APPLY_SIGMOID", "true")
    )

    # ===== Dense / Sparse Stores =====
    chroma_dir: str = field(default_factory=lambda: os.getenv("CHROMA_DIR", "var/chroma"))
    collection: str = field(
        default_factory=lambda: os.getenv("VECTOR_COLLECTION", "kb_passages")
    )
    sparse_corpus_path: str = field(
        default_factory=lambda: os.getenv("SPARSE_CORPUS_PATH", "var/corpus.jsonl")
    )

    # ===== LLM Configuration (rewriter + judge) =====
    llm_base_url: str = field(
        default_factory=lambda: os.getenv("LLM_BASE_URL", "http://localhost:8000/v1")
    )
    llm_api_key: str = field(default_factory=lambda: os.getenv("LLM_API_KEY", "EMPTY"))
    llm_model: str = field(
        default_factory=lambda: os.getenv("LLM_MODEL", "meta-llama/Meta-Llama-3.1-8B-Instruct")
    )

    # ===== Context Budget =====
    token_estimator: str = field(
        default_factory=lambda: os.getenv("TOKEN_ESTIMATOR", "chars").lower()
    )
    # Supported: "chars" (len/4) | "tiktoken"
    tiktoken_encoding: str = field(
        default_factory=lambda: os.getenv("TIKTOKEN_ENCODING", "cl100k_base")
    )

    # ===== Prefetch =====
    prefetch_strategy: str = field(
        default_factory=lambda: os.getenv("PREFETCH_STRATEGY", "conservative").lower()
    )
    # Supported: "disabled" | "conservative" | "aggressive"

    # ===== Telemetry / Logging =====
    telemetry_enabled: bool = field(
        default_factory=lambda: _env_bool("TELEMETRY_ENABLED", "false")
    )
    otlp_endpoint: str = field(default_factory=lambda: os.getenv("OTLP_ENDPOINT", ""))
    telemetry_environment: str = field(
        default_factory=lambda: os.getenv("TELEMETRY_ENVIRONMENT", "production")
    )
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO").upper())
    log_format: str = field(
        default_factory=lambda: os.getenv(
            "LOG_FORMAT", "%(asctime)s %(levelname)s %(name)s: %(message)s"
        )
    )

    def validate(self) -> "AppSettings":
        """Reject malformed values; returns self for chaining.

        Raises:
            ConfigurationError: on the first invalid option
        """
        problems: list[str] = []
        if self.dense_top_k <= 0 or self.sparse_top_k <= 0 or self.final_top_k <= 0:
            problems.append("top-k values must be > 0")
        if self.dense_weight < 0 or self.sparse_weight < 0:
            problems.append("fusion weights must be >= 0")
        if self.rrf_k <= 0:
            problems.append("RRF_K must be > 0")
        if self.min_score < 0:
            problems.append("MIN_SCORE must be >= 0")
        if self.retrieval_timeout_ms < 0:
            problems.append("RETRIEVAL_TIMEOUT_MS must be >= 0")
        for name in ("prefilter_threshold", "early_exit_threshold", "sufficiency_threshold"):
            if not 0.0 <= getattr(self, name) <= 1.0:
                problems.append(f"{name.upper()} must be in [0, 1]")
        if self.max_full_model_docs < 0:
            problems.append("MAX_FULL_MODEL_DOCS must be >= 0")
        if self.max_iterations < 1:
            problems.append("MAX_ITERATIONS must be >= 1")
        if self.cache_capacity < 1:
            problems.append("CACHE_CAPACITY must be >= 1")
        if self.compute_workers < 1:
            problems.append("COMPUTE_WORKERS must be >= 1")
        if self.prefetch_strategy not in _PREFETCH_STRATEGIES:
            problems.append(f"PREFETCH_STRATEGY must be one of {', '.join(_PREFETCH_STRATEGIES)}")
        if self.token_estimator not in _TOKEN_ESTIMATORS:
            problems.append(f"TOKEN_ESTIMATOR must be one of {', '.join(_TOKEN_ESTIMATORS)}")
        if problems:
            raise ConfigurationError("; ".join(problems))
        return self

    def retrieval_options(self) -> RetrievalOptions:
        return RetrievalOptions(
            top_k=self.final_top_k,
            dense_top_k=self.dense_top_k,
            sparse_top_k=self.sparse_top_k,
            dense_weight=self.dense_weight,
            sparse_weight=self.sparse_weight,
            rrf_k=self.rrf_k,
            min_score=self.min_score,
            timeout_ms=self.retrieval_timeout_ms or None,
        )

    def rerank_config(self) -> RerankConfig:
        return RerankConfig(
            prefilter_threshold=self.prefilter_threshold,
            max_full_model_docs=self.max_full_model_docs,
            early_exit_threshold=self.early_exit_threshold,
            early_exit_min_results=self.early_exit_min_results,
        )

    def agentic_config(self) -> AgenticConfig:
        return AgenticConfig(
            max_iterations=self.max_iterations,
            sufficiency_threshold=self.sufficiency_threshold,
            query_rewriting_enabled=self.query_rewriting_enabled,
            retrieval=self.retrieval_options(),
            rerank=self.rerank_config(),
        )
