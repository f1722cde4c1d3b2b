"""Wiring of adapters into the retrieval use cases.

Only this module knows concrete adapter classes; everything else depends
on ports.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

from rag_core.application.embedding_cache import EmbeddingCache
from rag_core.application.ports.clock_port import ClockPort
from rag_core.application.ports.dense_search_port import DenseSearchPort
from rag_core.application.ports.embedding_port import EmbeddingProvider
from rag_core.application.ports.judge_port import SufficiencyJudge
from rag_core.application.ports.rewriter_port import QueryRewriter
from rag_core.application.ports.scorer_port import CrossEncoderScorer
from rag_core.application.ports.sparse_search_port import SparseSearchPort
from rag_core.application.ports.telemetry_port import NullTelemetry, TelemetryPort
from rag_core.application.use_cases.agentic_retrieval import AgenticRetriever
from rag_core.application.use_cases.cascaded_rerank import CascadedReranker
from rag_core.application.use_cases.hybrid_retrieval import HybridRetriever
from rag_core.application.use_cases.prefetch import Prefetcher, PrefetchStrategy
from rag_core.application.use_cases.retrieval_service import RetrievalService
from rag_core.config.settings import AppSettings
from rag_core.domain.services.context_budget import (
    ContextBudgetManager,
    TokenEstimator,
    estimate_tokens_by_chars,
)
from rag_core.infrastructure.embeddings.sentence_transformers_provider import (
    SentenceTransformersEmbeddingProvider,
)
from rag_core.infrastructure.llm.openai_agentic_adapters import (
    OpenAIQueryRewriter,
    OpenAISufficiencyJudge,
)
from rag_core.infrastructure.reranking.cross_encoder_scorer import (
    SentenceTransformersCrossEncoderScorer,
)
from rag_core.infrastructure.sparse.bm25_sparse_search import BM25SparseSearch
from rag_core.infrastructure.telemetry.otel_adapter import OpenTelemetryAdapter, OtelConfig
from rag_core.infrastructure.time.system_clock import SystemClock
from rag_core.infrastructure.tokenization.tiktoken_estimator import TiktokenEstimator
from rag_core.infrastructure.vectorstore.chroma_dense_search import ChromaDenseSearch

logger = logging.getLogger(__name__)


def build_executor(settings: AppSettings) -> ThreadPoolExecutor:
    """Dedicated worker pool for embedding and cross-encoder calls."""
    return ThreadPoolExecutor(max_workers=settings.compute_workers, thread_name_prefix="rag-compute")


def build_telemetry(settings: AppSettings) -> TelemetryPort:
    if not settings.telemetry_enabled:
        return NullTelemetry()
    return OpenTelemetryAdapter(
        OtelConfig(
            otlp_endpoint=settings.otlp_endpoint or None,
            environment=settings.telemetry_environment,
        )
    )


def build_embedding(settings: AppSettings) -> SentenceTransformersEmbeddingProvider:
    return SentenceTransformersEmbeddingProvider(
        model_name=settings.embedding_model,
        device=settings.embedding_device,
        e5_prefix=settings.embedding_e5_prefix,
    )


def build_dense_search(settings: AppSettings) -> ChromaDenseSearch:
    return ChromaDenseSearch(persist_dir=settings.chroma_dir, collection=settings.collection)


def build_sparse_search(settings: AppSettings) -> SparseSearchPort:
    path = Path(settings.sparse_corpus_path)
    if not path.is_file():
        logger.warning("Sparse corpus %s not found, sparse search will return nothing", path)
        return BM25SparseSearch([])
    return BM25SparseSearch.from_jsonl(path)


def build_scorer(settings: AppSettings) -> CrossEncoderScorer:
    """Cross-encoder for the full-model rerank stage.

    Environment variables:
        RERANKER_MODEL: Model name (default: BAAI/bge-reranker-v2-m3)
        RERANKER_DEVICE: cpu or cuda (default: cpu)
        RERANKER_APPLY_SIGMOID: Apply sigmoid to scores (default: true)
    """
    return SentenceTransformersCrossEncoderScorer(
        model_name=settings.reranker_model,
        device=settings.reranker_device,
        apply_sigmoid=settings.reranker_apply_sigmoid,
    )


def build_rewriter(settings: AppSettings) -> QueryRewriter | None:
    if not settings.query_rewriting_enabled:
        return None
    return OpenAIQueryRewriter(
        base_url=settings.llm_base_url, api_key=settings.llm_api_key, model=settings.llm_model
    )


def build_judge(settings: AppSettings) -> SufficiencyJudge | None:
    """LLM judge when USE_LLM_JUDGE is set; None selects the relevance heuristic."""
    if not settings.use_llm_judge:
        return None
    return OpenAISufficiencyJudge(
        base_url=settings.llm_base_url, api_key=settings.llm_api_key, model=settings.llm_model
    )


def build_token_estimator(settings: AppSettings) -> TokenEstimator:
    if settings.token_estimator == "tiktoken":
        return TiktokenEstimator(settings.tiktoken_encoding)
    return estimate_tokens_by_chars


def build_clock() -> ClockPort:
    """Tests should inject a fake clock instead."""
    return SystemClock()


def build_retrieval_service(
    settings: AppSettings | None = None,
    *,
    embedding: EmbeddingProvider | None = None,
    dense: DenseSearchPort | None = None,
    sparse: SparseSearchPort | None = None,
    scorer: CrossEncoderScorer | None = None,
    executor: ThreadPoolExecutor | None = None,
) -> RetrievalService:
    """Build the full retrieval graph; keyword arguments override single adapters."""
    settings = (settings or AppSettings()).validate()
    telemetry = build_telemetry(settings)
    executor = executor or build_executor(settings)
    cache = EmbeddingCache(
        provider=embedding or build_embedding(settings),
        capacity=settings.cache_capacity,
        executor=executor,
        telemetry=telemetry,
    )
    retriever = HybridRetriever(
        embeddings=cache,
        dense=dense or build_dense_search(settings),
        sparse=sparse or build_sparse_search(settings),
        telemetry=telemetry,
    )
    reranker = CascadedReranker(
        scorer=scorer or build_scorer(settings), executor=executor, telemetry=telemetry
    )
    budget_manager = ContextBudgetManager(estimate_tokens=build_token_estimator(settings))
    agentic = AgenticRetriever(
        retriever=retriever,
        reranker=reranker,
        rewriter=build_rewriter(settings),
        judge=build_judge(settings),
        budget_manager=budget_manager,
        telemetry=telemetry,
    )
    return RetrievalService(
        retriever=retriever,
        reranker=reranker,
        agentic=agentic,
        budget_manager=budget_manager,
        rerank_config=settings.rerank_config(),
        agentic_config=settings.agentic_config(),
    )


def build_prefetcher(service: RetrievalService, settings: AppSettings | None = None) -> Prefetcher:
    settings = settings or AppSettings()
    return Prefetcher(
        retriever=service.retriever,
        clock=build_clock(),
        strategy=PrefetchStrategy(settings.prefetch_strategy),
        options=settings.retrieval_options(),
    )
