# rag_core/application/use_cases/retrieval_service.py
from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable
from typing import TypeVar

from rag_core.application.dto.retrieval_dto import (
    AgenticConfig,
    RerankConfig,
    RetrievalOptions,
    RetrievalResponse,
)
from rag_core.application.use_cases.agentic_retrieval import AgenticRetriever
from rag_core.application.use_cases.cascaded_rerank import CascadedReranker
from rag_core.application.use_cases.hybrid_retrieval import HybridRetriever
from rag_core.domain.errors import RetrievalError
from rag_core.domain.models import (
    AgenticSearchResult,
    ConversationContext,
    ConversationStage,
    Query,
)
from rag_core.domain.services.context_budget import ContextBudgetManager

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def retrieve_with_timeout(call: Awaitable[T], timeout_ms: int | None) -> T:
    """Await ``call`` under an overall deadline; expiry cancels it.

    Raises:
        RetrievalError: the deadline passed before ``call`` finished
    """
    if not timeout_ms:
        return await call
    try:
        return await asyncio.wait_for(call, timeout=timeout_ms / 1000.0)
    except asyncio.TimeoutError as ex:
        raise RetrievalError(f"retrieval exceeded the {timeout_ms}ms deadline") from ex


class RetrievalService:
    """
    Entry point for the surrounding agent: plain and agentic retrieval.
    Holds no state of its own; the embedding cache inside the retriever is
    the only thing shared between calls.
    """

    def __init__(
        self,
        retriever: HybridRetriever,
        reranker: CascadedReranker,
        agentic: AgenticRetriever,
        budget_manager: ContextBudgetManager | None = None,
        rerank_config: RerankConfig | None = None,
        agentic_config: AgenticConfig | None = None,
    ) -> None:
        self.retriever = retriever
        self.reranker = reranker
        self.agentic = agentic
        self.budget_manager = budget_manager or ContextBudgetManager()
        self.rerank_config = rerank_config or RerankConfig()
        self.agentic_config = agentic_config or AgenticConfig()

    async def retrieve(
        self,
        query: Query | str,
        options: RetrievalOptions | None = None,
        stage: ConversationStage | str | None = None,
    ) -> RetrievalResponse:
        """Hybrid retrieval, rerank, then the stage budget when ``stage`` is given."""
        opts = options or self.agentic_config.retrieval
        hybrid = await self.retriever.retrieve(query, opts)
        reranked = await self.reranker.rerank(query, hybrid.results, self.rerank_config)
        documents = [r.to_document() for r in reranked][: opts.top_k]
        if stage is not None:
            documents = self.budget_manager.select(
                documents, self.budget_manager.budget_for(stage)
            )
        logger.debug(
            "Plain retrieval: fused=%d, documents=%d, stage=%s, partial=%s",
            len(hybrid),
            len(documents),
            stage,
            hybrid.partial,
        )
        return RetrievalResponse(documents=documents, partial=hybrid.partial)

    async def retrieve_agentic(
        self,
        query: Query | str,
        context: ConversationContext | None = None,
        config: AgenticConfig | None = None,
    ) -> AgenticSearchResult:
        return await self.agentic.retrieve_agentic(query, context, config or self.agentic_config)
