"""Agentic multi-step retrieval.

State machine: Retrieving -> Assessing -> (Rewriting -> Retrieving) | Done.

Sufficiency:
- If a SufficiencyJudge is configured it is authoritative; its verdict is
  used as-is and the heuristic is not consulted.
- Otherwise the heuristic applies: average relevance of the top 3 reranked
  results compared against ``sufficiency_threshold``.
The chosen path is recorded on the returned assessment (``source``).

The iteration cap is a bounded ``for`` range. Rewriter, judge and
later-round retrieval failures end the loop with the best evidence so far.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from rag_core.application.dto.retrieval_dto import AgenticConfig
from rag_core.application.ports.judge_port import SufficiencyJudge
from rag_core.application.ports.rewriter_port import QueryRewriter
from rag_core.application.ports.telemetry_port import NullTelemetry, TelemetryPort
from rag_core.application.use_cases.cascaded_rerank import CascadedReranker
from rag_core.application.use_cases.hybrid_retrieval import HybridRetriever
from rag_core.domain.errors import RetrievalError
from rag_core.domain.models import (
    AgenticSearchResult,
    ConversationContext,
    Query,
    RerankedResult,
    StopCause,
    SufficiencyAssessment,
    normalize_text,
)
from rag_core.domain.services.context_budget import ContextBudgetManager
from rag_core.domain.services.sufficiency import heuristic_assessment

logger = logging.getLogger(__name__)

# Documents shown to the judge per assessment
JUDGE_TOP_N = 5


@dataclass
class _LoopState:
    """Mutable bookkeeping for one ``retrieve_agentic`` call."""

    current: Query
    queries: list[str] = field(default_factory=list)
    results: list[RerankedResult] = field(default_factory=list)
    results_query: str = ""
    assessment: SufficiencyAssessment | None = None
    partial: bool = False
    rewritten: bool = False
    iterations: int = 0


def _same_query(a: str, b: str) -> bool:
    return normalize_text(a).casefold() == normalize_text(b).casefold()


class AgenticRetriever:
    """Retrieve, assess, rewrite; repeat up to ``max_iterations`` times.

    Args:
        retriever: Hybrid dense + sparse retriever
        reranker: Rerank cascade applied to every round
        rewriter: Optional query rewriter (None disables rewriting)
        judge: Optional sufficiency judge (authoritative when present)
        budget_manager: Stage-aware context budget for the final documents
        telemetry: Optional metrics sink
    """

    def __init__(
        self,
        retriever: HybridRetriever,
        reranker: CascadedReranker,
        rewriter: QueryRewriter | None = None,
        judge: SufficiencyJudge | None = None,
        budget_manager: ContextBudgetManager | None = None,
        telemetry: TelemetryPort | None = None,
    ) -> None:
        self.retriever = retriever
        self.reranker = reranker
        self.rewriter = rewriter
        self.judge = judge
        self.budget_manager = budget_manager or ContextBudgetManager()
        self.telemetry = telemetry or NullTelemetry()

    async def retrieve_agentic(
        self,
        query: Query | str,
        context: ConversationContext | None = None,
        config: AgenticConfig | None = None,
    ) -> AgenticSearchResult:
        """Run the bounded retrieval loop.

        Raises:
            ValidationError: empty query text
            RetrievalError: both sources failed on the first round
        """
        cfg = config or AgenticConfig()
        ctx = context or ConversationContext()
        first = query if isinstance(query, Query) else Query.from_text(query)
        state = _LoopState(current=first)
        stop = StopCause.MAX_ITERATIONS

        for iteration in range(1, cfg.max_iterations + 1):
            state.iterations = iteration
            state.queries.append(state.current.text)

            # Retrieving
            try:
                hybrid = await self.retriever.retrieve(state.current, cfg.retrieval)
            except RetrievalError as ex:
                if iteration == 1:
                    raise
                logger.warning(
                    "Retrieval failed on round %d, keeping round %d evidence: %s",
                    iteration,
                    iteration - 1,
                    ex,
                )
                stop = StopCause.RETRIEVAL_FAILED
                break
            reranked = await self.reranker.rerank(state.current, hybrid.results, cfg.rerank)
            state.results = reranked
            state.results_query = state.current.text
            state.partial = hybrid.partial

            # Assessing
            assessment = await self._assess(state.current.text, reranked, cfg)
            if assessment is None:
                stop = StopCause.JUDGE_FAILED
                break
            state.assessment = assessment
            logger.debug(
                "Round %d: query='%s', results=%d, coverage=%.2f (%s), sufficient=%s",
                iteration,
                state.current.text[:40],
                len(reranked),
                assessment.coverage,
                assessment.source,
                assessment.sufficient,
            )

            if assessment.sufficient:
                stop = StopCause.SUFFICIENT
                break
            if iteration == cfg.max_iterations:
                stop = StopCause.MAX_ITERATIONS
                break
            if not cfg.query_rewriting_enabled or self.rewriter is None:
                stop = StopCause.REWRITING_DISABLED
                break

            # Rewriting
            next_query = await self._rewrite(state, ctx, assessment)
            if next_query is None:
                stop = StopCause.REWRITE_FAILED
                break
            if not normalize_text(next_query) or any(
                _same_query(next_query, seen) for seen in state.queries
            ):
                logger.info("Ineffective rewrite %r, stopping after round %d", next_query, iteration)
                stop = StopCause.INEFFECTIVE_REWRITE
                break
            state.current = Query.from_text(next_query, language=first.language)
            state.rewritten = True

        documents = [r.to_document() for r in state.results]
        budget = self.budget_manager.budget_for(ctx.stage)
        selected = self.budget_manager.select(documents, budget)

        self.telemetry.observe("rag.agentic.iterations", float(state.iterations))
        self.telemetry.incr("rag.agentic.stops", {"cause": stop.value})
        logger.info(
            "Agentic retrieval finished: iterations=%d, stop=%s, rewritten=%s, documents=%d/%d",
            state.iterations,
            stop.value,
            state.rewritten,
            len(selected),
            len(documents),
        )
        return AgenticSearchResult(
            documents=selected,
            iterations=state.iterations,
            query_rewritten=state.rewritten,
            terminal_reason=stop.terminal_reason,
            stop_cause=stop,
            final_query=state.results_query,
            queries=tuple(state.queries),
            assessment=state.assessment,
            partial=state.partial,
        )

    async def _assess(
        self,
        query_text: str,
        results: list[RerankedResult],
        cfg: AgenticConfig,
    ) -> SufficiencyAssessment | None:
        """Judge verdict when a judge is wired, heuristic otherwise; None on judge failure."""
        if self.judge is None:
            return heuristic_assessment(results, cfg.sufficiency_threshold)
        top_documents = [r.to_document() for r in results[:JUDGE_TOP_N]]
        try:
            return await self.judge.assess(query_text, top_documents)
        except Exception as ex:  # noqa: BLE001
            logger.warning("Sufficiency judge failed, stopping with current evidence: %s", ex)
            self.telemetry.incr("rag.agentic.judge_failures")
            return None

    async def _rewrite(
        self,
        state: _LoopState,
        ctx: ConversationContext,
        assessment: SufficiencyAssessment,
    ) -> str | None:
        assert self.rewriter is not None
        try:
            return await self.rewriter.rewrite(
                state.current.text, ctx, assessment.missing_information
            )
        except Exception as ex:  # noqa: BLE001
            logger.warning("Query rewrite failed, stopping with current evidence: %s", ex)
            self.telemetry.incr("rag.agentic.rewrite_failures")
            return None
