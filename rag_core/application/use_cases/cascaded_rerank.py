"""Two-stage rerank cascade with early exit.

Stage 1 (prefilter): a cheap IDF-weighted term-overlap score for every
candidate; those below ``prefilter_threshold`` never reach the cross-encoder.

Stage 2 (full model): survivors are scored one at a time in fused-rank order,
at most ``max_full_model_docs`` of them. Scoring stops as soon as
``early_exit_min_results`` scores exceed ``early_exit_threshold``.

Why: bounds worst-case latency while keeping quality in the common case
where strong matches sit near the top of the fused list.
"""

from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import Sequence
from concurrent.futures import Executor

from rag_core.application.dto.retrieval_dto import RerankConfig, RerankOutcome
from rag_core.application.ports.scorer_port import CrossEncoderScorer
from rag_core.application.ports.telemetry_port import NullTelemetry, TelemetryPort
from rag_core.domain.models import ExitReason, FusedResult, Query, RerankedResult
from rag_core.domain.services.prefilter import prefilter_scores
from rag_core.domain.services.reranking import order_cascade, should_exit_early

logger = logging.getLogger(__name__)


class CascadedReranker:
    """Prefilter + cross-encoder cascade.

    Args:
        scorer: Expensive query-document scorer (blocking, run on ``executor``)
        executor: Worker pool for scorer calls (None = loop default executor)
        telemetry: Optional metrics sink
    """

    def __init__(
        self,
        scorer: CrossEncoderScorer,
        executor: Executor | None = None,
        telemetry: TelemetryPort | None = None,
    ) -> None:
        self.scorer = scorer
        self.executor = executor
        self.telemetry = telemetry or NullTelemetry()

    async def rerank(
        self,
        query: Query | str,
        candidates: Sequence[FusedResult],
        config: RerankConfig | None = None,
    ) -> list[RerankedResult]:
        outcome = await self.rerank_with_stats(query, candidates, config)
        return outcome.results

    async def rerank_with_stats(
        self,
        query: Query | str,
        candidates: Sequence[FusedResult],
        config: RerankConfig | None = None,
    ) -> RerankOutcome:
        """Rerank ``candidates`` and report how much of the cascade ran."""
        cfg = config or RerankConfig()
        if not candidates:
            return RerankOutcome(results=[])

        query_text = query.text if isinstance(query, Query) else query
        ordered = sorted(candidates, key=lambda c: c.rank)
        quick = prefilter_scores(query_text, [c.text for c in ordered])

        survivors: list[tuple[FusedResult, float]] = []
        results: list[RerankedResult] = []
        for cand, pscore in zip(ordered, quick, strict=True):
            if pscore < cfg.prefilter_threshold:
                results.append(
                    RerankedResult(
                        doc_id=cand.doc_id,
                        score=None,
                        prefilter_score=pscore,
                        exit_reason=ExitReason.PREFILTERED,
                        fused=cand,
                    )
                )
            else:
                survivors.append((cand, pscore))

        loop = asyncio.get_running_loop()
        scores: list[float] = []
        calls = 0
        failures = 0
        early_exit = False
        for idx, (cand, pscore) in enumerate(survivors):
            if calls >= cfg.max_full_model_docs or early_exit:
                results.append(
                    RerankedResult(
                        doc_id=cand.doc_id,
                        score=None,
                        prefilter_score=pscore,
                        exit_reason=ExitReason.EARLY_EXIT,
                        fused=cand,
                    )
                )
                continue

            calls += 1
            error: str | None = None
            try:
                score = float(
                    await loop.run_in_executor(
                        self.executor, self.scorer.score, query_text, cand.text
                    )
                )
                if math.isnan(score):
                    raise ValueError("scorer returned NaN")
            except Exception as ex:  # noqa: BLE001
                failures += 1
                score = -math.inf
                error = str(ex) or type(ex).__name__
                logger.warning("Scoring failed for %s, sinking it: %s", cand.doc_id, error)
                self.telemetry.incr("rag.rerank.scorer_failures")
            else:
                scores.append(score)

            results.append(
                RerankedResult(
                    doc_id=cand.doc_id,
                    score=score,
                    prefilter_score=pscore,
                    exit_reason=ExitReason.FULL_MODEL,
                    fused=cand,
                    error=error,
                )
            )

            if should_exit_early(scores, cfg.early_exit_threshold, cfg.early_exit_min_results):
                early_exit = idx + 1 < len(survivors)
                if early_exit:
                    logger.debug(
                        "Early exit after %d/%d survivors (%d above %.2f)",
                        idx + 1,
                        len(survivors),
                        cfg.early_exit_min_results,
                        cfg.early_exit_threshold,
                    )
                else:
                    break

        if early_exit:
            self.telemetry.incr("rag.rerank.early_exit")
        self.telemetry.observe("rag.rerank.full_model_calls", float(calls))
        logger.debug(
            "Rerank: candidates=%d, prefiltered=%d, scored=%d, failures=%d, early_exit=%s",
            len(ordered),
            len(ordered) - len(survivors),
            calls,
            failures,
            early_exit,
        )
        return RerankOutcome(
            results=order_cascade(results),
            full_model_calls=calls,
            early_exit_triggered=early_exit,
            scorer_failures=failures,
        )
