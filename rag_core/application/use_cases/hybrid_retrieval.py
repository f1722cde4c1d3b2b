"""Hybrid (dense + sparse) retrieval with rank fusion and graceful degradation.

Pipeline:
1. Dense branch: query embedding via EmbeddingCache, then vector search
2. Sparse branch: keyword search, started concurrently with the dense branch
3. Join both branches (bounded by the per-call timeout)
4. Reciprocal Rank Fusion over the surviving sources
5. Drop fused results below ``min_score`` and truncate to ``top_k``

Each branch yields a tagged ``Result`` instead of raising, so one failing
source never short-circuits the other. Only "both sources failed" is raised.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Sequence

from rag_core.application.dto.retrieval_dto import HybridRetrievalResult, RetrievalOptions
from rag_core.application.embedding_cache import EmbeddingCache
from rag_core.application.ports.dense_search_port import DenseSearchPort
from rag_core.application.ports.sparse_search_port import SparseSearchPort
from rag_core.application.ports.telemetry_port import NullTelemetry, TelemetryPort
from rag_core.domain.errors import (
    DomainError,
    EmbeddingError,
    RetrievalError,
    SparseIndexError,
    VectorStoreError,
)
from rag_core.domain.models import Candidate, Query, Source
from rag_core.domain.services.fusion import fuse
from rag_core.domain.types import Result

logger = logging.getLogger(__name__)

LATENCY_TARGET_MS = 100.0

SourceResult = Result[list[Candidate], DomainError]


def _as_query(query: Query | str) -> Query:
    return query if isinstance(query, Query) else Query.from_text(query)


def _timeout_error(source: Source, timeout_ms: int | None) -> DomainError:
    msg = f"{source.value} search timed out after {timeout_ms}ms"
    if source is Source.DENSE:
        return VectorStoreError(msg)
    return SparseIndexError(msg)


class HybridRetriever:
    """Parallel dense + sparse search fused with RRF.

    Args:
        embeddings: Shared embedding cache (query vectors)
        dense: Vector store port
        sparse: Sparse/BM25 index port
        telemetry: Optional metrics sink
    """

    def __init__(
        self,
        embeddings: EmbeddingCache,
        dense: DenseSearchPort,
        sparse: SparseSearchPort,
        telemetry: TelemetryPort | None = None,
    ) -> None:
        self.embeddings = embeddings
        self.dense = dense
        self.sparse = sparse
        self.telemetry = telemetry or NullTelemetry()

    async def retrieve(
        self,
        query: Query | str,
        options: RetrievalOptions | None = None,
    ) -> HybridRetrievalResult:
        """Run one hybrid retrieval.

        Returns:
            HybridRetrievalResult whose ``partial`` flag is set when a source
            failed or missed the deadline.

        Raises:
            ValidationError: empty query text
            RetrievalError: both sources failed or timed out
        """
        q = _as_query(query)
        opts = options or RetrievalOptions()
        start = time.perf_counter()

        tasks: dict[Source, asyncio.Task[SourceResult]] = {
            Source.DENSE: asyncio.create_task(self._dense_branch(q, opts.dense_top_k)),
            Source.SPARSE: asyncio.create_task(self._sparse_branch(q, opts.sparse_top_k)),
        }
        timeout_s = opts.timeout_ms / 1000.0 if opts.timeout_ms else None
        try:
            _, pending = await asyncio.wait(tasks.values(), timeout=timeout_s)
        except asyncio.CancelledError:
            for task in tasks.values():
                task.cancel()
            raise

        timed_out: list[Source] = []
        for source, task in tasks.items():
            if task in pending:
                task.cancel()
                timed_out.append(source)
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        outcomes: dict[Source, SourceResult] = {}
        for source, task in tasks.items():
            if source in timed_out:
                logger.warning("%s search missed the %sms deadline", source.value, opts.timeout_ms)
                self.telemetry.incr("rag.retrieval.timeouts", {"source": source.value})
                outcomes[source] = Result.failure(_timeout_error(source, opts.timeout_ms))
            else:
                outcomes[source] = task.result()

        dense_r, sparse_r = outcomes[Source.DENSE], outcomes[Source.SPARSE]
        if not dense_r.ok and not sparse_r.ok:
            self.telemetry.incr("rag.retrieval.failures")
            raise RetrievalError(
                f"both sources failed: dense={dense_r.error}; sparse={sparse_r.error}",
                dense_error=dense_r.error,
                sparse_error=sparse_r.error,
            )

        failed = tuple(s for s, r in outcomes.items() if not r.ok)
        fused = fuse(
            dense_r.value or [],
            sparse_r.value or [],
            k=opts.rrf_k,
            dense_weight=opts.dense_weight,
            sparse_weight=opts.sparse_weight,
        )
        kept = [r for r in fused if r.score >= opts.min_score][: opts.top_k]

        latency_ms = (time.perf_counter() - start) * 1000
        self.telemetry.observe("rag.retrieval.latency_ms", latency_ms)
        if failed:
            self.telemetry.incr("rag.retrieval.partial")
        logger.info(
            "Hybrid retrieval: query='%s', dense=%d, sparse=%d, fused=%d, kept=%d, "
            "partial=%s, latency=%.1fms",
            q.text[:40],
            len(dense_r.value or []),
            len(sparse_r.value or []),
            len(fused),
            len(kept),
            bool(failed),
            latency_ms,
        )
        if latency_ms > LATENCY_TARGET_MS:
            logger.warning(
                "Hybrid retrieval latency %.1fms exceeds %.0fms target",
                latency_ms,
                LATENCY_TARGET_MS,
            )

        return HybridRetrievalResult(
            results=kept,
            partial=bool(failed),
            failed_sources=failed,
            timed_out=tuple(timed_out),
            latency_ms=latency_ms,
        )

    async def _dense_branch(self, q: Query, top_k: int) -> SourceResult:
        try:
            vector = await self.embeddings.get_or_compute(q.text)
        except EmbeddingError as ex:
            logger.warning("Query embedding failed, dense branch skipped: %s", ex)
            self.telemetry.incr("rag.retrieval.source_failures", {"source": "dense"})
            return Result.failure(ex)
        try:
            hits = await self.dense.search(vector, top_k)
        except VectorStoreError as ex:
            return self._branch_failed(Source.DENSE, ex)
        except Exception as ex:  # noqa: BLE001
            err = VectorStoreError(f"dense search failed: {ex}")
            return self._branch_failed(Source.DENSE, err)
        return Result.success(_take(hits, top_k))

    async def _sparse_branch(self, q: Query, top_k: int) -> SourceResult:
        try:
            hits = await self.sparse.search(q.sparse_text, top_k)
        except SparseIndexError as ex:
            return self._branch_failed(Source.SPARSE, ex)
        except Exception as ex:  # noqa: BLE001
            err = SparseIndexError(f"sparse search failed: {ex}")
            return self._branch_failed(Source.SPARSE, err)
        return Result.success(_take(hits, top_k))

    def _branch_failed(self, source: Source, error: DomainError) -> SourceResult:
        logger.warning("%s search failed, degrading to the other source: %s", source.value, error)
        self.telemetry.incr("rag.retrieval.source_failures", {"source": source.value})
        return Result.failure(error)


def _take(hits: Sequence[Candidate], top_k: int) -> list[Candidate]:
    return list(hits)[:top_k]
