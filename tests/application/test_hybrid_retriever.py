"""Tests for HybridRetriever: parallel search, fusion, graceful degradation."""

import asyncio
import time

import pytest

from rag_core.application.dto.retrieval_dto import RetrievalOptions
from rag_core.application.embedding_cache import EmbeddingCache
from rag_core.application.use_cases.hybrid_retrieval import HybridRetriever
from rag_core.domain.errors import (
    EmbeddingError,
    RetrievalError,
    SparseIndexError,
    ValidationError,
    VectorStoreError,
)
from rag_core.domain.models import Candidate, Query, Source


class FakeEmbedding:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail

    def embed(self, text: str) -> list[float]:
        if self.fail:
            raise EmbeddingError("embedding service down")
        return [0.1, 0.2, 0.3]


class FakeSearch:
    """Fake dense or sparse port returning fixed ids after an optional delay."""

    def __init__(self, source: Source, ids: list[str], delay_s: float = 0.0, error=None) -> None:
        self.source = source
        self.ids = ids
        self.delay_s = delay_s
        self.error = error
        self.queries: list = []
        self.cancelled = False

    async def search(self, query, top_k: int) -> list[Candidate]:
        self.queries.append(query)
        try:
            if self.delay_s:
                await asyncio.sleep(self.delay_s)
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        if self.error is not None:
            raise self.error
        return [
            Candidate(doc_id=d, text=f"text {d}", source=self.source, rank=i, score=1.0 / i)
            for i, d in enumerate(self.ids[:top_k], start=1)
        ]


def make_retriever(dense: FakeSearch, sparse: FakeSearch, embedding=None) -> HybridRetriever:
    cache = EmbeddingCache(embedding or FakeEmbedding(), capacity=8)
    return HybridRetriever(embeddings=cache, dense=dense, sparse=sparse)


@pytest.mark.asyncio
async def test_both_sources_fused():
    retriever = make_retriever(
        FakeSearch(Source.DENSE, ["A", "B", "C"]), FakeSearch(Source.SPARSE, ["B", "D", "A"])
    )

    result = await retriever.retrieve("gold loan rate", RetrievalOptions(timeout_ms=None))

    assert [r.doc_id for r in result.results][:2] == ["B", "A"]
    assert [r.rank for r in result.results] == [1, 2, 3, 4]
    assert not result.partial
    assert result.failed_sources == ()


@pytest.mark.asyncio
async def test_dense_failure_degrades_to_sparse():
    retriever = make_retriever(
        FakeSearch(Source.DENSE, [], error=VectorStoreError("index offline")),
        FakeSearch(Source.SPARSE, ["s1", "s2"]),
    )

    result = await retriever.retrieve("q")

    assert result.partial
    assert result.failed_sources == (Source.DENSE,)
    assert [r.doc_id for r in result.results] == ["s1", "s2"]


@pytest.mark.asyncio
async def test_unexpected_sparse_exception_is_absorbed():
    retriever = make_retriever(
        FakeSearch(Source.DENSE, ["d1"]),
        FakeSearch(Source.SPARSE, [], error=RuntimeError("boom")),
    )

    result = await retriever.retrieve("q")

    assert result.partial
    assert result.failed_sources == (Source.SPARSE,)
    assert [r.doc_id for r in result.results] == ["d1"]


@pytest.mark.asyncio
async def test_embedding_failure_skips_dense_branch():
    dense = FakeSearch(Source.DENSE, ["d1"])
    retriever = make_retriever(dense, FakeSearch(Source.SPARSE, ["s1"]), FakeEmbedding(fail=True))

    result = await retriever.retrieve("q")

    assert result.partial
    assert dense.queries == []
    assert [r.doc_id for r in result.results] == ["s1"]


@pytest.mark.asyncio
async def test_both_sources_failing_raises_retrieval_error():
    retriever = make_retriever(
        FakeSearch(Source.DENSE, [], error=VectorStoreError("dense down")),
        FakeSearch(Source.SPARSE, [], error=SparseIndexError("sparse down")),
    )

    with pytest.raises(RetrievalError) as exc:
        await retriever.retrieve("q")

    assert isinstance(exc.value.dense_error, VectorStoreError)
    assert isinstance(exc.value.sparse_error, SparseIndexError)


@pytest.mark.asyncio
async def test_slow_source_times_out_and_is_cancelled():
    dense = FakeSearch(Source.DENSE, ["d1"], delay_s=2.0)
    retriever = make_retriever(dense, FakeSearch(Source.SPARSE, ["s1"]))

    start = time.perf_counter()
    result = await retriever.retrieve("q", RetrievalOptions(timeout_ms=50))

    assert time.perf_counter() - start < 1.0
    assert result.partial
    assert result.timed_out == (Source.DENSE,)
    assert dense.cancelled
    assert [r.doc_id for r in result.results] == ["s1"]


@pytest.mark.asyncio
async def test_both_sources_timing_out_raises():
    retriever = make_retriever(
        FakeSearch(Source.DENSE, ["d1"], delay_s=2.0),
        FakeSearch(Source.SPARSE, ["s1"], delay_s=2.0),
    )

    with pytest.raises(RetrievalError):
        await retriever.retrieve("q", RetrievalOptions(timeout_ms=30))


@pytest.mark.asyncio
async def test_min_score_and_top_k():
    retriever = make_retriever(
        FakeSearch(Source.DENSE, ["a", "b", "c", "d"]), FakeSearch(Source.SPARSE, ["a", "b"])
    )

    result = await retriever.retrieve("q", RetrievalOptions(top_k=3, min_score=1 / 62))

    # a, b are in both lists; c (1/63) and d (1/64) fall below min_score
    assert [r.doc_id for r in result.results] == ["a", "b"]

    capped = await retriever.retrieve("q", RetrievalOptions(top_k=3))
    assert [r.rank for r in capped.results] == [1, 2, 3]


@pytest.mark.asyncio
async def test_sparse_branch_receives_expansion_terms():
    sparse = FakeSearch(Source.SPARSE, ["s1"])
    retriever = make_retriever(FakeSearch(Source.DENSE, ["d1"]), sparse)

    await retriever.retrieve(Query.from_text("gold loan", expansion_terms=["interest"]))

    assert sparse.queries == ["gold loan interest"]


@pytest.mark.asyncio
async def test_empty_query_is_rejected():
    retriever = make_retriever(FakeSearch(Source.DENSE, []), FakeSearch(Source.SPARSE, []))
    with pytest.raises(ValidationError):
        await retriever.retrieve("   ")


@pytest.mark.asyncio
async def test_caller_cancellation_cancels_both_branches():
    dense = FakeSearch(Source.DENSE, ["d1"], delay_s=2.0)
    sparse = FakeSearch(Source.SPARSE, ["s1"], delay_s=2.0)
    retriever = make_retriever(dense, sparse)

    task = asyncio.create_task(retriever.retrieve("q", RetrievalOptions(timeout_ms=None)))
    await asyncio.sleep(0.05)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    await asyncio.sleep(0.01)

    assert dense.cancelled and sparse.cancelled
