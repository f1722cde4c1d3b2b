"""Tests for the RetrievalService facade and the overall deadline helper."""

import asyncio

import pytest

from rag_core.application.dto.retrieval_dto import (
    AgenticConfig,
    HybridRetrievalResult,
    RetrievalOptions,
)
from rag_core.application.use_cases.retrieval_service import (
    RetrievalService,
    retrieve_with_timeout,
)
from rag_core.domain.errors import RetrievalError
from rag_core.domain.models import ExitReason, FusedResult, RerankedResult


class FakeRetriever:
    def __init__(self, n: int = 6, partial: bool = False) -> None:
        self.n = n
        self.partial = partial
        self.options: list[RetrievalOptions] = []

    async def retrieve(self, query, options=None) -> HybridRetrievalResult:
        self.options.append(options)
        return HybridRetrievalResult(
            results=[
                FusedResult(doc_id=f"d{i}", score=1.0 / (60 + i), rank=i, text="word " * 40)
                for i in range(1, self.n + 1)
            ],
            partial=self.partial,
        )


class ReversingReranker:
    """Reverses the fused order so the rerank step is observable."""

    async def rerank(self, query, candidates, config=None) -> list[RerankedResult]:
        n = len(candidates)
        return [
            RerankedResult(c.doc_id, (i + 1) / n, 1.0, ExitReason.FULL_MODEL, c)
            for i, c in reversed(list(enumerate(candidates)))
        ]


class RecordingAgentic:
    def __init__(self) -> None:
        self.calls: list[tuple] = []

    async def retrieve_agentic(self, query, context=None, config=None):
        self.calls.append((query, context, config))
        return "agentic-result"


def make_service(**kwargs) -> RetrievalService:
    return RetrievalService(
        kwargs.pop("retriever", FakeRetriever()),
        ReversingReranker(),
        kwargs.pop("agentic", RecordingAgentic()),
        **kwargs,
    )


@pytest.mark.asyncio
async def test_plain_retrieve_reranks_and_truncates():
    service = make_service(retriever=FakeRetriever(partial=True))

    response = await service.retrieve("gold loan rate", RetrievalOptions(top_k=3))

    assert [d.doc_id for d in response.documents] == ["d6", "d5", "d4"]
    assert response.documents[0].score == pytest.approx(1.0)
    assert response.partial is True


@pytest.mark.asyncio
async def test_plain_retrieve_applies_stage_budget():
    service = make_service()

    response = await service.retrieve("gold loan rate", RetrievalOptions(top_k=6), stage="greeting")

    assert [d.doc_id for d in response.documents] == ["d6"]


@pytest.mark.asyncio
async def test_plain_retrieve_defaults_to_configured_options():
    retriever = FakeRetriever()
    options = RetrievalOptions(top_k=2, timeout_ms=None)
    service = make_service(retriever=retriever, agentic_config=AgenticConfig(retrieval=options))

    response = await service.retrieve("gold loan")

    assert retriever.options == [options]
    assert len(response.documents) == 2


@pytest.mark.asyncio
async def test_agentic_call_uses_default_config():
    agentic = RecordingAgentic()
    config = AgenticConfig(max_iterations=2)
    service = make_service(agentic=agentic, agentic_config=config)

    assert await service.retrieve_agentic("gold loan") == "agentic-result"
    assert agentic.calls == [("gold loan", None, config)]


@pytest.mark.asyncio
async def test_retrieve_with_timeout_raises_retrieval_error_and_cancels():
    cancelled = asyncio.Event()

    async def slow():
        try:
            await asyncio.sleep(5)
        except asyncio.CancelledError:
            cancelled.set()
            raise

    with pytest.raises(RetrievalError) as exc:
        await retrieve_with_timeout(slow(), timeout_ms=20)

    assert "20ms" in str(exc.value)
    assert cancelled.is_set()


@pytest.mark.asyncio
@pytest.mark.parametrize("timeout_ms", [None, 0, 1000])
async def test_retrieve_with_timeout_passes_results_through(timeout_ms):
    async def fast():
        return 42

    assert await retrieve_with_timeout(fast(), timeout_ms) == 42
