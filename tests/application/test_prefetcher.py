"""Tests for speculative retrieval on partial transcripts."""

import pytest

from rag_core.application.dto.retrieval_dto import HybridRetrievalResult
from rag_core.application.ports.clock_port import ClockPort
from rag_core.application.use_cases.prefetch import (
    BACKGROUND_SKIP_TTL_S,
    PREFETCH_FRESHNESS_S,
    Prefetcher,
    PrefetchStrategy,
)
from rag_core.domain.errors import RetrievalError
from rag_core.domain.models import ConversationStage, FusedResult


class FakeClock(ClockPort):
    def __init__(self) -> None:
        self.now = 100.0

    def monotonic(self) -> float:
        return self.now


class FakeRetriever:
    def __init__(self, empty: bool = False, error: Exception | None = None) -> None:
        self.empty = empty
        self.error = error
        self.queries: list[str] = []

    async def retrieve(self, query, options=None) -> HybridRetrievalResult:
        self.queries.append(query)
        if self.error is not None:
            raise self.error
        if self.empty:
            return HybridRetrievalResult(results=[])
        return HybridRetrievalResult(
            results=[FusedResult(doc_id="gold-1", score=0.03, rank=1, text="gold loan rates")]
        )


def make_prefetcher(strategy=PrefetchStrategy.CONSERVATIVE, **kwargs):
    clock = FakeClock()
    retriever = kwargs.pop("retriever", FakeRetriever())
    return Prefetcher(retriever, clock, strategy=strategy), retriever, clock


class TestStrategy:
    def test_disabled_never_prefetches(self):
        assert not PrefetchStrategy.DISABLED.should_prefetch(1.0, None)

    def test_conservative_needs_confidence_and_an_active_stage(self):
        s = PrefetchStrategy.CONSERVATIVE
        assert s.should_prefetch(0.6, ConversationStage.DISCOVERY)
        assert not s.should_prefetch(0.59, ConversationStage.DISCOVERY)
        assert not s.should_prefetch(0.9, ConversationStage.GREETING)
        assert not s.should_prefetch(0.9, "farewell")
        assert s.should_prefetch(0.9, "unknown-stage")

    def test_aggressive_lower_threshold_any_stage(self):
        s = PrefetchStrategy.AGGRESSIVE
        assert s.should_prefetch(0.4, ConversationStage.GREETING)
        assert not s.should_prefetch(0.39, None)
        assert s.min_words == 2
        assert PrefetchStrategy.CONSERVATIVE.min_words == 3


@pytest.mark.asyncio
async def test_prefetch_stores_results_for_confident_partial():
    prefetcher, retriever, _ = make_prefetcher()

    stored = await prefetcher.prefetch_on_partial("  what is the   gold loan", 0.8)

    assert stored is True
    assert retriever.queries == ["what is the gold loan"]
    assert prefetcher.entry.query == "what is the gold loan"


@pytest.mark.asyncio
async def test_short_or_unconfident_partials_are_skipped():
    prefetcher, retriever, _ = make_prefetcher()

    assert await prefetcher.prefetch_on_partial("gold loan", 0.9) is False
    assert await prefetcher.prefetch_on_partial("what is gold loan", 0.3) is False
    assert retriever.queries == []


@pytest.mark.asyncio
async def test_extension_of_recent_prefetch_is_skipped_within_ttl():
    prefetcher, retriever, clock = make_prefetcher()
    await prefetcher.prefetch_on_partial("what is the gold", 0.9)

    clock.now += 1.0
    assert await prefetcher.prefetch_on_partial("what is the gold loan", 0.9) is False

    clock.now += PrefetchStrategy.CONSERVATIVE.cache_ttl_s
    assert await prefetcher.prefetch_on_partial("what is the gold loan", 0.9) is True
    assert len(retriever.queries) == 2


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "retriever",
    [FakeRetriever(empty=True), FakeRetriever(error=RetrievalError("both sources failed"))],
)
async def test_failed_or_empty_prefetch_stores_nothing(retriever):
    prefetcher, _, _ = make_prefetcher(retriever=retriever)

    assert await prefetcher.prefetch_on_partial("what is the gold loan", 0.9) is False
    assert prefetcher.entry is None


@pytest.mark.asyncio
async def test_get_prefetched_matches_by_containment():
    prefetcher, _, _ = make_prefetcher()
    await prefetcher.prefetch_on_partial("what is the gold loan", 0.9)

    assert [r.doc_id for r in prefetcher.get_prefetched("What is the GOLD loan rate?")] == [
        "gold-1"
    ]
    assert prefetcher.get_prefetched("gold loan") is not None
    assert prefetcher.get_prefetched("home loan eligibility") is None
    assert prefetcher.get_prefetched("   ") is None


@pytest.mark.asyncio
async def test_stale_entry_is_not_served():
    prefetcher, _, clock = make_prefetcher()
    await prefetcher.prefetch_on_partial("what is the gold loan", 0.9)

    clock.now += PREFETCH_FRESHNESS_S
    assert prefetcher.get_prefetched("what is the gold loan") is not None
    clock.now += 0.1
    assert prefetcher.get_prefetched("what is the gold loan") is None


@pytest.mark.asyncio
async def test_clear_drops_entry():
    prefetcher, _, _ = make_prefetcher()
    await prefetcher.prefetch_on_partial("what is the gold loan", 0.9)

    prefetcher.clear()

    assert prefetcher.entry is None
    assert prefetcher.get_prefetched("what is the gold loan") is None


@pytest.mark.asyncio
async def test_background_prefetch_warms_without_storing():
    prefetcher, retriever, _ = make_prefetcher()

    task = prefetcher.prefetch_background("gold  loan", 0.9)
    await task

    assert retriever.queries == ["gold loan"]
    assert prefetcher.entry is None


@pytest.mark.asyncio
async def test_background_prefetch_gates():
    prefetcher, retriever, _ = make_prefetcher()
    assert prefetcher.prefetch_background("gold", 0.9) is None
    assert prefetcher.prefetch_background("gold loan", 0.3) is None

    disabled, _, _ = make_prefetcher(PrefetchStrategy.DISABLED, retriever=retriever)
    assert disabled.prefetch_background("gold loan rates", 1.0) is None
    assert retriever.queries == []


@pytest.mark.asyncio
async def test_background_prefetch_skips_extension_of_fresh_entry():
    prefetcher, retriever, clock = make_prefetcher()
    await prefetcher.prefetch_on_partial("what is the gold", 0.9)

    clock.now += 1.0
    assert prefetcher.prefetch_background("what is the gold loan", 0.9) is None

    clock.now += BACKGROUND_SKIP_TTL_S
    await prefetcher.prefetch_background("what is the gold loan", 0.9)
    assert retriever.queries == ["what is the gold", "what is the gold loan"]


@pytest.mark.asyncio
async def test_background_prefetch_failure_is_swallowed():
    retriever = FakeRetriever(error=RetrievalError("both sources failed"))
    prefetcher, _, _ = make_prefetcher(retriever=retriever)

    task = prefetcher.prefetch_background("gold loan rates", 0.9)

    assert await task is None
    assert retriever.queries == ["gold loan rates"]
