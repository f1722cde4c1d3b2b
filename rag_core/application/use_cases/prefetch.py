"""Retrieval prefetch on partial speech transcripts.

While the caller is still speaking, a sufficiently confident partial
transcript triggers a plain hybrid retrieval so evidence is ready when the
utterance ends. A single entry is kept: the latest prefetch wins.

Failures never propagate; a failed prefetch just means the final turn
retrieves normally.

``prefetch_background`` is a fire-and-forget variant that only warms the
embedding cache and never touches the stored entry.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass
from enum import Enum

from rag_core.application.dto.retrieval_dto import RetrievalOptions
from rag_core.application.ports.clock_port import ClockPort
from rag_core.application.ports.telemetry_port import NullTelemetry, TelemetryPort
from rag_core.application.use_cases.hybrid_retrieval import HybridRetriever
from rag_core.domain.errors import DomainError
from rag_core.domain.models import ConversationStage, FusedResult, normalize_text

logger = logging.getLogger(__name__)

PREFETCH_CONFIDENCE_THRESHOLD = 0.6
AGGRESSIVE_CONFIDENCE_THRESHOLD = 0.4
# Cached results older than this are never served
PREFETCH_FRESHNESS_S = 10.0
# Background warm-ups: shortest partial worth embedding, and the window in
# which an extension of the cached query does not trigger another one
BACKGROUND_MIN_WORDS = 2
BACKGROUND_SKIP_TTL_S = 2.0

_QUIET_STAGES = frozenset({ConversationStage.GREETING, ConversationStage.FAREWELL})


class PrefetchStrategy(str, Enum):
    """When a partial transcript is worth a speculative retrieval."""

    DISABLED = "disabled"
    CONSERVATIVE = "conservative"
    AGGRESSIVE = "aggressive"

    @property
    def min_words(self) -> int:
        return 2 if self is PrefetchStrategy.AGGRESSIVE else 3

    @property
    def cache_ttl_s(self) -> float:
        """Window in which a repeated partial does not trigger another prefetch."""
        return 2.0 if self is PrefetchStrategy.AGGRESSIVE else 5.0

    def should_prefetch(self, confidence: float, stage: ConversationStage | str | None) -> bool:
        if self is PrefetchStrategy.DISABLED:
            return False
        if self is PrefetchStrategy.AGGRESSIVE:
            return confidence >= AGGRESSIVE_CONFIDENCE_THRESHOLD
        try:
            quiet = stage is not None and ConversationStage(stage) in _QUIET_STAGES
        except ValueError:
            quiet = False
        return confidence >= PREFETCH_CONFIDENCE_THRESHOLD and not quiet


@dataclass(frozen=True)
class PrefetchEntry:
    query: str
    results: list[FusedResult]
    timestamp: float  # ClockPort.monotonic() at store time


class Prefetcher:
    """Speculative retrieval keyed on the latest partial transcript.

    Args:
        retriever: Hybrid retriever (no rerank, no rewriting: prefetch must be fast)
        clock: Monotonic time source
        strategy: Prefetch timing strategy
        options: Retrieval options for prefetch calls
        telemetry: Optional metrics sink
    """

    def __init__(
        self,
        retriever: HybridRetriever,
        clock: ClockPort,
        strategy: PrefetchStrategy = PrefetchStrategy.CONSERVATIVE,
        options: RetrievalOptions | None = None,
        telemetry: TelemetryPort | None = None,
    ) -> None:
        self.retriever = retriever
        self.clock = clock
        self.strategy = strategy
        self.options = options or RetrievalOptions()
        self.telemetry = telemetry or NullTelemetry()
        self._entry: PrefetchEntry | None = None
        self._lock = threading.Lock()
        self._background: set[asyncio.Task[None]] = set()

    @property
    def entry(self) -> PrefetchEntry | None:
        with self._lock:
            return self._entry

    async def prefetch_on_partial(
        self,
        partial_transcript: str,
        confidence: float,
        stage: ConversationStage | str | None = None,
    ) -> bool:
        """Prefetch for ``partial_transcript``; True if results were stored."""
        if not self.strategy.should_prefetch(confidence, stage):
            logger.debug(
                "Skipping prefetch: %s strategy declined (confidence=%.2f, stage=%s)",
                self.strategy.value,
                confidence,
                stage,
            )
            return False

        partial = normalize_text(partial_transcript)
        if len(partial.split()) < self.strategy.min_words:
            return False

        cached = self.entry
        if cached is not None:
            age = self.clock.monotonic() - cached.timestamp
            if age < self.strategy.cache_ttl_s and cached.query in partial:
                logger.debug("Skipping prefetch: similar query already cached")
                return False

        logger.debug("Triggering prefetch on partial '%s' (confidence=%.2f)", partial[:40], confidence)
        try:
            hybrid = await self.retriever.retrieve(partial, self.options)
        except DomainError as ex:
            logger.warning("Prefetch failed: %s", ex)
            self.telemetry.incr("rag.prefetch.failures")
            return False

        if not hybrid.results:
            logger.debug("Prefetch returned no results")
            return False

        with self._lock:
            self._entry = PrefetchEntry(
                query=partial,
                results=list(hybrid.results),
                timestamp=self.clock.monotonic(),
            )
        self.telemetry.incr("rag.prefetch.stored")
        logger.debug("Prefetch stored %d results", len(hybrid.results))
        return True

    def prefetch_background(
        self, partial_transcript: str, confidence: float
    ) -> asyncio.Task[None] | None:
        """Fire-and-forget retrieval that only warms the embedding cache.

        Nothing is stored in the prefetch entry. Returns the scheduled task, or
        None when the partial is too short, the strategy declines, or an
        extension of a fresh cached query is already covered. Must be called
        from a running event loop.
        """
        if not self.strategy.should_prefetch(confidence, None):
            return None
        partial = normalize_text(partial_transcript)
        if len(partial.split()) < BACKGROUND_MIN_WORDS:
            return None

        cached = self.entry
        if cached is not None:
            age = self.clock.monotonic() - cached.timestamp
            if age < BACKGROUND_SKIP_TTL_S and cached.query in partial:
                return None

        task = asyncio.get_running_loop().create_task(self._warm(partial, confidence))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def _warm(self, partial: str, confidence: float) -> None:
        logger.debug(
            "Background prefetch for partial '%s' (confidence=%.2f)", partial[:40], confidence
        )
        try:
            await self.retriever.retrieve(partial, self.options)
        except DomainError as ex:
            logger.debug("Background prefetch failed: %s", ex)
            self.telemetry.incr("rag.prefetch.failures")

    def get_prefetched(self, query: str) -> list[FusedResult] | None:
        """Cached results when fresh and either query contains the other (case-insensitive)."""
        cached = self.entry
        if cached is None:
            return None
        if self.clock.monotonic() - cached.timestamp > PREFETCH_FRESHNESS_S:
            return None
        asked = normalize_text(query).casefold()
        stored = cached.query.casefold()
        if not asked or not (asked in stored or stored in asked):
            return None
        self.telemetry.incr("rag.prefetch.hits")
        logger.debug("Using prefetched results for '%s'", asked[:40])
        return list(cached.results)

    def clear(self) -> None:
        with self._lock:
            self._entry = None
