"""Process-wide memo of query text -> embedding vector.

Why: Embedding is the most expensive step on the dense branch and repeated
queries are common in dialogue (re-asks, prefetch followed by the final
utterance). This is the only state shared between concurrent retrieval calls.

Concurrency:
- A coarse ``threading.Lock`` guards the LRU map and the in-flight table.
  It is never held across the provider call or an ``await``.
- At most one in-flight provider call per key: the compute is a task owned
  by the cache and every caller awaits it through ``asyncio.shield``. A
  cancelled caller only stops waiting; the vector is still cached. A failed
  compute is propagated to every waiter and never cached.
- Keys are case-insensitive, so the provider sees the casefolded text and a
  vector depends only on its key.
- The provider runs on ``executor`` (a dedicated worker pool) so the event
  loop is never blocked.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import math
import threading
from collections import OrderedDict
from collections.abc import Sequence
from concurrent.futures import Executor
from dataclasses import dataclass

from rag_core.application.ports.embedding_port import EmbeddingProvider
from rag_core.application.ports.telemetry_port import NullTelemetry, TelemetryPort
from rag_core.domain.errors import ConfigurationError, EmbeddingError
from rag_core.domain.models import fingerprint, normalize_text
from rag_core.domain.types import Vector

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 1000


@dataclass(frozen=True)
class CacheEntry:
    fingerprint: str
    vector: Vector
    inserted: int  # monotonically increasing insertion order


@dataclass(frozen=True)
class CacheStats:
    hits: int
    misses: int
    coalesced: int
    evictions: int
    size: int
    capacity: int


def _validate_vector(raw: Sequence[float]) -> Vector:
    try:
        vector = tuple(float(x) for x in raw)
    except (TypeError, ValueError) as ex:
        raise EmbeddingError(f"embedding provider returned non-numeric output: {ex}") from ex
    if not vector:
        raise EmbeddingError("embedding provider returned an empty vector")
    if any(math.isnan(x) or math.isinf(x) for x in vector):
        raise EmbeddingError("embedding provider returned non-finite values")
    return vector


def embedding_text(query_text: str) -> str:
    """Text handed to the provider: the same normalization the cache key uses."""
    return normalize_text(query_text).casefold()


def _consume_exception(fut: asyncio.Future[Vector]) -> None:
    # Marks the exception as retrieved when no caller was waiting on it
    if not fut.cancelled():
        fut.exception()


class EmbeddingCache:
    """Fixed-capacity strict-LRU embedding cache.

    Args:
        provider: Embedding model (blocking ``embed(text)``)
        capacity: Maximum number of cached vectors (>= 1)
        executor: Worker pool for provider calls (None = loop default executor)
        telemetry: Optional metrics sink
    """

    def __init__(
        self,
        provider: EmbeddingProvider,
        capacity: int = DEFAULT_CAPACITY,
        executor: Executor | None = None,
        telemetry: TelemetryPort | None = None,
    ) -> None:
        if capacity < 1:
            raise ConfigurationError(f"cache capacity must be >= 1, got {capacity}")
        self._provider = provider
        self._capacity = capacity
        self._executor = executor
        self._telemetry = telemetry or NullTelemetry()
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._inflight: dict[str, asyncio.Task[Vector]] = {}
        self._lock = threading.Lock()
        self._order = itertools.count()
        self._hits = 0
        self._misses = 0
        self._coalesced = 0
        self._evictions = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, text: object) -> bool:
        if not isinstance(text, str):
            return False
        with self._lock:
            return fingerprint(text) in self._entries

    def stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(
                hits=self._hits,
                misses=self._misses,
                coalesced=self._coalesced,
                evictions=self._evictions,
                size=len(self._entries),
                capacity=self._capacity,
            )

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    async def get_or_compute(self, query_text: str) -> Vector:
        """Return the cached vector for ``query_text`` or compute and cache it.

        The compute runs as a task owned by the cache; callers only await it
        through ``asyncio.shield``. A cancelled caller stops waiting, while the
        other waiters still get the vector and it is still cached.

        Raises:
            EmbeddingError: if the provider fails or returns malformed output.
        """
        key = fingerprint(query_text)
        loop = asyncio.get_running_loop()

        task: asyncio.Task[Vector] | None = None
        started = False
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None:
                self._entries.move_to_end(key)
                self._hits += 1
            else:
                inflight = self._inflight.get(key)
                # Tasks are loop-bound; a compute running on another loop is not shared
                if inflight is not None and inflight.get_loop() is loop:
                    task = inflight
                    self._coalesced += 1
                else:
                    task = loop.create_task(self._compute(key, embedding_text(query_text)))
                    task.add_done_callback(_consume_exception)
                    self._inflight[key] = task
                    self._misses += 1
                    started = True

        if entry is not None:
            self._telemetry.incr("rag.embedding_cache.hits")
            return entry.vector

        assert task is not None
        if started:
            self._telemetry.incr("rag.embedding_cache.misses")
        else:
            logger.debug("Embedding for %s already in flight, awaiting it", key[:12])
        return await asyncio.shield(task)

    async def _compute(self, key: str, text: str) -> Vector:
        this = asyncio.current_task()
        loop = asyncio.get_running_loop()
        try:
            raw = await loop.run_in_executor(self._executor, self._provider.embed, text)
            vector = _validate_vector(raw)
        except EmbeddingError:
            self._forget(key, this)
            raise
        except Exception as ex:  # noqa: BLE001
            self._forget(key, this)
            raise EmbeddingError(f"embedding provider failed: {ex}") from ex
        except BaseException:
            self._forget(key, this)
            raise

        with self._lock:
            if self._inflight.get(key) is this:
                del self._inflight[key]
            self._insert(key, vector)
        return vector

    def _forget(self, key: str, task: asyncio.Task | None) -> None:
        with self._lock:
            if self._inflight.get(key) is task:
                del self._inflight[key]

    def _insert(self, key: str, vector: Vector) -> None:
        # Caller holds the lock
        if key in self._entries:
            self._entries.move_to_end(key)
            return
        self._entries[key] = CacheEntry(fingerprint=key, vector=vector, inserted=next(self._order))
        while len(self._entries) > self._capacity:
            evicted, _ = self._entries.popitem(last=False)
            self._evictions += 1
            logger.debug("Evicted embedding %s (capacity=%d)", evicted[:12], self._capacity)
