from typing import Protocol, runtime_checkable

from rag_core.domain.models import Candidate


@runtime_checkable
class SparseSearchPort(Protocol):
    """Keyword/BM25 search over an external sparse index.

    Returns candidates with ``source=Source.SPARSE`` and 1-based ranks.
    Raises SparseIndexError. Retries, if any, belong to the adapter.
    """

    async def search(self, query_text: str, top_k: int) -> list[Candidate]: ...
