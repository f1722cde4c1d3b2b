from collections.abc import Sequence
from typing import Protocol, runtime_checkable

from rag_core.domain.models import Candidate


@runtime_checkable
class DenseSearchPort(Protocol):
    """Nearest-neighbour search over an external vector store.

    Returns candidates with ``source=Source.DENSE`` and 1-based ranks.
    Raises VectorStoreError. Retries, if any, belong to the adapter.
    """

    async def search(self, vector: Sequence[float], top_k: int) -> list[Candidate]: ...
