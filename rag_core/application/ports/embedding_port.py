from collections.abc import Sequence
from typing import Protocol, runtime_checkable


@runtime_checkable
class EmbeddingProvider(Protocol):
    """Opaque text -> vector model.

    Blocking and CPU/accelerator-bound; callers offload it to a worker pool.
    Raises EmbeddingError (adapters map library errors onto it).
    """

    def embed(self, text: str) -> Sequence[float]: ...
