from collections.abc import Sequence
from typing import Protocol, runtime_checkable

from rag_core.domain.models import Document, SufficiencyAssessment


@runtime_checkable
class SufficiencyJudge(Protocol):
    """Decides whether retrieved documents answer the query.

    Called once per iteration and never retried by the core. Raises JudgeError.
    """

    async def assess(
        self, query: str, top_documents: Sequence[Document]
    ) -> SufficiencyAssessment: ...
