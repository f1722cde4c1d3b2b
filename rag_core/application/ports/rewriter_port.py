from typing import Protocol, runtime_checkable

from rag_core.domain.models import ConversationContext


@runtime_checkable
class QueryRewriter(Protocol):
    """Produces a better search query when evidence was insufficient.

    Raises RewriteError. An empty or unchanged rewrite is treated by the
    caller as ineffective.
    """

    async def rewrite(
        self,
        query: str,
        context: ConversationContext,
        missing_info: str | None = None,
    ) -> str: ...
