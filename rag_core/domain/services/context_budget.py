"""Conversation-stage-aware context budget.

Why: How much retrieved evidence reaches the language model depends on where
the conversation is. Budgets are configuration data (a lookup table), and
selection is a pure greedy prefix, so both live in the domain.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable, Mapping, Sequence
from typing import Protocol, TypeVar

from rag_core.domain.errors import BudgetExceeded
from rag_core.domain.models import ContextBudget, ConversationStage

logger = logging.getLogger(__name__)

TokenEstimator = Callable[[str], int]

DEFAULT_BUDGET = ContextBudget(max_tokens=2048, max_documents=5)

DEFAULT_STAGE_BUDGETS: Mapping[ConversationStage, ContextBudget] = {
    ConversationStage.GREETING: ContextBudget(max_tokens=256, max_documents=1),
    ConversationStage.DISCOVERY: ContextBudget(max_tokens=768, max_documents=3),
    ConversationStage.QUALIFICATION: ContextBudget(max_tokens=640, max_documents=2),
    ConversationStage.PRESENTATION: ContextBudget(max_tokens=2048, max_documents=5),
    ConversationStage.OBJECTION_HANDLING: ContextBudget(max_tokens=1280, max_documents=4),
    ConversationStage.CLOSING: ContextBudget(max_tokens=384, max_documents=1),
    ConversationStage.FAREWELL: ContextBudget(max_tokens=128, max_documents=1),
}


class _HasText(Protocol):
    @property
    def text(self) -> str: ...


D = TypeVar("D", bound=_HasText)


def estimate_tokens_by_chars(text: str) -> int:
    """Rough token estimate: one token per four characters, at least one."""
    return max(1, math.ceil(len(text or "") / 4))


class ContextBudgetManager:
    """Looks up stage budgets and selects the documents that fit.

    Args:
        budgets: Stage -> budget table (defaults to DEFAULT_STAGE_BUDGETS)
        default: Budget for stages missing from the table
        estimate_tokens: Token estimator used by ``select`` when none is passed
    """

    def __init__(
        self,
        budgets: Mapping[ConversationStage, ContextBudget] | None = None,
        default: ContextBudget = DEFAULT_BUDGET,
        estimate_tokens: TokenEstimator = estimate_tokens_by_chars,
    ) -> None:
        self._budgets = dict(DEFAULT_STAGE_BUDGETS if budgets is None else budgets)
        self._default = default
        self._estimate = estimate_tokens

    def budget_for(self, stage: ConversationStage | str) -> ContextBudget:
        """Return the fixed budget for ``stage`` (string stage ids are accepted)."""
        try:
            key = ConversationStage(stage)
        except ValueError:
            logger.debug("Unknown conversation stage %r, using default budget", stage)
            return self._default
        return self._budgets.get(key, self._default)

    def select(
        self,
        documents: Sequence[D],
        budget: ContextBudget,
        estimate_tokens: TokenEstimator | None = None,
    ) -> list[D]:
        """Greedy all-or-nothing prefix of ``documents`` within ``budget``.

        Documents are taken in the given (reranked) order until the next one
        would push the token total past ``max_tokens`` or the count past
        ``max_documents``. Never reorders and never truncates a document.

        Raises:
            BudgetExceeded: only if the selection invariant is broken (a bug).
        """
        estimate = estimate_tokens or self._estimate
        selected: list[D] = []
        used = 0
        for doc in documents:
            if len(selected) + 1 > budget.max_documents:
                break
            cost = estimate(doc.text)
            if used + cost > budget.max_tokens:
                break
            selected.append(doc)
            used += cost

        if used > budget.max_tokens or len(selected) > budget.max_documents:
            raise BudgetExceeded(
                tokens=used,
                documents=len(selected),
                max_tokens=budget.max_tokens,
                max_documents=budget.max_documents,
            )
        logger.debug(
            "Selected %d/%d documents (%d/%d tokens)",
            len(selected),
            len(documents),
            used,
            budget.max_tokens,
        )
        return selected
