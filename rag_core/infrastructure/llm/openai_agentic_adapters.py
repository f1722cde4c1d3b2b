"""Query rewriter and sufficiency judge over an OpenAI-compatible chat API.

Works against OpenAI or a local vLLM server (``base_url=http://host:8000/v1``).
"""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from importlib import import_module
from typing import Any

from rag_core.application.ports.judge_port import SufficiencyJudge
from rag_core.application.ports.rewriter_port import QueryRewriter
from rag_core.domain.errors import JudgeError, RewriteError
from rag_core.domain.models import ConversationContext, Document, SufficiencyAssessment

logger = logging.getLogger(__name__)

REWRITE_SYSTEM = (
    "You rewrite search queries for a retrieval system. Given the user's query, "
    "recent conversation turns and what the previous search failed to find, "
    "return ONE improved standalone search query. Keep the user's language. "
    "Output the query only, no quotes, no explanation."
)

JUDGE_SYSTEM = (
    "You judge whether retrieved passages are enough to answer a query. "
    'Output ONLY JSON matching {"sufficient": bool, "coverage": float between 0 and 1, '
    '"missing_information": str or null}.'
)

# Characters of each passage shown to the judge
JUDGE_PASSAGE_CHARS = 800


@dataclass
class _OpenAIChat:
    base_url: str | None = None  # None = api.openai.com
    api_key: str = "EMPTY"
    model: str = "gpt-4o-mini"
    temperature: float = 0.0
    max_tokens: int = 256

    def __post_init__(self) -> None:
        # Defer import of OpenAI to the first call to avoid a hard dependency in tests
        self._client: Any | None = None

    def _get_client(self) -> Any:
        if self._client is None:
            module = import_module("openai")
            self._client = module.AsyncOpenAI(base_url=self.base_url, api_key=self.api_key)
        return self._client

    async def _complete(self, messages: list[dict[str, str]], **extra: Any) -> str:
        client = self._get_client()
        resp: Any = await client.chat.completions.create(
            model=self.model,
            messages=messages,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            **extra,
        )
        return resp.choices[0].message.content or ""


def _format_context(context: ConversationContext) -> str:
    lines = [f"Conversation stage: {context.stage.value}"]
    if context.recent_turns:
        lines.append("Recent turns:")
        lines.extend(f"- {turn}" for turn in context.recent_turns[-4:])
    if context.slots:
        lines.append("Known facts: " + ", ".join(f"{k}={v}" for k, v in context.slots.items()))
    return "\n".join(lines)


@dataclass
class OpenAIQueryRewriter(_OpenAIChat, QueryRewriter):
    """Asks the chat model for a better standalone query."""

    async def rewrite(
        self,
        query: str,
        context: ConversationContext,
        missing_info: str | None = None,
    ) -> str:
        user = f"{_format_context(context)}\n\nQuery: {query}"
        if missing_info:
            user += f"\nPrevious search was insufficient: {missing_info}"
        try:
            text = await self._complete(
                [
                    {"role": "system", "content": REWRITE_SYSTEM},
                    {"role": "user", "content": user},
                ]
            )
        except Exception as ex:  # noqa: BLE001
            raise RewriteError(f"query rewrite failed: {ex}") from ex
        rewritten = text.strip().strip('"').strip()
        logger.debug("Rewrote '%s' -> '%s'", query[:40], rewritten[:40])
        return rewritten


def parse_verdict(raw: str) -> SufficiencyAssessment:
    """Parse the judge's JSON verdict; coverage is clamped to [0, 1].

    Raises:
        JudgeError: not JSON, or ``sufficient`` missing
    """
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as ex:
        raise JudgeError(f"judge returned invalid JSON: {raw[:80]!r}") from ex
    if not isinstance(data, dict) or not isinstance(data.get("sufficient"), bool):
        raise JudgeError(f"judge verdict lacks a boolean 'sufficient': {raw[:80]!r}")
    try:
        coverage = float(data.get("coverage", 1.0 if data["sufficient"] else 0.0))
    except (TypeError, ValueError) as ex:
        raise JudgeError(f"judge coverage is not a number: {data.get('coverage')!r}") from ex
    missing = data.get("missing_information")
    return SufficiencyAssessment(
        sufficient=data["sufficient"],
        coverage=min(max(coverage, 0.0), 1.0),
        missing_information=str(missing) if missing else None,
        source="judge",
    )


@dataclass
class OpenAISufficiencyJudge(_OpenAIChat, SufficiencyJudge):
    """Asks the chat model whether the top documents answer the query."""

    async def assess(
        self, query: str, top_documents: Sequence[Document]
    ) -> SufficiencyAssessment:
        passages = "\n\n".join(
            f"[{i}] {d.text[:JUDGE_PASSAGE_CHARS]}" for i, d in enumerate(top_documents, start=1)
        )
        user = f"Query: {query}\n\nPassages:\n{passages or '(none)'}"
        try:
            raw = await self._complete(
                [
                    {"role": "system", "content": JUDGE_SYSTEM},
                    {"role": "user", "content": user},
                ],
                response_format={"type": "json_object"},
            )
        except Exception as ex:  # noqa: BLE001
            raise JudgeError(f"sufficiency judge call failed: {ex}") from ex
        return parse_verdict(raw)
