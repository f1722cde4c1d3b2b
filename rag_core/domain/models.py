# rag_core/domain/models.py
# Domain models must be pure (no I/O, no external libs)
from __future__ import annotations

import hashlib
import math
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from rag_core.domain.errors import ValidationError


def normalize_text(text: str) -> str:
    """Collapse runs of whitespace and strip the ends."""
    return " ".join((text or "").split())


def fingerprint(text: str) -> str:
    """Stable hash of the normalized, casefolded text."""
    return hashlib.sha256(normalize_text(text).casefold().encode("utf-8")).hexdigest()


def detect_script(text: str) -> str | None:
    """Dominant script of the letters in ``text``: latin, devanagari or other."""
    counts = {"latin": 0, "devanagari": 0, "other": 0}
    for ch in text:
        if not ch.isalpha():
            continue
        cp = ord(ch)
        if cp < 0x0250:
            counts["latin"] += 1
        elif 0x0900 <= cp <= 0x097F:
            counts["devanagari"] += 1
        else:
            counts["other"] += 1
    if not any(counts.values()):
        return None
    return max(counts, key=lambda k: counts[k])


@dataclass(frozen=True)
class Query:
    """
    A query for a single retrieval attempt.

    - text:            normalized query text (non-empty)
    - language:        optional language hint supplied by the caller (e.g. "en", "hi")
    - script:          detected script of the text (latin/devanagari/other)
    - expansion_terms: optional extra terms appended to the sparse query
    """

    text: str
    language: str | None = None
    script: str | None = None
    expansion_terms: tuple[str, ...] = ()

    @classmethod
    def from_text(
        cls,
        text: str,
        language: str | None = None,
        expansion_terms: tuple[str, ...] | list[str] = (),
    ) -> Query:
        normalized = normalize_text(text)
        if not normalized:
            raise ValidationError("query must not be empty")
        return cls(
            text=normalized,
            language=language,
            script=detect_script(normalized),
            expansion_terms=tuple(t for t in expansion_terms if t and t.strip()),
        )

    @property
    def sparse_text(self) -> str:
        if not self.expansion_terms:
            return self.text
        return f"{self.text} {' '.join(self.expansion_terms)}"

    def fingerprint(self) -> str:
        return fingerprint(self.text)


class Source(str, Enum):
    DENSE = "dense"
    SPARSE = "sparse"


@dataclass(frozen=True)
class Candidate:
    """A hit from one search port. ``rank`` is 1-based and local to its source."""

    doc_id: str
    text: str
    source: Source
    rank: int
    score: float
    metadata: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class FusedResult:
    """One unique document after rank fusion; ``rank`` is its 1-based fused position."""

    doc_id: str
    score: float
    rank: int
    dense_rank: int | None = None
    sparse_rank: int | None = None
    text: str = ""
    metadata: Mapping[str, Any] = field(default_factory=dict)

    @property
    def in_both(self) -> bool:
        return self.dense_rank is not None and self.sparse_rank is not None

    @property
    def min_source_rank(self) -> int:
        ranks = [r for r in (self.dense_rank, self.sparse_rank) if r is not None]
        return min(ranks) if ranks else 0

    @property
    def sources(self) -> tuple[Source, ...]:
        out: list[Source] = []
        if self.dense_rank is not None:
            out.append(Source.DENSE)
        if self.sparse_rank is not None:
            out.append(Source.SPARSE)
        return tuple(out)


class ExitReason(str, Enum):
    FULL_MODEL = "full_model"
    EARLY_EXIT = "early_exit"
    PREFILTERED = "prefiltered"


@dataclass(frozen=True)
class RerankedResult:
    """
    A fused result after the rerank cascade.

    ``score`` is the cross-encoder score when the candidate reached the full
    model (``-inf`` if the scorer failed on it) and ``None`` otherwise.
    """

    doc_id: str
    score: float | None
    prefilter_score: float
    exit_reason: ExitReason
    fused: FusedResult
    error: str | None = None

    @property
    def text(self) -> str:
        return self.fused.text

    @property
    def relevance(self) -> float:
        """Best available relevance in [0, 1]: rerank score, else prefilter score."""
        value = self.score if self.score is not None else self.prefilter_score
        if math.isinf(value) or math.isnan(value):
            return 0.0
        return min(max(value, 0.0), 1.0)

    def to_document(self) -> Document:
        return Document(
            doc_id=self.doc_id,
            text=self.fused.text,
            score=self.relevance,
            metadata=self.fused.metadata,
        )


@dataclass(frozen=True)
class Document:
    """Evidence handed to the language model."""

    doc_id: str
    text: str
    score: float
    metadata: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SufficiencyAssessment:
    """Judgement of whether retrieved evidence covers the query's information need."""

    sufficient: bool
    coverage: float
    missing_information: str | None = None
    source: str = "heuristic"  # "heuristic" | "judge"

    def __post_init__(self) -> None:
        if not (0.0 <= self.coverage <= 1.0):
            raise ValidationError(f"coverage must be in [0, 1], got {self.coverage}")


class ConversationStage(str, Enum):
    GREETING = "greeting"
    DISCOVERY = "discovery"
    QUALIFICATION = "qualification"
    PRESENTATION = "presentation"  # value presentation
    OBJECTION_HANDLING = "objection_handling"
    CLOSING = "closing"
    FAREWELL = "farewell"


@dataclass(frozen=True)
class ContextBudget:
    max_tokens: int
    max_documents: int

    def __post_init__(self) -> None:
        if self.max_tokens < 0 or self.max_documents < 0:
            raise ValidationError("context budget limits must be >= 0")


@dataclass(frozen=True)
class ConversationContext:
    """Slice of dialogue state the agentic loop needs (owned by the caller)."""

    stage: ConversationStage = ConversationStage.DISCOVERY
    recent_turns: tuple[str, ...] = ()
    slots: Mapping[str, str] = field(default_factory=dict)


class TerminalReason(str, Enum):
    SUFFICIENT = "sufficient"
    MAX_ITERATIONS_REACHED = "max_iterations_reached"


class StopCause(str, Enum):
    """Precise reason the agentic loop stopped (``TerminalReason`` is the coarse one)."""

    SUFFICIENT = "sufficient"
    MAX_ITERATIONS = "max_iterations"
    REWRITING_DISABLED = "rewriting_disabled"
    REWRITE_FAILED = "rewrite_failed"
    INEFFECTIVE_REWRITE = "ineffective_rewrite"
    JUDGE_FAILED = "judge_failed"
    RETRIEVAL_FAILED = "retrieval_failed"

    @property
    def terminal_reason(self) -> TerminalReason:
        if self is StopCause.SUFFICIENT:
            return TerminalReason.SUFFICIENT
        return TerminalReason.MAX_ITERATIONS_REACHED


@dataclass(frozen=True)
class AgenticSearchResult:
    documents: list[Document]
    iterations: int
    query_rewritten: bool
    terminal_reason: TerminalReason
    stop_cause: StopCause
    final_query: str
    queries: tuple[str, ...] = ()
    assessment: SufficiencyAssessment | None = None
    partial: bool = False
