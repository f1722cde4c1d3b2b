"""Domain errors (typed) for the retrieval core.

Why: One error family for the application layer; adapters map library
exceptions onto it so no infrastructure type leaks upwards.

Propagation policy:
- single-source search failures are absorbed (degrade to the other source)
- single-candidate scoring failures are absorbed (candidate sinks)
- rewriter/judge failures end the agentic loop with the results so far
- only RetrievalError (both sources failed) and ConfigurationError reach callers
"""

from __future__ import annotations

from dataclasses import dataclass


class DomainError(Exception):
    """Base class for domain-specific errors."""


class ValidationError(DomainError):
    """Invalid input/domain state."""


class ConfigurationError(DomainError):
    """Malformed configuration or per-call options."""


class EmbeddingError(DomainError):
    """Embedding provider unreachable or returned malformed output."""


class VectorStoreError(DomainError):
    """Dense (vector store) search failed."""


class SparseIndexError(DomainError):
    """Sparse (BM25/keyword) search failed."""


class ScoringError(DomainError):
    """Cross-encoder scoring failed for a single candidate."""


class RewriteError(DomainError):
    """Query rewriter failed."""


class JudgeError(DomainError):
    """Sufficiency judge failed."""


@dataclass(eq=False)
class RetrievalError(DomainError):
    """Both search sources failed (or timed out) for a single retrieval call."""

    message: str
    dense_error: BaseException | None = None
    sparse_error: BaseException | None = None

    def __post_init__(self) -> None:
        super().__init__(self.message)

    def __str__(self) -> str:
        return self.message


@dataclass(eq=False)
class BudgetExceeded(DomainError):
    """Selected context broke its budget. Internal invariant; a bug if it surfaces."""

    tokens: int
    documents: int
    max_tokens: int
    max_documents: int

    def __post_init__(self) -> None:
        super().__init__(str(self))

    def __str__(self) -> str:
        return (
            f"context selection exceeded budget: {self.tokens}/{self.max_tokens} tokens, "
            f"{self.documents}/{self.max_documents} documents"
        )
