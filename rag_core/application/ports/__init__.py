"""Application ports package.

Re-exports the capability interfaces the retrieval core consumes.
"""

from rag_core.application.ports.clock_port import ClockPort
from rag_core.application.ports.dense_search_port import DenseSearchPort
from rag_core.application.ports.embedding_port import EmbeddingProvider
from rag_core.application.ports.judge_port import SufficiencyJudge
from rag_core.application.ports.rewriter_port import QueryRewriter
from rag_core.application.ports.scorer_port import CrossEncoderScorer
from rag_core.application.ports.sparse_search_port import SparseSearchPort
from rag_core.application.ports.telemetry_port import NullTelemetry, TelemetryPort

__all__ = [
    "ClockPort",
    "CrossEncoderScorer",
    "DenseSearchPort",
    "EmbeddingProvider",
    "NullTelemetry",
    "QueryRewriter",
    "SparseSearchPort",
    "SufficiencyJudge",
    "TelemetryPort",
]
