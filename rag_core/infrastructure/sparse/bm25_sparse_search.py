"""BM25 sparse search over an in-memory corpus using rank_bm25.

The corpus is a JSONL file, one passage per line::

    {"id": "doc-1", "text": "...", "source": "faq.md"}

Every key other than ``id`` and ``text`` is carried as metadata.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Iterable, Mapping
from importlib import import_module
from pathlib import Path
from typing import Any

from rag_core.application.ports.sparse_search_port import SparseSearchPort
from rag_core.domain.errors import SparseIndexError
from rag_core.domain.models import Candidate, Source
from rag_core.domain.services.prefilter import tokenize

logger = logging.getLogger(__name__)


def load_jsonl_corpus(path: str | Path) -> list[dict[str, Any]]:
    """Read a JSONL corpus; blank lines are skipped.

    Raises:
        SparseIndexError: missing file, malformed JSON, or a record without id/text
    """
    p = Path(path)
    if not p.is_file():
        raise SparseIndexError(f"sparse corpus not found: {p}")
    records: list[dict[str, Any]] = []
    with p.open(encoding="utf-8") as fh:
        for lineno, line in enumerate(fh, start=1):
            if not line.strip():
                continue
            try:
                rec = json.loads(line)
            except json.JSONDecodeError as ex:
                raise SparseIndexError(f"{p}:{lineno}: invalid JSON: {ex}") from ex
            if not isinstance(rec, dict) or "id" not in rec or "text" not in rec:
                raise SparseIndexError(f"{p}:{lineno}: record needs 'id' and 'text'")
            records.append(rec)
    return records


class BM25SparseSearch(SparseSearchPort):
    """Okapi BM25 over a fixed passage set.

    Only passages sharing at least one term with the query are returned;
    ranks are 1-based in descending score order (ties by corpus order).
    """

    def __init__(self, records: Iterable[Mapping[str, Any]]) -> None:
        self._ids: list[str] = []
        self._texts: list[str] = []
        self._metadata: list[dict[str, Any]] = []
        self._terms: list[frozenset[str]] = []
        for rec in records:
            self._ids.append(str(rec["id"]))
            self._texts.append(str(rec["text"]))
            self._terms.append(frozenset(tokenize(self._texts[-1])))
            self._metadata.append({k: v for k, v in rec.items() if k not in ("id", "text")})

        self._bm25: Any | None = None
        if self._texts:
            try:
                # Lazy import for testability
                bm25_module = import_module("rank_bm25")
                self._bm25 = bm25_module.BM25Okapi([tokenize(t) or [""] for t in self._texts])
            except Exception as ex:  # noqa: BLE001
                raise SparseIndexError(f"failed to build BM25 index: {ex}") from ex
        logger.info("BM25 index ready with %d passages", len(self._ids))

    @classmethod
    def from_jsonl(cls, path: str | Path) -> BM25SparseSearch:
        return cls(load_jsonl_corpus(path))

    def __len__(self) -> int:
        return len(self._ids)

    async def search(self, query_text: str, top_k: int) -> list[Candidate]:
        return await asyncio.to_thread(self._search_sync, query_text, top_k)

    def _search_sync(self, query_text: str, top_k: int) -> list[Candidate]:
        terms = tokenize(query_text)
        if self._bm25 is None or not terms or top_k <= 0:
            return []
        try:
            scores = [float(s) for s in self._bm25.get_scores(terms)]
        except Exception as ex:  # noqa: BLE001
            raise SparseIndexError(f"BM25 scoring failed: {ex}") from ex

        wanted = set(terms)
        order = sorted(
            (i for i in range(len(scores)) if self._terms[i] & wanted),
            key=lambda i: (-scores[i], i),
        )[:top_k]
        return [
            Candidate(
                doc_id=self._ids[i],
                text=self._texts[i],
                source=Source.SPARSE,
                rank=rank,
                score=scores[i],
                metadata=self._metadata[i],
            )
            for rank, i in enumerate(order, start=1)
        ]
