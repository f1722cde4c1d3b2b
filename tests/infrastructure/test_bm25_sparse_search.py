import json
import sys
import types

import pytest

from rag_core.domain.errors import SparseIndexError
from rag_core.domain.models import Source
from rag_core.infrastructure.sparse.bm25_sparse_search import BM25SparseSearch, load_jsonl_corpus


class _FakeBM25Okapi:
    """Scores a document by how many query terms it contains (negative for 'penalty')."""

    def __init__(self, corpus):
        self.corpus = corpus

    def get_scores(self, terms):
        scores = []
        for doc in self.corpus:
            hits = sum(1 for t in terms if t in doc)
            scores.append(-0.5 if "penalty" in doc else float(hits))
        return scores


@pytest.fixture(autouse=True)
def fake_rank_bm25(monkeypatch):
    module = types.ModuleType("rank_bm25")
    module.BM25Okapi = _FakeBM25Okapi
    monkeypatch.setitem(sys.modules, "rank_bm25", module)
    return module


RECORDS = [
    {"id": "d1", "text": "Gold loan interest rates", "source": "rates.md"},
    {"id": "d2", "text": "Home loan eligibility"},
    {"id": "d3", "text": "Weather in Mumbai"},
    {"id": "d4", "text": "Gold loan gold loan penalty charges"},
]


@pytest.mark.asyncio
async def test_search_ranks_matching_passages():
    index = BM25SparseSearch(RECORDS)

    hits = await index.search("gold loan rates", top_k=10)

    assert [h.doc_id for h in hits] == ["d1", "d2", "d4"]
    assert [h.rank for h in hits] == [1, 2, 3]
    assert hits[0].metadata == {"source": "rates.md"}
    assert all(h.source is Source.SPARSE for h in hits)


@pytest.mark.asyncio
async def test_negative_scores_still_returned_when_terms_overlap():
    hits = await BM25SparseSearch(RECORDS).search("penalty", top_k=5)
    assert [h.doc_id for h in hits] == ["d4"]
    assert hits[0].score < 0


@pytest.mark.asyncio
async def test_top_k_and_degenerate_queries():
    index = BM25SparseSearch(RECORDS)
    assert len(await index.search("gold loan", top_k=1)) == 1
    assert await index.search("?!", top_k=5) == []
    assert await index.search("gold", top_k=0) == []
    assert await index.search("zebra", top_k=5) == []


@pytest.mark.asyncio
async def test_empty_index_returns_nothing():
    index = BM25SparseSearch([])
    assert len(index) == 0
    assert await index.search("gold loan", top_k=5) == []


def test_load_jsonl_corpus(tmp_path):
    path = tmp_path / "corpus.jsonl"
    path.write_text(
        "\n".join(json.dumps(r) for r in RECORDS[:2]) + "\n\n", encoding="utf-8"
    )

    assert [r["id"] for r in load_jsonl_corpus(path)] == ["d1", "d2"]
    assert len(BM25SparseSearch.from_jsonl(path)) == 2


@pytest.mark.parametrize(
    "content",
    ['{"id": "d1", "text": "ok"}\n{not json}\n', '{"id": "d1"}\n', "[1, 2]\n"],
)
def test_load_jsonl_corpus_rejects_bad_records(tmp_path, content):
    path = tmp_path / "corpus.jsonl"
    path.write_text(content, encoding="utf-8")
    with pytest.raises(SparseIndexError):
        load_jsonl_corpus(path)


def test_missing_corpus_raises(tmp_path):
    with pytest.raises(SparseIndexError, match="not found"):
        load_jsonl_corpus(tmp_path / "nope.jsonl")
