import json

import pytest

from rag_core.application.dto.retrieval_dto import RetrievalResponse
from rag_core.domain.errors import RetrievalError
from rag_core.domain.models import (
    AgenticSearchResult,
    Document,
    StopCause,
    TerminalReason,
)
from rag_core.interface.cli import main as cli


class FakeService:
    def __init__(self, error=None):
        self.error = error
        self.calls = []

    async def retrieve(self, query, options=None, stage=None):
        self.calls.append(("retrieve", query, options, stage))
        if self.error is not None:
            raise self.error
        return RetrievalResponse(
            documents=[Document(doc_id="faq-7", text="Gold loan rates start at 9%", score=0.91)],
            partial=True,
        )

    async def retrieve_agentic(self, query, context=None, config=None):
        self.calls.append(("agentic", query, context, config))
        return AgenticSearchResult(
            documents=[Document(doc_id="faq-7", text="Gold loan rates", score=0.91)],
            iterations=2,
            query_rewritten=True,
            terminal_reason=TerminalReason.SUFFICIENT,
            stop_cause=StopCause.SUFFICIENT,
            final_query="gold loan interest rate",
        )


def test_parser_query_options():
    args = cli.build_parser().parse_args(
        ["query", "gold loan", "--agentic", "--stage", "closing", "--k", "3"]
    )
    assert args.command == "query"
    assert args.query == "gold loan"
    assert args.agentic is True
    assert args.stage == "closing"
    assert args.k == 3


def test_parser_rejects_unknown_stage():
    with pytest.raises(SystemExit):
        cli.build_parser().parse_args(["query", "gold loan", "--stage", "haggling"])


def test_no_command_prints_help(capsys):
    assert cli.main([]) == 1
    assert "rag-core" in capsys.readouterr().out


def test_plain_query(monkeypatch, capsys):
    service = FakeService()
    monkeypatch.setattr(cli, "build_retrieval_service", lambda settings: service)

    assert cli.main(["query", "gold loan", "--k", "2", "--stage", "presentation"]) == 0

    out = capsys.readouterr().out
    assert "(partial: one search source failed)" in out
    assert "[1] faq-7 (score=0.910) Gold loan rates start at 9%" in out
    _, query, options, stage = service.calls[0]
    assert query == "gold loan"
    assert options.top_k == 2
    assert stage.value == "presentation"


def test_agentic_query(monkeypatch, capsys):
    service = FakeService()
    monkeypatch.setattr(cli, "build_retrieval_service", lambda settings: service)

    assert cli.main(["query", "gold loan", "--agentic"]) == 0

    out = capsys.readouterr().out
    assert "iterations=2 stop=sufficient rewritten=True" in out
    assert "final query: gold loan interest rate" in out


def test_query_failure_exit_code(monkeypatch, capsys):
    monkeypatch.setattr(
        cli, "build_retrieval_service", lambda settings: FakeService(RetrievalError("both down"))
    )

    assert cli.main(["query", "gold loan"]) == 1
    assert "[ERROR] RetrievalError: both down" in capsys.readouterr().out


def test_invalid_settings_exit_code(monkeypatch, capsys):
    monkeypatch.setenv("MAX_ITERATIONS", "0")
    assert cli.main(["query", "gold loan"]) == 1
    assert "MAX_ITERATIONS" in capsys.readouterr().out


def test_index_embeds_and_upserts_in_batches(monkeypatch, tmp_path, capsys):
    upserts = []

    class FakeEmbedder:
        def embed_passages(self, texts):
            return [[float(len(t))] for t in texts]

    class FakeStore:
        def upsert(self, ids, vectors, payloads):
            upserts.append((ids, vectors, payloads))

        def count(self):
            return sum(len(ids) for ids, _, _ in upserts)

    monkeypatch.setattr(cli, "build_embedding", lambda settings: FakeEmbedder())
    monkeypatch.setattr(cli, "build_dense_search", lambda settings: FakeStore())
    corpus = tmp_path / "corpus.jsonl"
    corpus.write_text(
        "\n".join(
            json.dumps({"id": f"p{i}", "text": f"passage {i}", "source": "faq.md"})
            for i in range(3)
        ),
        encoding="utf-8",
    )

    assert cli.main(["index", str(corpus), "--batch-size", "2"]) == 0

    assert [ids for ids, _, _ in upserts] == [["p0", "p1"], ["p2"]]
    assert upserts[0][2][0] == {"text": "passage 0", "source": "faq.md"}
    assert "holds 3 passages" in capsys.readouterr().out


def test_index_missing_file(tmp_path, capsys):
    assert cli.main(["index", str(tmp_path / "nope.jsonl")]) == 1
    assert "SparseIndexError" in capsys.readouterr().out
