"""Command-line entry point (``rag-core``).

Why: Thin interface layer: parse args, call the composition root, format
output. All orchestration lives in application/domain.
"""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import sys

from rag_core.config.composition import build_dense_search, build_embedding, build_retrieval_service
from rag_core.config.logging_setup import configure_logging
from rag_core.config.settings import AppSettings
from rag_core.domain.errors import DomainError
from rag_core.domain.models import ConversationContext, ConversationStage, Document
from rag_core.infrastructure.sparse.bm25_sparse_search import load_jsonl_corpus


def _print_documents(documents: list[Document]) -> None:
    for i, doc in enumerate(documents, 1):
        preview = " ".join(doc.text.split())[:100]
        print(f"[{i}] {doc.doc_id} (score={doc.score:.3f}) {preview}")


def cmd_query(args: argparse.Namespace, settings: AppSettings) -> int:
    """Run one plain or agentic retrieval and print the documents.

    Returns:
        Exit code (0=success, 1=failure)
    """
    stage = ConversationStage(args.stage) if args.stage else None
    try:
        service = build_retrieval_service(settings)
        if args.agentic:
            context = ConversationContext(stage=stage or ConversationStage.DISCOVERY)
            result = asyncio.run(service.retrieve_agentic(args.query, context))
            print("=" * 80)
            print(
                f"iterations={result.iterations} stop={result.stop_cause.value} "
                f"rewritten={result.query_rewritten} partial={result.partial}"
            )
            print(f"final query: {result.final_query}")
            print("=" * 80)
            _print_documents(result.documents)
        else:
            options = settings.retrieval_options()
            if args.k is not None:
                options = dataclasses.replace(options, top_k=args.k)
            response = asyncio.run(service.retrieve(args.query, options, stage=stage))
            if response.partial:
                print("(partial: one search source failed)")
            _print_documents(response.documents)
    except DomainError as ex:
        print(f"[ERROR] {type(ex).__name__}: {ex}")
        return 1
    return 0


def cmd_index(args: argparse.Namespace, settings: AppSettings) -> int:
    """Embed a JSONL corpus into the Chroma collection.

    The same file serves as SPARSE_CORPUS_PATH for BM25.
    """
    try:
        records = load_jsonl_corpus(args.file)
        embedder = build_embedding(settings)
        store = build_dense_search(settings)
        print(f"Loaded {len(records)} passages from {args.file}")
        for start in range(0, len(records), args.batch_size):
            batch = records[start : start + args.batch_size]
            vectors = embedder.embed_passages([str(r["text"]) for r in batch])
            store.upsert(
                ids=[str(r["id"]) for r in batch],
                vectors=vectors,
                payloads=[{k: v for k, v in r.items() if k != "id"} for r in batch],
            )
            print(f"  indexed {min(start + args.batch_size, len(records))}/{len(records)}")
        total = store.count()
    except DomainError as ex:
        print(f"[ERROR] {type(ex).__name__}: {ex}")
        return 1
    print(f"Done: collection '{settings.collection}' holds {total} passages")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="rag-core",
        description="Hybrid and agentic retrieval over a Chroma + BM25 corpus",
    )
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    p_query = subparsers.add_parser("query", help="Retrieve documents for a query")
    p_query.add_argument("query", help="Query text")
    p_query.add_argument("--agentic", action="store_true", help="Run the agentic loop")
    p_query.add_argument(
        "--stage",
        choices=[s.value for s in ConversationStage],
        help="Conversation stage (applies its context budget)",
    )
    p_query.add_argument("--k", type=int, default=None, help="Documents to return")

    p_index = subparsers.add_parser("index", help="Embed a JSONL corpus into Chroma")
    p_index.add_argument("file", help="JSONL file with {id, text, ...} records")
    p_index.add_argument("--batch-size", type=int, default=64, help="Batch size (default: 64)")
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 1

    try:
        settings = AppSettings().validate()
    except DomainError as ex:
        print(f"[ERROR] {type(ex).__name__}: {ex}")
        return 1
    configure_logging(settings.log_level, settings.log_format)

    if args.command == "query":
        return cmd_query(args, settings)
    return cmd_index(args, settings)


if __name__ == "__main__":
    sys.exit(main())
