from __future__ import annotations

import asyncio
import os
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from importlib import import_module
from typing import Any, cast

from rag_core.application.ports.dense_search_port import DenseSearchPort
from rag_core.domain.errors import VectorStoreError
from rag_core.domain.models import Candidate, Source


@dataclass
class ChromaDenseSearch(DenseSearchPort):
    """Dense search over a persistent Chroma collection (cosine space).

    Chroma's client is synchronous; ``search`` runs the query on a worker
    thread so the event loop keeps serving the sparse branch.
    """

    persist_dir: str = "var/chroma"
    collection: str = "kb_passages"
    store_text: bool = True
    _client: Any | None = None
    _coll: Any | None = None

    def __post_init__(self) -> None:
        try:
            chromadb = import_module("chromadb")
        except Exception as ex:  # noqa: BLE001
            raise VectorStoreError("chromadb not installed.") from ex
        os.makedirs(self.persist_dir, exist_ok=True)
        try:
            self._client = chromadb.PersistentClient(path=self.persist_dir)
            self._coll = self._client.get_or_create_collection(
                name=self.collection,
                metadata={"hnsw:space": "cosine"},
            )
        except Exception as ex:  # noqa: BLE001
            raise VectorStoreError(f"Failed to init Chroma at '{self.persist_dir}': {ex}") from ex

    def upsert(
        self,
        ids: Sequence[str],
        vectors: Sequence[Sequence[float]],
        payloads: Sequence[Mapping[str, Any]],
    ) -> None:
        if self._coll is None:
            raise VectorStoreError("Chroma collection not initialized.")
        try:
            documents = (
                [str(p.get("text", "")) for p in payloads]
                if self.store_text
                else [""] * len(payloads)
            )
            metadatas = [{k: v for k, v in p.items() if k != "text"} or None for p in payloads]
            self._coll.upsert(
                ids=list(ids),
                embeddings=[list(vec) for vec in vectors],
                metadatas=metadatas,
                documents=documents,
            )
        except Exception as ex:  # noqa: BLE001
            raise VectorStoreError(f"Upsert failed: {ex}") from ex

    def count(self) -> int:
        if self._coll is None:
            raise VectorStoreError("Chroma collection not initialized.")
        try:
            return int(self._coll.count())
        except Exception as ex:  # noqa: BLE001
            raise VectorStoreError(f"Count failed: {ex}") from ex

    async def search(self, vector: Sequence[float], top_k: int) -> list[Candidate]:
        return await asyncio.to_thread(self._search_sync, vector, top_k)

    def _search_sync(self, vector: Sequence[float], top_k: int) -> list[Candidate]:
        if self._coll is None:
            raise VectorStoreError("Chroma collection not initialized.")
        try:
            result = cast(
                dict[str, list[list[Any]]],
                self._coll.query(query_embeddings=[list(vector)], n_results=top_k),
            )
        except Exception as ex:  # noqa: BLE001
            raise VectorStoreError(f"Search failed: {ex}") from ex

        ids = (result.get("ids") or [[]])[0]
        documents = (result.get("documents") or [[]])[0]
        metadatas = (result.get("metadatas") or [[]])[0]
        distances = (result.get("distances") or [[]])[0]

        hits: list[Candidate] = []
        for idx, doc_id in enumerate(ids):
            distance = float(distances[idx]) if idx < len(distances) else 0.0
            text = documents[idx] if idx < len(documents) and documents[idx] is not None else ""
            metadata = metadatas[idx] if idx < len(metadatas) and metadatas[idx] is not None else {}
            hits.append(
                Candidate(
                    doc_id=str(doc_id),
                    text=str(text),
                    source=Source.DENSE,
                    rank=idx + 1,
                    score=1.0 - distance,  # cosine distance -> similarity
                    metadata=metadata,
                )
            )
        return hits
