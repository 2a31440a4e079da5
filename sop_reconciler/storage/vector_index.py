"""Content block embeddings in a persistent ChromaDB collection.

Embeddings are computed by the language model capability and passed in
explicitly; the collection has no embedding function of its own. Each entry
maps back to its SOP, language and block order.
"""

from pathlib import Path
from typing import Any, NamedTuple, Optional, Sequence

import chromadb
import structlog

logger = structlog.get_logger(__name__)

# Chroma has a batch limit on add/upsert
BATCH_SIZE = 50


class VectorHit(NamedTuple):
    sop_id: int
    block_order: int
    similarity: float
    document: str


class ContentBlockIndex:
    """Cosine-distance index over SOP content blocks."""

    def __init__(
        self,
        persist_dir: str | Path,
        collection_name: str = "sop_content_blocks",
        client: Optional[Any] = None,
    ):
        if client is None:
            Path(persist_dir).mkdir(parents=True, exist_ok=True)
            client = chromadb.PersistentClient(path=str(persist_dir))

        self._client = client
        self._collection = client.get_or_create_collection(
            name=collection_name,
            embedding_function=None,
            metadata={"hnsw:space": "cosine"},
        )

    def count(self) -> int:
        return self._collection.count()

    def upsert(
        self,
        ids: Sequence[str],
        embeddings: Sequence[Sequence[float]],
        documents: Sequence[str],
        metadatas: Sequence[dict[str, Any]],
    ) -> int:
        for i in range(0, len(ids), BATCH_SIZE):
            end = min(i + BATCH_SIZE, len(ids))
            self._collection.upsert(
                ids=list(ids[i:end]),
                embeddings=[list(e) for e in embeddings[i:end]],
                documents=list(documents[i:end]),
                metadatas=list(metadatas[i:end]),
            )
        return len(ids)

    def delete_sop(self, sop_id: int) -> None:
        self._collection.delete(where={"sop_id": sop_id})

    def query(self, embedding: Sequence[float], language: str, n_results: int = 10) -> list[VectorHit]:
        """Nearest blocks in ``language``; similarity is ``1 - cosine distance``."""
        total = self.count()
        if total == 0:
            return []

        results = self._collection.query(
            query_embeddings=[list(embedding)],
            n_results=min(n_results, total),
            where={"language": language},
        )

        hits: list[VectorHit] = []
        if results and results["ids"] and results["ids"][0]:
            for i, _ in enumerate(results["ids"][0]):
                meta = results["metadatas"][0][i] if results["metadatas"] else {}
                distance = results["distances"][0][i] if results["distances"] else 1.0
                document = results["documents"][0][i] if results["documents"] else ""
                hits.append(
                    VectorHit(
                        sop_id=int(meta.get("sop_id", 0)),
                        block_order=int(meta.get("block_order", 0)),
                        similarity=max(0.0, min(1.0, 1.0 - float(distance))),
                        document=document or "",
                    )
                )

        return hits
