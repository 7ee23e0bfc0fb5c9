"""ChromaDB-backed vector index for knowledge-base chunks.

One collection in cosine space. Records carry ``source_file``, optional
``category``, optional ``source_url`` and ``chunk_index`` metadata. Embeddings
are computed by the caller (see ``Embedder``); the collection has no
embedding function of its own.

Connects to a Chroma server when ``host`` is given, otherwise opens a local
persistent store.
"""

import logging
from pathlib import Path
from typing import Optional

import chromadb
from chromadb.config import Settings as ChromaSettings

from schemas.ingestion import IndexRecord
from schemas.retrieval import RetrievedMatch

logger = logging.getLogger(__name__)

DEFAULT_COLLECTION = "knowledge-base"
UPSERT_BATCH_SIZE = 500


class VectorStore:
    def __init__(
        self,
        collection_name: str = DEFAULT_COLLECTION,
        path: Optional[str] = None,
        host: Optional[str] = None,
        port: int = 8000,
        client=None,
    ):
        self.collection_name = collection_name
        self.db_path = path
        if client is not None:
            self.client = client
        elif host:
            self.client = chromadb.HttpClient(
                host=host, port=port, settings=ChromaSettings(anonymized_telemetry=False)
            )
        else:
            Path(path or "data/chroma").mkdir(parents=True, exist_ok=True)
            self.client = chromadb.PersistentClient(
                path=path or "data/chroma",
                settings=ChromaSettings(anonymized_telemetry=False),
            )
        self.collection = self._get_collection()

    def _get_collection(self):
        return self.client.get_or_create_collection(
            name=self.collection_name,
            embedding_function=None,
            metadata={"hnsw:space": "cosine"},
        )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def upsert_records(self, records: list[IndexRecord], embeddings: list[list[float]]) -> int:
        """Upsert records with their embeddings; returns the number written."""
        if len(records) != len(embeddings):
            raise ValueError(
                f"Got {len(records)} records but {len(embeddings)} embeddings"
            )
        if not records:
            return 0

        for start in range(0, len(records), UPSERT_BATCH_SIZE):
            batch = records[start:start + UPSERT_BATCH_SIZE]
            self.collection.upsert(
                ids=[r.id for r in batch],
                documents=[r.text for r in batch],
                metadatas=[r.metadata() for r in batch],
                embeddings=embeddings[start:start + UPSERT_BATCH_SIZE],
            )
        logger.info("Upserted %d records into '%s'", len(records), self.collection_name)
        return len(records)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def find_by_source_url(self, url: str, limit: int = 10) -> list[dict]:
        """Return up to ``limit`` records whose metadata source_url equals ``url``."""
        result = self.collection.get(
            where={"source_url": url},
            limit=limit,
            include=["metadatas"],
        )
        ids = result.get("ids") or []
        metadatas = result.get("metadatas") or [{}] * len(ids)
        return [{"id": i, "metadata": m or {}} for i, m in zip(ids, metadatas)]

    def search(
        self,
        embedding: list[float],
        top_k: int = 5,
        where: Optional[dict] = None,
    ) -> list[RetrievedMatch]:
        """Nearest-neighbour query; matches come back best-first."""
        total = self.collection.count()
        if total == 0:
            return []

        results = self.collection.query(
            query_embeddings=[embedding],
            n_results=min(top_k, total),
            where=where,
            include=["documents", "metadatas", "distances"],
        )
        matches = []
        if results and results.get("ids") and results["ids"][0]:
            for i in range(len(results["ids"][0])):
                matches.append(RetrievedMatch.from_chroma_result(
                    match_id=results["ids"][0][i],
                    doc=results["documents"][0][i],
                    meta=results["metadatas"][0][i],
                    distance=results["distances"][0][i],
                ))
        return matches

    def query_by_text(self, query_text: str, embedder, n_results: int = 5, where: Optional[dict] = None) -> list[RetrievedMatch]:
        return self.search(embedder.embed_single(query_text), top_k=n_results, where=where)

    def count(self) -> int:
        return self.collection.count()

    def get_stats(self) -> dict[str, dict]:
        count = self.collection.count()
        sample_keys: list[str] = []
        if count:
            peek = self.collection.get(limit=1, include=["metadatas"])
            metas = peek.get("metadatas") or []
            if metas and metas[0]:
                sample_keys = sorted(metas[0].keys())
        return {self.collection_name: {"count": count, "sample_metadata_keys": sample_keys}}
