"""Relevance-filtered retrieval over the knowledge-base index.

Embeds the question, asks the index for the top-K nearest chunks, drops
anything under the relevance threshold and builds a de-duplicated source
list for citations. Index order is kept as-is (best-first).
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Optional

from errors import RetrievalError
from schemas.retrieval import RetrievedMatch, Source
from settings import RELEVANCE_THRESHOLD

logger = logging.getLogger(__name__)


@dataclass
class RetrievalResult:
    """Context passages plus the sources they came from.

    ``sources`` holds one entry per distinct ``source_file``, in the order
    each file was first seen, so ``len(sources) <= len(documents)``.
    """
    documents: list[str] = field(default_factory=list)
    sources: list[Source] = field(default_factory=list)
    matches: list[RetrievedMatch] = field(default_factory=list)

    @property
    def context(self) -> str:
        return "\n\n".join(self.documents)

    def is_empty(self) -> bool:
        return not self.documents


class Retriever:
    """Wraps VectorStore + Embedder with threshold filtering and source dedup."""

    def __init__(
        self,
        store,
        embedder,
        top_k: int = 5,
        relevance_threshold: float = RELEVANCE_THRESHOLD,
    ):
        self.store = store
        self.embedder = embedder
        self.top_k = top_k
        self.relevance_threshold = relevance_threshold

    def retrieve(self, query: str, top_k: Optional[int] = None, where: Optional[dict] = None) -> RetrievalResult:
        """Return relevant context for ``query``.

        Raises:
            RetrievalError: the embedding provider or the index failed. An
                unreachable index is never reported as "no results".
        """
        k = top_k or self.top_k
        started = time.time()
        try:
            embedding = self.embedder.embed_single(query)
            matches = self.store.search(embedding, top_k=k, where=where)
        except Exception as e:
            logger.error("Vector query failed: %s", e)
            raise RetrievalError(f"Knowledge base query failed: {e}", {"top_k": k}) from e

        result = RetrievalResult()
        seen_files: set[str] = set()
        for match in matches:
            if match.score < self.relevance_threshold:
                logger.debug("Dropping match %s (score %.3f)", match.id, match.score)
                continue
            if not match.content.strip():
                continue
            result.documents.append(match.content)
            result.matches.append(match)
            if match.source_file not in seen_files:
                seen_files.add(match.source_file)
                result.sources.append(match.to_source())

        logger.info(
            "Retrieved %d/%d matches above %.2f from %d sources in %.0fms",
            len(result.documents), len(matches), self.relevance_threshold,
            len(result.sources), (time.time() - started) * 1000,
        )
        return result
