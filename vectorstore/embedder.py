"""OpenAI embedding client used for both ingestion and query-time retrieval.

Texts are truncated to the model's token limit with tiktoken, sent in
batches, and retried with exponential backoff on transient API errors.
Bad requests are not retried.
"""

import logging
import time
from typing import Optional

import tiktoken
from openai import BadRequestError, OpenAI
from tenacity import retry, retry_if_not_exception_type, stop_after_attempt, wait_exponential

from settings import DEFAULT_EMBEDDING_MODEL

logger = logging.getLogger(__name__)

MAX_BATCH_SIZE = 128
MAX_TOKENS_PER_TEXT = 8000  # model limit is 8191


def _encoding_for(model: str) -> tiktoken.Encoding:
    try:
        return tiktoken.encoding_for_model(model)
    except KeyError:
        logger.warning("No tiktoken mapping for %s; using cl100k_base", model)
        return tiktoken.get_encoding("cl100k_base")


class Embedder:
    """Generate embeddings with an OpenAI embedding model."""

    def __init__(
        self,
        model: str = DEFAULT_EMBEDDING_MODEL,
        api_key: Optional[str] = None,
        dimensions: Optional[int] = None,
        client: Optional[OpenAI] = None,
    ):
        self.model = model
        self.dimensions = dimensions
        self.client = client or OpenAI(api_key=api_key)
        self._encoder = _encoding_for(model)

    def _truncate_text(self, text: str) -> str:
        tokens = self._encoder.encode(text)
        if len(tokens) <= MAX_TOKENS_PER_TEXT:
            return text
        logger.warning(
            "Truncating text from %d to %d tokens (first 60 chars: '%.60s')",
            len(tokens), MAX_TOKENS_PER_TEXT, text,
        )
        return self._encoder.decode(tokens[:MAX_TOKENS_PER_TEXT])

    @retry(
        stop=stop_after_attempt(4),
        wait=wait_exponential(multiplier=2, min=2, max=30),
        retry=retry_if_not_exception_type(BadRequestError),
        reraise=True,
        before_sleep=lambda retry_state: logger.warning(
            "Embedding API retry %d after error: %s",
            retry_state.attempt_number,
            retry_state.outcome.exception() if retry_state.outcome else "unknown",
        ),
    )
    def _embed_batch(self, texts: list[str]) -> list[list[float]]:
        kwargs = {"model": self.model, "input": texts}
        if self.dimensions:
            kwargs["dimensions"] = self.dimensions
        response = self.client.embeddings.create(**kwargs)
        # Response data is sorted by index
        return [item.embedding for item in sorted(response.data, key=lambda x: x.index)]

    def embed(self, texts: list[str]) -> list[list[float]]:
        """Embed texts in input order, batching as needed."""
        if not texts:
            return []

        texts = [self._truncate_text(t) for t in texts]
        started = time.time()
        embeddings: list[list[float]] = []
        for start in range(0, len(texts), MAX_BATCH_SIZE):
            embeddings.extend(self._embed_batch(texts[start:start + MAX_BATCH_SIZE]))

        logger.info(
            "Embedded %d texts with %s in %.1fs",
            len(embeddings), self.model, time.time() - started,
        )
        return embeddings

    def embed_single(self, text: str) -> list[float]:
        """Embed one string (query-time convenience)."""
        return self.embed([text])[0]
