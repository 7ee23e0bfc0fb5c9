"""Byte-bounded chunking engine for knowledge-base ingestion.

Documents are split along the coarsest boundary that keeps each chunk under
the byte limit:

- Paragraphs (blank-line separated) are packed together first
- A paragraph that is too large on its own is split into sentences
- A sentence that is too large on its own is split into words

Sizes are measured in UTF-8 bytes, not characters, because the vector index
limits record size in bytes. A single word longer than the limit cannot be
split further and is emitted as its own (oversized) chunk.
"""

import logging
import re
from typing import Callable, Optional

from schemas.chunk import Chunk
from settings import MAX_CHUNK_BYTES

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Boundaries
# ---------------------------------------------------------------------------

PARAGRAPH_BOUNDARY = re.compile(r"\n{2,}")
SENTENCE_BOUNDARY = re.compile(r"(?<=[.!?])\s+")
WORD_BOUNDARY = re.compile(r"\s+")

PARAGRAPH_SEPARATOR = "\n\n"
INLINE_SEPARATOR = " "


def byte_length(text: str) -> int:
    return len(text.encode("utf-8"))


def normalize_text(text: str) -> str:
    """Normalize line endings, collapse runs of blank lines and trim."""
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


# ---------------------------------------------------------------------------
# Chunker
# ---------------------------------------------------------------------------

class Chunker:
    """Split cleaned text into ordered chunks no larger than ``max_bytes``."""

    def __init__(self, max_bytes: int = MAX_CHUNK_BYTES):
        if max_bytes <= 0:
            raise ValueError(f"max_bytes must be positive, got {max_bytes}")
        self.max_bytes = max_bytes

    def chunk(self, text: str) -> list[Chunk]:
        cleaned = normalize_text(text or "")
        if not cleaned:
            return []

        paragraphs = PARAGRAPH_BOUNDARY.split(cleaned)
        pieces = self._merge_splits(paragraphs, PARAGRAPH_SEPARATOR, self._split_paragraph)
        chunks = [Chunk.from_text(piece, i) for i, piece in enumerate(pieces)]

        oversized = sum(1 for c in chunks if c.byte_length > self.max_bytes)
        if oversized:
            logger.warning(
                "%d chunk(s) exceed %d bytes (single words that cannot be split)",
                oversized, self.max_bytes,
            )
        logger.debug("Chunked %d bytes into %d chunks", byte_length(cleaned), len(chunks))
        return chunks

    def _split_paragraph(self, paragraph: str) -> list[str]:
        sentences = SENTENCE_BOUNDARY.split(paragraph)
        return self._merge_splits(sentences, INLINE_SEPARATOR, self._split_sentence)

    def _split_sentence(self, sentence: str) -> list[str]:
        words = WORD_BOUNDARY.split(sentence)
        return self._merge_splits(words, INLINE_SEPARATOR, None)

    def _merge_splits(
        self,
        parts: list[str],
        separator: str,
        split_oversized: Optional[Callable[[str], list[str]]],
    ) -> list[str]:
        """Pack parts into chunks, recursing into any part that is too big alone.

        The tail of a recursively split part stays open so following parts can
        still be packed onto it.
        """
        chunks: list[str] = []
        current = ""

        for part in parts:
            part = part.strip()
            if not part:
                continue

            if split_oversized is not None and byte_length(part) > self.max_bytes:
                if current:
                    chunks.append(current)
                sub_chunks = split_oversized(part)
                if not sub_chunks:
                    current = ""
                    continue
                chunks.extend(sub_chunks[:-1])
                current = sub_chunks[-1]
                continue

            candidate = f"{current}{separator}{part}" if current else part
            if byte_length(candidate) <= self.max_bytes:
                current = candidate
            else:
                if current:
                    chunks.append(current)
                current = part

        if current:
            chunks.append(current)

        return [c for c in chunks if c.strip()]


def chunk_text(text: str, max_bytes: int = MAX_CHUNK_BYTES) -> list[Chunk]:
    """Convenience wrapper: chunk ``text`` with a one-off Chunker."""
    return Chunker(max_bytes=max_bytes).chunk(text)
