"""Pydantic models for retrieval results and the citations built from them."""

from pydantic import BaseModel, Field
from typing import Optional

DEFAULT_SOURCE_FILE = "Unknown source"


class RetrievedMatch(BaseModel):
    """A single scored match returned by the vector index."""

    id: str = ""
    score: float = Field(description="Similarity in [0, 1], higher = more relevant")
    content: str = ""
    source_file: str = DEFAULT_SOURCE_FILE
    category: Optional[str] = None
    source_url: Optional[str] = None
    chunk_index: Optional[int] = None

    @classmethod
    def from_chroma_result(cls, match_id: str, doc: Optional[str], meta: Optional[dict], distance: float) -> "RetrievedMatch":
        # Cosine space: distance = 1 - similarity
        meta = meta or {}
        return cls(
            id=match_id,
            score=max(0.0, 1.0 - distance),
            content=doc or "",
            source_file=meta.get("source_file") or DEFAULT_SOURCE_FILE,
            category=meta.get("category"),
            source_url=meta.get("source_url"),
            chunk_index=meta.get("chunk_index"),
        )

    def to_source(self) -> "Source":
        return Source(file=self.source_file, category=self.category, url=self.source_url)


class Source(BaseModel):
    """A citation entry, unique per source_file within one answer."""

    file: str
    category: Optional[str] = None
    url: Optional[str] = None
