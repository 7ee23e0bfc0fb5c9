"""Pydantic models for scraping and ingestion outcomes."""

from typing import Optional

from pydantic import BaseModel, Field

WEB_PAGE_CATEGORY = "web_page"


class ScrapedPage(BaseModel):
    url: str
    content: str = Field(description="Main page content as markdown or plain text")
    title: str = ""


class IndexRecord(BaseModel):
    """One chunk ready for upsert into the vector index."""

    id: str
    text: str
    source_file: str
    category: Optional[str] = None
    source_url: Optional[str] = None
    chunk_index: int = 0

    def metadata(self) -> dict:
        # Chroma rejects None metadata values
        meta = {
            "source_file": self.source_file,
            "category": self.category,
            "source_url": self.source_url,
            "chunk_index": self.chunk_index,
        }
        return {k: v for k, v in meta.items() if v is not None}


class IngestionResult(BaseModel):
    url: str
    title: str
    chunk_count: int
    already_indexed: bool = False


class IngestionOutcome(BaseModel):
    """Result of one URL inside a batch; exactly one of result / error is set."""

    url: str
    result: Optional[IngestionResult] = None
    error: Optional[str] = None
    reason: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.result is not None
