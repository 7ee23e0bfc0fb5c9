"""Ingestion pipeline: probe → scrape → chunk → embed → upsert.

``IngestionCoordinator.ingest_url`` is idempotent per source URL: a URL that
already has records in the index is reported as already indexed and is not
scraped again. ``ingest_urls`` runs URLs one after another and isolates
failures so one bad link never aborts the rest.

Usage (standalone):
  python -m vectorstore.ingest https://example.com/about https://example.com/pricing
"""

import argparse
import logging
import re
import time
import uuid
from typing import Optional

from errors import IngestionError, IngestionFailure, KnowledgeBaseError
from schemas.chunk import Chunk
from schemas.ingestion import (
    WEB_PAGE_CATEGORY,
    IndexRecord,
    IngestionOutcome,
    IngestionResult,
)
from scrapers.utils import extract_domain_name
from settings import Settings, configure_logging
from vectorstore.chunker import Chunker
from vectorstore.embedder import Embedder
from vectorstore.store import VectorStore

logger = logging.getLogger(__name__)

SOURCE_FILE_PATTERN = re.compile(r"^(?P<title>.*) \((?P<domain>[^()]*)\)$")


def format_source_file(title: str, url: str) -> str:
    return f"{title} ({extract_domain_name(url)})"


def title_from_source_file(source_file: str) -> str:
    """Recover the page title from a stored ``"{title} ({domain})"`` label."""
    match = SOURCE_FILE_PATTERN.match(source_file or "")
    return match.group("title") if match else (source_file or "")


class IngestionCoordinator:
    """Turns URLs and raw text into indexed chunks."""

    def __init__(
        self,
        scraper,
        store: VectorStore,
        embedder: Embedder,
        chunker: Optional[Chunker] = None,
        existence_probe_limit: int = 10,
    ):
        self.scraper = scraper
        self.store = store
        self.embedder = embedder
        self.chunker = chunker or Chunker()
        self.existence_probe_limit = existence_probe_limit

    # ------------------------------------------------------------------
    # Single URL
    # ------------------------------------------------------------------

    def ingest_url(self, url: str) -> IngestionResult:
        """Index one web page unless it is already in the knowledge base.

        Raises:
            IngestionError: NO_CONTENT when the page is empty, NO_CHUNKS when
                chunking yields nothing, UPSTREAM_FAILURE when the scrape
                service, the embedding provider or the index fails.
        """
        started = time.time()

        # 1. Existence probe
        try:
            existing = self.store.find_by_source_url(url, limit=self.existence_probe_limit)
        except Exception as e:
            raise IngestionError(
                f"Existence check failed for {url}: {e}",
                IngestionFailure.UPSTREAM_FAILURE,
                url=url,
            ) from e
        if existing:
            source_file = existing[0]["metadata"].get("source_file", "")
            title = title_from_source_file(source_file) or extract_domain_name(url)
            logger.info("Already indexed: %s (%d records found)", url, len(existing))
            return IngestionResult(
                url=url, title=title, chunk_count=len(existing), already_indexed=True,
            )

        # 2. Scrape
        try:
            page = self.scraper.scrape(url)
        except KnowledgeBaseError as e:
            raise IngestionError(
                f"Scrape failed for {url}: {e.message}",
                IngestionFailure.UPSTREAM_FAILURE,
                url=url,
                details=dict(e.details),
            ) from e
        except Exception as e:
            raise IngestionError(
                f"Scrape failed for {url}: {e}",
                IngestionFailure.UPSTREAM_FAILURE,
                url=url,
            ) from e
        if not page.content.strip():
            raise IngestionError(
                "No content could be extracted from the URL",
                IngestionFailure.NO_CONTENT,
                url=url,
            )
        title = page.title or extract_domain_name(url)

        # 3. Chunk
        chunks = self.chunker.chunk(page.content)
        if not chunks:
            raise IngestionError(
                "Could not create chunks from content",
                IngestionFailure.NO_CHUNKS,
                url=url,
            )
        logger.info("Created %d chunks for %s", len(chunks), url)

        # 4. Embed + upsert in one batch
        records = self._build_records(
            chunks,
            source_file=format_source_file(title, url),
            category=WEB_PAGE_CATEGORY,
            source_url=url,
        )
        self._upsert(records, url=url)

        logger.info(
            "Indexed %s: %d chunks, title=%r in %.1fs",
            url, len(chunks), title, time.time() - started,
        )
        return IngestionResult(url=url, title=title, chunk_count=len(chunks), already_indexed=False)

    # ------------------------------------------------------------------
    # Batches and raw text
    # ------------------------------------------------------------------

    def ingest_urls(self, urls: list[str]) -> list[IngestionOutcome]:
        """Ingest URLs sequentially; each failure is logged and recorded, never raised."""
        outcomes: list[IngestionOutcome] = []
        for i, url in enumerate(urls, 1):
            logger.info("Ingesting URL %d/%d: %s", i, len(urls), url)
            try:
                result = self.ingest_url(url)
                outcomes.append(IngestionOutcome(url=url, result=result))
            except IngestionError as e:
                logger.warning("Skipping %s: %s", url, e)
                outcomes.append(IngestionOutcome(url=url, error=e.message, reason=e.reason.value))
        return outcomes

    def ingest_text(self, text: str, source_file: str, category: Optional[str] = None) -> int:
        """Chunk and index raw text under ``source_file``; returns the chunk count."""
        chunks = self.chunker.chunk(text)
        if not chunks:
            raise IngestionError(
                f"Could not create chunks from text for {source_file}",
                IngestionFailure.NO_CHUNKS,
            )
        records = self._build_records(chunks, source_file=source_file, category=category)
        self._upsert(records, url=None)
        logger.info("Indexed text '%s': %d chunks", source_file, len(chunks))
        return len(chunks)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _build_records(
        self,
        chunks: list[Chunk],
        source_file: str,
        category: Optional[str] = None,
        source_url: Optional[str] = None,
    ) -> list[IndexRecord]:
        return [
            IndexRecord(
                id=str(uuid.uuid4()),
                text=chunk.text,
                source_file=source_file,
                category=category,
                source_url=source_url,
                chunk_index=chunk.index,
            )
            for chunk in chunks
        ]

    def _upsert(self, records: list[IndexRecord], url: Optional[str]) -> None:
        try:
            embeddings = self.embedder.embed([r.text for r in records])
            self.store.upsert_records(records, embeddings)
        except Exception as e:
            raise IngestionError(
                f"Failed to index {len(records)} chunks: {e}",
                IngestionFailure.UPSTREAM_FAILURE,
                url=url,
            ) from e


def build_scraper(settings: Settings):
    """Scraper for the configured backend (firecrawl or html)."""
    from scrapers.firecrawl_scraper import FirecrawlScraper
    from scrapers.html_scraper import HtmlScraper

    settings.require_scraper()
    if settings.scraper_backend == "html":
        return HtmlScraper()
    return FirecrawlScraper(api_key=settings.firecrawl_api_key, endpoint=settings.firecrawl_url)


def build_store(settings: Settings) -> VectorStore:
    return VectorStore(
        collection_name=settings.collection_name,
        path=settings.chroma_path,
        host=settings.chroma_host,
        port=settings.chroma_port,
    )


def build_coordinator(
    settings: Settings,
    store: Optional[VectorStore] = None,
    embedder: Optional[Embedder] = None,
) -> IngestionCoordinator:
    api_key = settings.require_provider()
    return IngestionCoordinator(
        scraper=build_scraper(settings),
        store=store or build_store(settings),
        embedder=embedder or Embedder(model=settings.embedding_model, api_key=api_key),
        chunker=Chunker(max_bytes=settings.max_chunk_bytes),
        existence_probe_limit=settings.existence_probe_limit,
    )


# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------

def main():
    settings = Settings.from_env()
    configure_logging(settings.log_level)

    parser = argparse.ArgumentParser(description="Index web pages into the knowledge base")
    parser.add_argument("urls", nargs="+", help="Page URLs to index")
    args = parser.parse_args()

    coordinator = build_coordinator(settings)
    outcomes = coordinator.ingest_urls(args.urls)

    print("\n" + "=" * 70)
    print("INGESTION SUMMARY")
    print("=" * 70)
    for outcome in outcomes:
        if outcome.result and outcome.result.already_indexed:
            print(f"  = {outcome.url}  already indexed ({outcome.result.chunk_count} records)")
        elif outcome.result:
            print(f"  + {outcome.url}  {outcome.result.chunk_count} chunks  ({outcome.result.title})")
        else:
            print(f"  ! {outcome.url}  {outcome.reason}: {outcome.error}")
    print("=" * 70)


if __name__ == "__main__":
    main()
