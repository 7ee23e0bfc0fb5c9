import pytest

from conftest import FakeEmbedder, FakeScraper, FakeStore
from errors import IngestionError, IngestionFailure, ScrapeError
from schemas.ingestion import WEB_PAGE_CATEGORY, ScrapedPage
from vectorstore.chunker import Chunker
from vectorstore.ingest import IngestionCoordinator, format_source_file, title_from_source_file

URL = "https://www.example.com/pricing"


def make_coordinator(pages, store=None, embedder=None, max_bytes=1000):
    scraper = FakeScraper(pages)
    coordinator = IngestionCoordinator(
        scraper=scraper,
        store=store or FakeStore(),
        embedder=embedder or FakeEmbedder(),
        chunker=Chunker(max_bytes=max_bytes),
    )
    return coordinator, scraper


def test_ingest_url_indexes_chunks_with_metadata(page):
    coordinator, _ = make_coordinator({URL: page})

    result = coordinator.ingest_url(URL)

    assert result.already_indexed is False
    assert result.title == "Pricing"
    assert result.chunk_count == 1
    record = coordinator.store.records[0]
    assert record.source_file == "Pricing (example.com)"
    assert record.category == WEB_PAGE_CATEGORY
    assert record.source_url == URL
    assert record.chunk_index == 0


def test_second_ingest_is_idempotent(page):
    coordinator, scraper = make_coordinator({URL: page}, max_bytes=40)

    first = coordinator.ingest_url(URL)
    second = coordinator.ingest_url(URL)

    assert first.chunk_count > 1
    assert second.already_indexed is True
    assert second.chunk_count == first.chunk_count
    assert second.title == "Pricing"
    assert scraper.calls == [URL]
    assert len(coordinator.store.records) == first.chunk_count


def test_empty_page_is_no_content():
    empty = ScrapedPage(url=URL, title="Empty", content="  \n ")
    coordinator, _ = make_coordinator({URL: empty})

    with pytest.raises(IngestionError) as exc_info:
        coordinator.ingest_url(URL)
    assert exc_info.value.reason is IngestionFailure.NO_CONTENT
    assert coordinator.store.records == []


def test_unchunkable_page_is_no_chunks(page):
    class NoChunks(Chunker):
        def chunk(self, text):
            return []

    coordinator = IngestionCoordinator(FakeScraper({URL: page}), FakeStore(), FakeEmbedder(), chunker=NoChunks())

    with pytest.raises(IngestionError) as exc_info:
        coordinator.ingest_url(URL)
    assert exc_info.value.reason is IngestionFailure.NO_CHUNKS


def test_scrape_failure_is_upstream_failure():
    coordinator, _ = make_coordinator({URL: ScrapeError("Failed to scrape URL: 500", url=URL, status_code=500)})

    with pytest.raises(IngestionError) as exc_info:
        coordinator.ingest_url(URL)
    assert exc_info.value.reason is IngestionFailure.UPSTREAM_FAILURE
    assert exc_info.value.details["status_code"] == 500


def test_embedding_failure_is_upstream_failure(page):
    coordinator, _ = make_coordinator({URL: page}, embedder=FakeEmbedder(fail=True))

    with pytest.raises(IngestionError) as exc_info:
        coordinator.ingest_url(URL)
    assert exc_info.value.reason is IngestionFailure.UPSTREAM_FAILURE
    assert coordinator.store.records == []


def test_batch_isolates_failures(page):
    bad = "https://broken.example.com/"
    coordinator, scraper = make_coordinator({bad: RuntimeError("boom"), URL: page})

    outcomes = coordinator.ingest_urls([bad, URL])

    assert [o.url for o in outcomes] == [bad, URL]
    assert not outcomes[0].ok
    assert outcomes[0].reason == IngestionFailure.UPSTREAM_FAILURE.value
    assert outcomes[1].ok
    assert outcomes[1].result.chunk_count == 1
    assert scraper.calls == [bad, URL]


def test_ingest_text_uses_given_source_file(store):
    coordinator, scraper = make_coordinator({}, store=store)

    count = coordinator.ingest_text("Office hours are 9 to 5.", source_file="handbook.md", category="policy")

    assert count == 1
    assert scraper.calls == []
    assert store.records[0].metadata() == {
        "source_file": "handbook.md",
        "category": "policy",
        "chunk_index": 0,
    }


def test_source_file_label_round_trip():
    label = format_source_file("Getting Started (Beta)", "https://docs.example.org/start")
    assert label == "Getting Started (Beta) (docs.example.org)"
    assert title_from_source_file(label) == "Getting Started (Beta)"
    assert title_from_source_file("plain.md") == "plain.md"
