import sys
from pathlib import Path
from typing import Optional

import orjson
import pytest

# Repo root = one level above tests/
REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from schemas.ingestion import ScrapedPage  # noqa: E402
from schemas.retrieval import RetrievedMatch  # noqa: E402


# ---------------------------------------------------------------------------
# Fakes for the external services (index, embeddings, scraper, model)
# ---------------------------------------------------------------------------

class FakeEmbedder:
    model = "fake-embedding"

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls: list[list[str]] = []

    def embed(self, texts):
        if self.fail:
            raise RuntimeError("embedding provider unavailable")
        self.calls.append(list(texts))
        return [[float(len(t)), 1.0, 0.0] for t in texts]

    def embed_single(self, text):
        return self.embed([text])[0]


class FakeStore:
    """In-memory stand-in for VectorStore."""

    def __init__(self, matches: Optional[list[RetrievedMatch]] = None, fail_search: bool = False):
        self.records = []
        self.matches = matches or []
        self.fail_search = fail_search
        self.search_calls = 0

    def upsert_records(self, records, embeddings):
        assert len(records) == len(embeddings)
        self.records.extend(records)
        return len(records)

    def find_by_source_url(self, url, limit=10):
        found = [r for r in self.records if r.source_url == url][:limit]
        return [{"id": r.id, "metadata": r.metadata()} for r in found]

    def search(self, embedding, top_k=5, where=None):
        self.search_calls += 1
        if self.fail_search:
            raise ConnectionError("index unreachable")
        return self.matches[:top_k]

    def count(self):
        return len(self.records)

    def get_stats(self):
        return {"knowledge-base": {"count": len(self.records), "sample_metadata_keys": []}}


class FakeScraper:
    def __init__(self, pages: Optional[dict] = None):
        self.pages = pages or {}
        self.calls: list[str] = []

    def scrape(self, url):
        self.calls.append(url)
        page = self.pages.get(url)
        if isinstance(page, Exception):
            raise page
        if page is None:
            raise RuntimeError(f"no fake page for {url}")
        return page


class FakeLLM:
    model = "fake-chat"

    def __init__(self, answer: str = "", chunks: Optional[list[bytes]] = None, fail: bool = False):
        self.answer = answer
        self.chunks = chunks
        self.fail = fail
        self.messages: list[list[dict]] = []

    def chat(self, messages):
        self.messages.append(messages)
        if self.fail:
            raise RuntimeError("model unavailable")
        return self.answer

    def stream_raw(self, messages):
        self.messages.append(messages)
        if self.fail:
            raise RuntimeError("model unavailable")
        chunks = self.chunks if self.chunks is not None else sse_stream([self.answer])
        yield from chunks


# ---------------------------------------------------------------------------
# SSE helpers
# ---------------------------------------------------------------------------

def sse_delta(content: str) -> bytes:
    record = {"id": "chatcmpl-1", "choices": [{"index": 0, "delta": {"content": content}}]}
    return b"data: " + orjson.dumps(record) + b"\n\n"


def sse_stream(contents: list[str], done: bool = True) -> list[bytes]:
    chunks = [sse_delta(c) for c in contents]
    if done:
        chunks.append(b"data: [DONE]\n\n")
    return chunks


def parse_events(raw: bytes) -> list:
    """Decode relayed bytes into a list of JSON records and "[DONE]" markers."""
    events = []
    for line in raw.decode("utf-8").split("\n"):
        if not line.startswith("data:"):
            continue
        payload = line[5:].strip()
        if payload == "[DONE]":
            events.append("[DONE]")
            continue
        try:
            events.append(orjson.loads(payload))
        except orjson.JSONDecodeError:
            events.append(payload)
    return events


def delta_text(event) -> str:
    if not isinstance(event, dict) or "choices" not in event:
        return ""
    return event["choices"][0].get("delta", {}).get("content") or ""


def match(content: str, score: float, source_file: str = "Guide (example.com)",
          url: Optional[str] = "https://example.com/guide", match_id: str = "m") -> RetrievedMatch:
    return RetrievedMatch(
        id=match_id, score=score, content=content,
        source_file=source_file, category="web_page", source_url=url,
    )


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def page():
    return ScrapedPage(
        url="https://www.example.com/pricing",
        title="Pricing",
        content="Plans start at $10 per month.\n\nEnterprise plans are custom.",
    )
