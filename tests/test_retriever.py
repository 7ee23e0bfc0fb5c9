import pytest

from conftest import FakeEmbedder, FakeStore, match
from errors import RetrievalError
from webapp.rag.retriever import Retriever


def test_matches_below_threshold_are_dropped():
    store = FakeStore(matches=[
        match("Refunds within 30 days.", 0.82, match_id="a"),
        match("Unrelated footer text.", 0.39, source_file="Footer (example.com)", match_id="b"),
    ])
    result = Retriever(store, FakeEmbedder(), relevance_threshold=0.4).retrieve("refund policy")

    assert result.documents == ["Refunds within 30 days."]
    assert [s.file for s in result.sources] == ["Guide (example.com)"]


def test_match_at_threshold_is_kept():
    store = FakeStore(matches=[match("Edge", 0.4)])
    result = Retriever(store, FakeEmbedder(), relevance_threshold=0.4).retrieve("edge case")

    assert result.documents == ["Edge"]


def test_sources_are_deduplicated_in_first_seen_order():
    store = FakeStore(matches=[
        match("A1", 0.9, source_file="A", match_id="1"),
        match("B1", 0.8, source_file="B", url=None, match_id="2"),
        match("A2", 0.7, source_file="A", match_id="3"),
    ])
    result = Retriever(store, FakeEmbedder()).retrieve("q")

    assert result.documents == ["A1", "B1", "A2"]
    assert [s.file for s in result.sources] == ["A", "B"]
    assert result.sources[1].url is None
    assert len(result.sources) <= len(result.documents)


def test_empty_index_is_empty_result():
    result = Retriever(FakeStore(), FakeEmbedder()).retrieve("anything")
    assert result.is_empty()
    assert result.sources == []


def test_top_k_is_passed_through():
    store = FakeStore(matches=[match(f"doc {i}", 0.9, source_file=f"f{i}") for i in range(8)])
    result = Retriever(store, FakeEmbedder(), top_k=5).retrieve("q", top_k=2)
    assert len(result.documents) == 2


def test_unreachable_index_raises_retrieval_error():
    retriever = Retriever(FakeStore(fail_search=True), FakeEmbedder())
    with pytest.raises(RetrievalError):
        retriever.retrieve("q")


def test_embedding_failure_raises_retrieval_error():
    retriever = Retriever(FakeStore(), FakeEmbedder(fail=True))
    with pytest.raises(RetrievalError):
        retriever.retrieve("q")
