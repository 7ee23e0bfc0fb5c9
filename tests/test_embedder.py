from types import SimpleNamespace
from unittest.mock import Mock

import pytest

import vectorstore.embedder as embedder_module
from vectorstore.embedder import MAX_TOKENS_PER_TEXT, Embedder


class CharEncoding:
    """One token per character; keeps tests offline."""

    def encode(self, text):
        return list(text)

    def decode(self, tokens):
        return "".join(tokens)


@pytest.fixture(autouse=True)
def offline_encoding(monkeypatch):
    monkeypatch.setattr(embedder_module, "_encoding_for", lambda model: CharEncoding())


def embedding_response(vectors):
    # Provider may return items out of order
    items = [SimpleNamespace(index=i, embedding=v) for i, v in enumerate(vectors)]
    return SimpleNamespace(data=list(reversed(items)))


def test_embed_preserves_input_order():
    client = Mock()
    client.embeddings.create.return_value = embedding_response([[1.0], [2.0], [3.0]])

    vectors = Embedder(model="text-embedding-3-large", client=client).embed(["a", "b", "c"])

    assert vectors == [[1.0], [2.0], [3.0]]
    client.embeddings.create.assert_called_once_with(model="text-embedding-3-large", input=["a", "b", "c"])


def test_embed_batches_large_inputs():
    client = Mock()
    client.embeddings.create.side_effect = lambda model, input: embedding_response([[float(len(t))] for t in input])

    vectors = Embedder(client=client).embed(["x"] * 300)

    assert len(vectors) == 300
    assert client.embeddings.create.call_count == 3


def test_long_text_is_truncated():
    client = Mock()
    client.embeddings.create.return_value = embedding_response([[0.5]])

    Embedder(client=client, dimensions=256).embed(["y" * (MAX_TOKENS_PER_TEXT + 50)])

    _, kwargs = client.embeddings.create.call_args
    assert len(kwargs["input"][0]) == MAX_TOKENS_PER_TEXT
    assert kwargs["dimensions"] == 256


def test_empty_input_makes_no_call():
    client = Mock()
    assert Embedder(client=client).embed([]) == []
    client.embeddings.create.assert_not_called()
