import pytest

from vectorstore.chunker import Chunker, byte_length, chunk_text, normalize_text


def test_empty_text_has_no_chunks():
    assert chunk_text("") == []
    assert chunk_text("   \n\n  \r\n") == []


def test_short_text_is_single_chunk():
    chunks = chunk_text("Hello world.\n\nSecond paragraph.", max_bytes=1000)
    assert len(chunks) == 1
    assert chunks[0].text == "Hello world.\n\nSecond paragraph."
    assert chunks[0].index == 0
    assert chunks[0].byte_length == byte_length(chunks[0].text)


def test_paragraphs_are_packed_under_limit():
    paragraphs = [f"Paragraph {i} has a few words in it." for i in range(20)]
    text = "\n\n".join(paragraphs)
    chunks = chunk_text(text, max_bytes=120)

    assert len(chunks) > 1
    assert all(c.byte_length <= 120 for c in chunks)
    assert [c.index for c in chunks] == list(range(len(chunks)))
    # Whole paragraphs stay intact when they fit
    assert "Paragraph 0 has a few words in it." in chunks[0].text


def test_long_paragraph_splits_on_sentences_then_words():
    sentence = "This sentence is exactly long enough to matter here."
    text = " ".join([sentence] * 10) + " " + "word " * 80
    chunks = chunk_text(text, max_bytes=100)

    assert all(c.byte_length <= 100 for c in chunks)
    # Nothing is dropped or reordered
    assert " ".join(c.text for c in chunks).split() == text.split()


def test_oversized_word_becomes_its_own_chunk():
    giant = "x" * 300
    chunks = chunk_text(f"small start {giant} small end", max_bytes=50)

    texts = [c.text for c in chunks]
    assert giant in texts
    assert chunks[texts.index(giant)].byte_length == 300
    assert all(c.byte_length <= 50 for c in chunks if c.text != giant)


def test_limit_is_measured_in_utf8_bytes():
    # "é" is two bytes, "日" is three
    text = " ".join(["éééé"] * 50 + ["日本語"] * 30)
    chunks = chunk_text(text, max_bytes=64)

    assert all(c.byte_length <= 64 for c in chunks)
    assert all(c.byte_length == len(c.text.encode("utf-8")) for c in chunks)
    assert " ".join(c.text for c in chunks).split() == text.split()


def test_normalize_text_collapses_blank_lines_and_line_endings():
    assert normalize_text("a\r\nb\r\n\r\n\r\n\r\nc  ") == "a\nb\n\nc"


def test_chunker_rejects_non_positive_limit():
    with pytest.raises(ValueError):
        Chunker(max_bytes=0)
