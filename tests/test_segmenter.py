import pytest

from retrieval_engine.errors import ConfigurationError, ValidationError
from retrieval_engine.services.segmenter import ContentSegmenter, chunk


def test_chunk_example_overlaps_two_tokens():
    text = "The quick brown fox jumps. Over the lazy dog."
    chunks = list(chunk(text, max_tokens=5, overlap=2))

    assert [c.content for c in chunks] == [
        "The quick brown fox jumps.",
        "fox jumps. Over the lazy",
        "the lazy dog.",
    ]
    for current, following in zip(chunks, chunks[1:]):
        assert current.content.split()[-2:] == following.content.split()[:2]
    assert all(len(c.content.split()) <= 5 for c in chunks)
    assert [c.chunk_index for c in chunks] == [0, 1, 2]


def test_spans_cover_input():
    text = "One two three. Four five six seven. Eight nine ten eleven twelve."
    chunks = list(chunk(text, max_tokens=4, overlap=1))

    assert chunks[0].char_start == 0
    assert chunks[-1].char_end == len(text)
    for c in chunks:
        assert text[c.char_start : c.char_end] == c.content
    for current, following in zip(chunks, chunks[1:]):
        assert following.char_start < current.char_end


def test_prefers_sentence_boundary():
    text = "Alpha beta. Gamma delta epsilon zeta eta theta."
    first = next(iter(chunk(text, max_tokens=5, overlap=1)))
    assert first.content == "Alpha beta."


def test_paragraph_break_is_a_boundary():
    text = "alpha beta gamma\n\ndelta epsilon zeta eta theta iota"
    first = next(iter(chunk(text, max_tokens=5, overlap=1)))
    assert first.content == "alpha beta gamma"


def test_hard_cut_without_boundary():
    text = " ".join(f"w{i}" for i in range(10))
    chunks = list(chunk(text, max_tokens=4, overlap=0))
    assert [c.content for c in chunks] == ["w0 w1 w2 w3", "w4 w5 w6 w7", "w8 w9"]


def test_short_text_is_one_chunk():
    chunks = list(chunk("just a few words", max_tokens=10, overlap=3))
    assert len(chunks) == 1
    assert chunks[0].content == "just a few words"


def test_empty_text_yields_nothing():
    assert list(chunk("   \n ", max_tokens=5, overlap=1)) == []


def test_chunks_are_restartable_and_deterministic():
    result = chunk("a b c d e f g h i j k", max_tokens=3, overlap=1)
    assert list(result) == list(result)
    assert len(result) == len(list(result))


@pytest.mark.parametrize("max_tokens, overlap", [(5, 5), (5, 7), (0, 0), (5, -1)])
def test_invalid_parameters(max_tokens, overlap):
    with pytest.raises(ConfigurationError):
        chunk("some text", max_tokens=max_tokens, overlap=overlap)


def test_non_string_input():
    with pytest.raises(ValidationError):
        chunk(b"bytes", max_tokens=5, overlap=1)


def test_cache_key_depends_on_model_and_content():
    first, second = list(chunk("One. Two.", max_tokens=1, overlap=0))
    assert first.cache_key("m1") != first.cache_key("m2")
    assert first.cache_key("m1") != second.cache_key("m1")
    assert first.cache_key("m1") == first.cache_key("m1")


def test_recursive_strategy_tracks_offsets():
    text = "Paragraph one has some words.\n\nParagraph two has more words in it."
    segmenter = ContentSegmenter("recursive")
    chunks = list(segmenter.chunk(text, max_tokens=40, overlap=5))

    assert len(chunks) >= 2
    for c in chunks:
        assert text[c.char_start : c.char_end] == c.content


def test_unknown_strategy():
    with pytest.raises(ConfigurationError):
        ContentSegmenter("sentences")
