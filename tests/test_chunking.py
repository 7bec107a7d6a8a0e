"""Tests for knowledge chunking."""

import pytest

from casesim.core.chunking import KnowledgeChunker, reassemble, split_text
from casesim.core.errors import ChunkingFailure


def test_split_text_three_chunks_for_2400_chars():
    """2,400 characters at size 1000 / overlap 100 yield three overlapping chunks."""
    text = "abcd " * 480
    assert len(text) == 2400

    chunks = split_text(text, chunk_size=1000, chunk_overlap=100)

    assert len(chunks) == 3
    assert all(len(c) <= 1000 for c in chunks)
    assert chunks[1][:100] == chunks[0][-100:]
    assert chunks[2][:100] == chunks[1][-100:]


def test_split_text_hard_cut_without_separators():
    text = "x" * 2400
    chunks = split_text(text, chunk_size=1000, chunk_overlap=100)

    assert [len(c) for c in chunks] == [1000, 1000, 600]


def test_split_text_prefers_paragraph_breaks():
    first = "First paragraph sentence. " * 30
    second = "Second paragraph sentence. " * 30
    text = first.strip() + "\n\n" + second.strip()

    chunks = split_text(text, chunk_size=1000, chunk_overlap=50)

    assert chunks[0].endswith("\n\n")


@pytest.mark.parametrize(
    "text,size,overlap",
    [
        ("The mare was rolling. " * 200, 1000, 100),
        ("Heart rate 64.\nTemperature 38.4.\n\n" * 150, 300, 40),
        ("word " * 1000, 120, 0),
        ("no-separators-here" * 300, 256, 32),
        ("Mixed; clauses, here? yes! ok. " * 90, 200, 20),
    ],
)
def test_chunks_reconstruct_source(text, size, overlap):
    chunks = split_text(text, chunk_size=size, chunk_overlap=overlap)

    assert reassemble(chunks, overlap) == text
    assert all(len(c) <= size for c in chunks)


def test_split_text_short_text_is_single_chunk():
    assert split_text("Short text", chunk_size=1000, chunk_overlap=100) == ["Short text"]


@pytest.mark.parametrize("text", ["", "   ", "\n\n\t"])
def test_split_text_blank_is_empty(text):
    assert split_text(text) == []


def test_split_text_rejects_bad_overlap():
    with pytest.raises(ValueError):
        split_text("abc", chunk_size=100, chunk_overlap=100)
    with pytest.raises(ValueError):
        split_text("abc", chunk_size=100, chunk_overlap=-1)


def test_chunker_split_matches_split_text():
    chunker = KnowledgeChunker(chunk_size=200, chunk_overlap=20)
    text = "Lungs clear on auscultation. " * 40

    assert chunker.split(text) == split_text(text, 200, 20)


def test_chunker_wraps_value_errors():
    chunker = KnowledgeChunker(chunk_size=200, chunk_overlap=20)
    chunker.chunk_overlap = 500

    with pytest.raises(ChunkingFailure):
        chunker.split("text " * 100)
