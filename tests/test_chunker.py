from __future__ import annotations

import pytest

from ragengine.errors import InvalidConfiguration
from ragengine.ingestion import Chunker
from ragengine.models import Document

SENTENCES = [
    "Retrieval augmented generation grounds answers in documents.",
    "Chunks are embedded and stored in a vector index for search.",
    "The orchestrator retrieves context before calling a provider.",
    "Providers are retried with exponential backoff on failures.",
    "Answers are cached by normalized question and provider id.",
]


def _document() -> Document:
    paragraphs = [" ".join(SENTENCES[i:] + SENTENCES[:i]) for i in range(len(SENTENCES))]
    return Document.from_text("\n\n".join(paragraphs), "notes.txt")


def test_chunking_is_deterministic_and_restartable():
    chunker = Chunker(chunk_size=120, chunk_overlap=30)
    document = _document()

    sequence = chunker.split(document)
    first = list(sequence)
    second = list(sequence)

    assert first == second
    assert first == list(Chunker(chunk_size=120, chunk_overlap=30).split(document))


def test_chunks_respect_size_and_share_exact_overlap():
    chunker = Chunker(chunk_size=120, chunk_overlap=30)
    document = _document()
    chunks = list(chunker.split(document))

    assert len(chunks) > 3
    assert [chunk.ordinal for chunk in chunks] == list(range(len(chunks)))
    for chunk in chunks:
        assert len(chunk.text) <= 120
        assert chunk.chunk_id == f"{document.document_id}-{chunk.ordinal}"
        start = chunk.metadata["start_index"]
        assert document.content[start : start + len(chunk.text)] == chunk.text
    for previous, current in zip(chunks, chunks[1:]):
        assert current.metadata["overlap"] == 30
        assert previous.text.endswith(current.text[:30])


def test_chunks_reconstruct_the_document():
    document = _document()
    chunks = list(Chunker(chunk_size=120, chunk_overlap=30).split(document))

    assert chunks[0].metadata["start_index"] == 0
    assert chunks[0].metadata["overlap"] == 0
    rebuilt = "".join(chunk.text[chunk.metadata["overlap"] :] for chunk in chunks)
    assert rebuilt == document.content


def test_chunker_prefers_paragraph_boundaries():
    first = "The first paragraph talks about indexing documents for search."
    second = "The second paragraph describes answering questions with context."
    document = Document.from_text(f"{first}\n\n{second}", "two.txt")

    chunks = list(Chunker(chunk_size=100, chunk_overlap=10).split(document))

    assert len(chunks) == 2
    assert chunks[0].text == f"{first}\n\n"
    assert chunks[1].text[chunks[1].metadata["overlap"] :] == second


def test_chunk_metadata_carries_document_provenance():
    document = Document.from_text("alpha beta gamma", "greek.txt", display_name="greek")

    (chunk,) = Chunker(chunk_size=50, chunk_overlap=5).split(document)

    assert chunk.document_id == document.document_id
    assert chunk.source == "greek.txt"
    assert chunk.metadata["display_name"] == "greek"


def test_whitespace_document_yields_no_chunks():
    document = Document.from_text("   \n\n  ", "blank.txt")

    assert list(Chunker().split(document)) == []


@pytest.mark.parametrize(
    ("size", "overlap"),
    [(100, 100), (100, 150), (0, 10), (100, 0), (100, -5)],
)
def test_invalid_chunking_configuration(size: int, overlap: int):
    with pytest.raises(InvalidConfiguration):
        Chunker(chunk_size=size, chunk_overlap=overlap)
