"""Tests for ingestion-related helpers."""

from __future__ import annotations

from pathlib import Path

import pytest

from ragengine.embeddings import EmbeddingConfig, HashEmbeddingBackend, InMemoryCorpusIndex
from ragengine.errors import CorpusIndexError
from ragengine.ingestion import (
    Chunker,
    DocumentIndexer,
    UnsupportedFileTypeError,
    index_paths,
    load_documents,
    normalize_text,
)


def _indexer() -> DocumentIndexer:
    return DocumentIndexer(
        Chunker(chunk_size=80, chunk_overlap=20),
        HashEmbeddingBackend(EmbeddingConfig(dim=32)),
        InMemoryCorpusIndex(),
    )


def test_load_documents_records_display_name(tmp_path: Path) -> None:
    document = tmp_path / "example.txt"
    document.write_text("Hello world\r\n\r\n\r\n\r\nSecond   paragraph", encoding="utf-8")

    (loaded,) = load_documents([document])

    assert loaded.metadata["display_name"] == "example.txt"
    assert loaded.source == str(document.resolve())
    assert loaded.content == "Hello world\n\nSecond paragraph"


def test_load_documents_rejects_binary_formats(tmp_path: Path) -> None:
    pdf = tmp_path / "paper.pdf"
    pdf.write_bytes(b"%PDF-1.7")

    with pytest.raises(UnsupportedFileTypeError):
        load_documents([pdf])


def test_normalize_text_keeps_paragraph_breaks() -> None:
    assert normalize_text("  a\t\tb\n\n\n\nc  ") == "a b\n\nc"


def test_index_paths_embeds_every_chunk(tmp_path: Path) -> None:
    document = tmp_path / "notes.md"
    document.write_text("Retrieval grounds answers. " * 10, encoding="utf-8")
    indexer = _indexer()

    chunks = index_paths(document, indexer=indexer)

    assert len(chunks) > 1
    assert all(chunk.embedding is not None for chunk in chunks)
    assert all(chunk.metadata["display_name"] == "notes.md" for chunk in chunks)


def test_reindexing_supersedes_previous_chunks(tmp_path: Path) -> None:
    document = tmp_path / "notes.txt"
    document.write_text("Retrieval grounds answers. " * 10, encoding="utf-8")
    indexer = _indexer()
    first = index_paths(document, indexer=indexer)

    document.write_text("Short replacement.", encoding="utf-8")
    second = index_paths(document, indexer=indexer)

    assert len(first) > 1
    assert len(second) == 1
    assert indexer._index.count() == 1


def test_failed_reindex_keeps_previous_chunks(tmp_path: Path) -> None:
    class FailingAfterFirstUpsert(InMemoryCorpusIndex):
        def __init__(self) -> None:
            super().__init__()
            self.upserts = 0

        def upsert(self, chunks) -> None:
            self.upserts += 1
            if self.upserts > 1:
                raise CorpusIndexError("index unavailable")
            super().upsert(chunks)

    index = FailingAfterFirstUpsert()
    indexer = DocumentIndexer(
        Chunker(chunk_size=80, chunk_overlap=20),
        HashEmbeddingBackend(EmbeddingConfig(dim=32)),
        index,
    )
    document = tmp_path / "notes.txt"
    document.write_text("Retrieval grounds answers. " * 10, encoding="utf-8")
    first = index_paths(document, indexer=indexer)

    document.write_text("Short replacement.", encoding="utf-8")
    with pytest.raises(CorpusIndexError):
        index_paths(document, indexer=indexer)

    assert index.count() == len(first)


def test_reindexing_keeps_chunk_ids_shared_with_new_version(tmp_path: Path) -> None:
    document = tmp_path / "notes.txt"
    document.write_text("Retrieval grounds answers. " * 10, encoding="utf-8")
    indexer = _indexer()
    index_paths(document, indexer=indexer)

    document.write_text("Retrieval grounds answers. " * 4, encoding="utf-8")
    second = index_paths(document, indexer=indexer)

    assert indexer._index.count() == len(second)
