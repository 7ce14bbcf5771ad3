"""Overlapping, boundary-aware text chunking."""

from __future__ import annotations

from typing import Iterator

from langchain_text_splitters import RecursiveCharacterTextSplitter

from ragengine.errors import InvalidConfiguration
from ragengine.models import Chunk, Document

# Largest semantic boundary first: paragraph, line, word, raw character.
SEPARATORS = ["\n\n", "\n", " ", ""]


class ChunkSequence:
    """Lazy, restartable sequence of chunks for one document.

    Every iteration re-derives the chunks from the document, so iterating twice
    yields identical sequences.
    """

    def __init__(self, chunker: "Chunker", document: Document) -> None:
        self._chunker = chunker
        self._document = document

    def __iter__(self) -> Iterator[Chunk]:
        return self._chunker._iter_chunks(self._document)

    @property
    def document(self) -> Document:
        return self._document


class Chunker:
    """Split documents into chunks of at most ``chunk_size`` characters.

    The text is first tiled into bodies of ``chunk_size - chunk_overlap``
    characters cut on the largest boundary available. Each chunk after the
    first is then prefixed with the ``chunk_overlap`` characters preceding its
    body, so the tail of chunk ``i`` and the head of chunk ``i + 1`` are the
    same text.
    """

    def __init__(self, chunk_size: int = 600, chunk_overlap: int = 100) -> None:
        if chunk_size <= 0 or chunk_overlap <= 0:
            raise InvalidConfiguration(
                f"chunk_size and chunk_overlap must be positive (got {chunk_size}, {chunk_overlap})"
            )
        if chunk_overlap >= chunk_size:
            raise InvalidConfiguration(
                f"chunk_overlap ({chunk_overlap}) must be smaller than chunk_size ({chunk_size})"
            )
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap
        self._splitter = RecursiveCharacterTextSplitter(
            chunk_size=chunk_size - chunk_overlap,
            chunk_overlap=0,
            separators=SEPARATORS,
            keep_separator="end",
            strip_whitespace=False,
            length_function=len,
        )

    def split(self, document: Document) -> ChunkSequence:
        return ChunkSequence(self, document)

    def _iter_chunks(self, document: Document) -> Iterator[Chunk]:
        text = document.content
        if not text.strip():
            return
        cursor = 0
        for ordinal, body in enumerate(self._splitter.split_text(text)):
            start = text.find(body, cursor)
            if start < 0:
                raise RuntimeError(f"splitter emitted text not present in document {document.document_id}")
            end = start + len(body)
            head = max(0, start - self.chunk_overlap) if ordinal else start
            cursor = end
            yield Chunk(
                chunk_id=f"{document.document_id}-{ordinal}",
                document_id=document.document_id,
                ordinal=ordinal,
                text=text[head:end],
                metadata={
                    **document.metadata,
                    "document_id": document.document_id,
                    "source": document.source,
                    "start_index": head,
                    "overlap": start - head,
                },
            )
