"""Document indexing service for ragengine."""

from __future__ import annotations

import re
import time
import unicodedata
from pathlib import Path
from typing import List, Sequence

from langchain_community.document_loaders import TextLoader

from ragengine.embeddings.service import EmbeddingService
from ragengine.embeddings.store import CorpusIndex
from ragengine.ingestion.chunker import Chunker
from ragengine.metrics.observability import PipelineMetrics, get_logger
from ragengine.models import Chunk, Document


class IngestionError(RuntimeError):
    """Raised when a document cannot be loaded."""


class UnsupportedFileTypeError(IngestionError):
    """Raised when a path is not a plain-text document."""


TEXT_SUFFIXES = frozenset({".txt", ".md", ".markdown", ".rst"})


def normalize_text(raw: str) -> str:
    """NFKC-normalise text and tidy whitespace without losing paragraph breaks."""
    normalized = unicodedata.normalize("NFKC", raw)
    normalized = normalized.replace("\u00a0", " ").replace("\r\n", "\n").replace("\r", "\n")
    normalized = re.sub(r"[ \t\f\v]+", " ", normalized)
    normalized = re.sub(r"\n{3,}", "\n\n", normalized)
    return normalized.strip()


def load_documents(paths: Sequence[Path], *, encoding: str = "utf-8") -> List[Document]:
    """Load plain-text documents. Other formats belong to external loaders."""

    documents: List[Document] = []
    for path in paths:
        path = Path(path)
        suffix = path.suffix.lower()
        if suffix not in TEXT_SUFFIXES:
            raise UnsupportedFileTypeError(f"Unsupported document type: {suffix or '<none>'}")
        try:
            loaded = TextLoader(str(path), encoding=encoding).load()
        except Exception as exc:  # pragma: no cover - loader specific errors
            raise IngestionError(f"Failed to load {path}: {exc}") from exc
        content = "\n\n".join(normalize_text(item.page_content) for item in loaded)
        documents.append(Document.from_text(content, str(path.resolve()), display_name=path.name))
    return documents


class DocumentIndexer:
    """Chunk, embed and index documents, replacing earlier versions."""

    _logger = get_logger("ingestion")

    def __init__(self, chunker: Chunker, embedder: EmbeddingService, index: CorpusIndex) -> None:
        self._chunker = chunker
        self._embedder = embedder
        self._index = index

    def index_document(self, document: Document) -> Sequence[Chunk]:
        start = time.perf_counter()
        chunks = list(self._chunker.split(document))
        vectors = self._embedder.embed_many([chunk.text for chunk in chunks]) if chunks else []
        if len(vectors) != len(chunks):
            raise IngestionError(
                f"Embedding service returned {len(vectors)} vectors for {len(chunks)} chunks"
            )
        embedded = [chunk.with_embedding(vector) for chunk, vector in zip(chunks, vectors)]
        if embedded:
            self._index.upsert(embedded)
        self._index.delete_document(document.document_id, keep=[chunk.chunk_id for chunk in embedded])

        duration = time.perf_counter() - start
        PipelineMetrics.observe_ingestion(duration, len(embedded))
        self._logger.info(
            "ingestion.complete",
            document_id=document.document_id,
            source=document.source,
            chunk_count=len(embedded),
            duration_seconds=duration,
        )
        return embedded

    def index_documents(self, documents: Sequence[Document]) -> Sequence[Chunk]:
        chunks: List[Chunk] = []
        for document in documents:
            chunks.extend(self.index_document(document))
        return chunks


def index_paths(*paths: Path, indexer: DocumentIndexer) -> Sequence[Chunk]:
    """Convenience helper for tests and ad-hoc ingestion."""

    return indexer.index_documents(load_documents(list(paths)))
