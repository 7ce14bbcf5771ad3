"""Document chunking and indexing."""

from .chunker import Chunker, ChunkSequence
from .service import (
    DocumentIndexer,
    IngestionError,
    UnsupportedFileTypeError,
    index_paths,
    load_documents,
    normalize_text,
)

__all__ = [
    "ChunkSequence",
    "Chunker",
    "DocumentIndexer",
    "IngestionError",
    "UnsupportedFileTypeError",
    "index_paths",
    "load_documents",
    "normalize_text",
]
