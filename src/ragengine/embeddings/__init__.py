"""Embedding services and corpus indexes."""

from .service import EmbeddingConfig, EmbeddingService, HashEmbeddingBackend, HuggingFaceEmbeddingBackend
from .store import ChromaCorpusIndex, CorpusIndex, InMemoryCorpusIndex, cosine_similarity

__all__ = [
    "ChromaCorpusIndex",
    "CorpusIndex",
    "EmbeddingConfig",
    "EmbeddingService",
    "HashEmbeddingBackend",
    "HuggingFaceEmbeddingBackend",
    "InMemoryCorpusIndex",
    "cosine_similarity",
]
