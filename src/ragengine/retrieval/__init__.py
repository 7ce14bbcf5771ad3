"""Retrieval components."""

from .service import LexicalReranker, RetrievalConfig, Retriever, VectorRetriever

__all__ = ["LexicalReranker", "RetrievalConfig", "Retriever", "VectorRetriever"]
