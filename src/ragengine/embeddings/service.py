"""Embedding backends for ragengine."""

from __future__ import annotations

import hashlib
import logging
import math
import re
from dataclasses import dataclass
from typing import Protocol, Sequence, Tuple

from langchain_community.embeddings import HuggingFaceEmbeddings
from langchain_core.embeddings import Embeddings as LangChainEmbeddings

LOGGER = logging.getLogger(__name__)

_TOKEN_PATTERN = re.compile(r"\w+", re.UNICODE)


@dataclass(frozen=True)
class EmbeddingConfig:
    """Configuration for embedding backends."""

    model: str = "BAAI/bge-small-en-v1.5"
    dim: int = 384
    use_model: bool = False
    device: str | None = None
    normalize: bool = True
    cache_folder: str | None = None


class EmbeddingService(Protocol):
    """Protocol describing the embedding capability consumed by the core."""

    def embed(self, text: str) -> Tuple[float, ...]:
        """Return the embedding vector for a single text."""

    def embed_many(self, texts: Sequence[str]) -> Sequence[Tuple[float, ...]]:
        """Return embedding vectors for several texts, in order."""


def _normalize(vector: Sequence[float]) -> Tuple[float, ...]:
    norm = math.sqrt(sum(value * value for value in vector))
    if not norm:
        return tuple(vector)
    return tuple(value / norm for value in vector)


class HashEmbeddingBackend:
    """Deterministic bag-of-words embedding used for tests and offline environments.

    Each lower-cased word token is hashed into one of ``dim`` buckets, so texts
    sharing vocabulary end up close under cosine similarity.
    """

    def __init__(self, config: EmbeddingConfig | None = None) -> None:
        self._config = config or EmbeddingConfig()

    def _bucket(self, token: str) -> int:
        digest = hashlib.sha256(token.encode("utf-8")).digest()
        return int.from_bytes(digest[:8], "big") % self._config.dim

    def embed(self, text: str) -> Tuple[float, ...]:
        vector = [0.0] * self._config.dim
        for token in _TOKEN_PATTERN.findall(text.lower()):
            vector[self._bucket(token)] += 1.0
        if self._config.normalize:
            return _normalize(vector)
        return tuple(vector)

    def embed_many(self, texts: Sequence[str]) -> Sequence[Tuple[float, ...]]:
        return [self.embed(text) for text in texts]


class HuggingFaceEmbeddingBackend:
    """Embedding backend that optionally loads a sentence-embedding model via LangChain."""

    def __init__(self, config: EmbeddingConfig | None = None) -> None:
        self._config = config or EmbeddingConfig()
        self._delegate = HashEmbeddingBackend(self._config)
        self._client: LangChainEmbeddings | None = None
        if not self._config.use_model:
            LOGGER.info("HuggingFaceEmbeddingBackend running in hash-only mode.")
            return
        try:
            model_kwargs = {"device": self._config.device} if self._config.device else {}
            self._client = HuggingFaceEmbeddings(
                model_name=self._config.model,
                model_kwargs=model_kwargs,
                encode_kwargs={"normalize_embeddings": self._config.normalize},
                cache_folder=self._config.cache_folder,
            )
            LOGGER.info("Loaded embedding model %s", self._config.model)
        except Exception as exc:  # pragma: no cover - optional model download/runtime guard
            LOGGER.warning("Falling back to hash embeddings: %s", exc)
            self._client = None

    @property
    def uses_model(self) -> bool:
        return self._client is not None

    def embed(self, text: str) -> Tuple[float, ...]:
        if self._client is None:
            return self._delegate.embed(text)
        return self._finish(self._client.embed_query(text))

    def embed_many(self, texts: Sequence[str]) -> Sequence[Tuple[float, ...]]:
        if not texts:
            return []
        if self._client is None:
            return self._delegate.embed_many(texts)
        vectors = self._client.embed_documents(list(texts))
        if len(vectors) != len(texts):
            LOGGER.error("Embedding backend returned %d vectors for %d texts", len(vectors), len(texts))
            raise ValueError("Mismatch between number of texts and embedding vectors")
        if vectors and len(vectors[0]) != self._config.dim:
            LOGGER.warning(
                "Embedding dim mismatch: configured=%d, actual=%d",
                self._config.dim,
                len(vectors[0]),
            )
        return [self._finish(vector) for vector in vectors]

    def _finish(self, vector: Sequence[float]) -> Tuple[float, ...]:
        if not self._config.normalize:
            return tuple(float(value) for value in vector)
        return _normalize([float(value) for value in vector])
