"""Corpus index implementations."""

from __future__ import annotations

import json
import math
import threading
from pathlib import Path
from typing import Dict, Iterable, Mapping, MutableMapping, Protocol, Sequence

import chromadb
from chromadb.api import ClientAPI

from ragengine.errors import CorpusIndexError
from ragengine.models import Chunk, RetrievedChunk


class CorpusIndex(Protocol):
    """Capability set the core needs from a vector similarity store.

    Implementations must be safe for concurrent use; the orchestrator never
    locks around them.
    """

    def upsert(self, chunks: Sequence[Chunk]) -> None:
        """Insert or replace chunks by id. Raises ``CorpusIndexError``."""

    def query(self, embedding: Sequence[float], top_k: int) -> Sequence[RetrievedChunk]:
        """Return at most ``top_k`` chunks ordered by descending score."""

    def delete_document(self, document_id: str, keep: Iterable[str] = ()) -> None:
        """Remove the chunks of ``document_id`` whose ids are not in ``keep``."""

    def count(self) -> int:
        """Return total number of stored chunks."""


def _require_embedding(chunk: Chunk) -> Sequence[float]:
    if chunk.embedding is None:
        raise CorpusIndexError(f"Chunk {chunk.chunk_id} has no embedding")
    return chunk.embedding


def cosine_similarity(left: Sequence[float], right: Sequence[float]) -> float:
    if len(left) != len(right):
        raise CorpusIndexError(f"Embedding dimension mismatch: {len(left)} != {len(right)}")
    dot = sum(a * b for a, b in zip(left, right))
    norm = math.sqrt(sum(a * a for a in left)) * math.sqrt(sum(b * b for b in right))
    if not norm:
        return 0.0
    return dot / norm


class InMemoryCorpusIndex:
    """Brute-force cosine index kept in process memory."""

    def __init__(self) -> None:
        self._chunks: Dict[str, Chunk] = {}
        self._lock = threading.Lock()

    def upsert(self, chunks: Sequence[Chunk]) -> None:
        for chunk in chunks:
            _require_embedding(chunk)
        with self._lock:
            for chunk in chunks:
                self._chunks[chunk.chunk_id] = chunk

    def query(self, embedding: Sequence[float], top_k: int) -> Sequence[RetrievedChunk]:
        if top_k <= 0:
            return []
        with self._lock:
            stored = list(self._chunks.values())
        scored = [
            RetrievedChunk(chunk=chunk, score=cosine_similarity(embedding, _require_embedding(chunk)))
            for chunk in stored
        ]
        scored.sort(key=lambda item: (-item.score, item.chunk.chunk_id))
        return scored[:top_k]

    def delete_document(self, document_id: str, keep: Iterable[str] = ()) -> None:
        kept = set(keep)
        with self._lock:
            stale = [
                chunk_id
                for chunk_id, chunk in self._chunks.items()
                if chunk.document_id == document_id and chunk_id not in kept
            ]
            for chunk_id in stale:
                del self._chunks[chunk_id]

    def count(self) -> int:
        with self._lock:
            return len(self._chunks)


class ChromaCorpusIndex:
    """Chroma-backed corpus index using caller-supplied embeddings."""

    def __init__(
        self,
        collection_name: str = "ragengine",
        *,
        client: ClientAPI | None = None,
        persist_directory: str | Path | None = None,
    ) -> None:
        if client is not None:
            self._client = client
        elif persist_directory is not None:
            self._client = chromadb.PersistentClient(path=str(persist_directory))
        else:
            self._client = chromadb.EphemeralClient()
        self._collection = self._client.get_or_create_collection(
            name=collection_name,
            metadata={"hnsw:space": "cosine"},
        )

    def upsert(self, chunks: Sequence[Chunk]) -> None:
        if not chunks:
            return
        try:
            self._collection.upsert(
                ids=[chunk.chunk_id for chunk in chunks],
                documents=[chunk.text for chunk in chunks],
                embeddings=[list(_require_embedding(chunk)) for chunk in chunks],
                metadatas=[self._serialize_chunk(chunk) for chunk in chunks],
            )
        except CorpusIndexError:
            raise
        except Exception as exc:
            raise CorpusIndexError(f"Chroma upsert failed: {exc}") from exc

    def query(self, embedding: Sequence[float], top_k: int) -> Sequence[RetrievedChunk]:
        if top_k <= 0:
            return []
        try:
            available = self._collection.count()
            if not available:
                return []
            results = self._collection.query(
                query_embeddings=[list(embedding)],
                n_results=min(top_k, available),
                include=["documents", "metadatas", "distances"],
            )
        except Exception as exc:
            raise CorpusIndexError(f"Chroma query failed: {exc}") from exc
        retrieved = self._deserialize_results(results)
        retrieved.sort(key=lambda item: (-item.score, item.chunk.chunk_id))
        return retrieved[:top_k]

    def delete_document(self, document_id: str, keep: Iterable[str] = ()) -> None:
        kept = set(keep)
        try:
            if not kept:
                self._collection.delete(where={"document_id": document_id})
                return
            existing = self._collection.get(where={"document_id": document_id}, include=[])
            stale = [chunk_id for chunk_id in existing["ids"] if chunk_id not in kept]
            if stale:
                self._collection.delete(ids=stale)
        except Exception as exc:
            raise CorpusIndexError(f"Chroma delete failed: {exc}") from exc

    def count(self) -> int:
        try:
            return int(self._collection.count())
        except Exception as exc:
            raise CorpusIndexError(f"Chroma count failed: {exc}") from exc

    def _serialize_chunk(self, chunk: Chunk) -> MutableMapping[str, object]:
        return {
            "document_id": chunk.document_id,
            "ordinal": chunk.ordinal,
            "source": chunk.source,
            "chunk_metadata": self._dumps(chunk.metadata),
        }

    def _deserialize_results(self, results: Mapping[str, object]) -> list[RetrievedChunk]:
        ids = self._first(results.get("ids", []))
        documents = self._first(results.get("documents", []))
        metadatas = self._first(results.get("metadatas", []))
        distances = self._first(results.get("distances", []))
        retrieved: list[RetrievedChunk] = []
        for chunk_id, document, metadata, distance in zip(ids, documents, metadatas, distances, strict=False):
            metadata = metadata or {}
            chunk = Chunk(
                chunk_id=str(chunk_id),
                document_id=str(metadata.get("document_id", "")),
                ordinal=int(metadata.get("ordinal", 0)),
                text=document or "",
                metadata=self._loads_dict(metadata.get("chunk_metadata")),
            )
            retrieved.append(RetrievedChunk(chunk=chunk, score=1.0 - float(distance)))
        return retrieved

    @staticmethod
    def _first(value: object) -> Iterable:
        if isinstance(value, list):
            return value[0] if value else []
        return []

    @staticmethod
    def _dumps(value: object) -> str:
        try:
            return json.dumps(value, default=str)
        except TypeError:
            return json.dumps({}, default=str)

    @staticmethod
    def _loads_dict(value: object) -> Dict[str, object]:
        if isinstance(value, str) and value:
            try:
                loaded = json.loads(value)
                if isinstance(loaded, dict):
                    return loaded
            except json.JSONDecodeError:
                return {}
        if isinstance(value, Mapping):
            return dict(value)
        return {}
