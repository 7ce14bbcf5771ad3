"""Shared domain models used across the ragengine pipeline."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Mapping, Sequence
from uuid import NAMESPACE_URL, uuid5


@dataclass(frozen=True)
class Document:
    """Immutable unit of source text."""

    document_id: str
    content: str
    metadata: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_text(cls, content: str, source: str, **metadata: Any) -> "Document":
        document_id = uuid5(NAMESPACE_URL, source).hex
        return cls(document_id=document_id, content=content, metadata={"source": source, **metadata})

    @property
    def source(self) -> str:
        return str(self.metadata.get("source", self.document_id))


@dataclass(frozen=True)
class Chunk:
    """Contiguous slice of a document's text, optionally carrying its embedding."""

    chunk_id: str
    document_id: str
    ordinal: int
    text: str
    metadata: Mapping[str, Any] = field(default_factory=dict)
    embedding: tuple[float, ...] | None = None

    @property
    def source(self) -> str:
        return str(self.metadata.get("source", self.document_id))

    def with_embedding(self, embedding: Sequence[float]) -> "Chunk":
        return replace(self, embedding=tuple(float(value) for value in embedding))


@dataclass(frozen=True)
class RetrievedChunk:
    """Chunk returned from the corpus index together with its relevance."""

    chunk: Chunk
    score: float


@dataclass(frozen=True)
class RetrievedContext:
    """Ranked retrieval result, best match first.

    ``failure`` is set when retrieval degraded to an empty result because the
    index or the embedding service timed out or failed.
    """

    items: tuple[RetrievedChunk, ...] = ()
    failure: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "items", tuple(self.items))
        for previous, current in zip(self.items, self.items[1:]):
            if current.score > previous.score:
                raise ValueError("RetrievedContext scores must be non-increasing")

    @classmethod
    def empty(cls, failure: str | None = None) -> "RetrievedContext":
        return cls(items=(), failure=failure)

    @property
    def is_empty(self) -> bool:
        return not self.items

    @property
    def degraded(self) -> bool:
        return self.failure is not None

    def __len__(self) -> int:
        return len(self.items)

    def __iter__(self):
        return iter(self.items)


@dataclass(frozen=True)
class Source:
    """Condensed provenance of a chunk used to ground an answer."""

    chunk_id: str
    document_id: str
    source: str
    ordinal: int
    score: float

    @classmethod
    def from_retrieved(cls, retrieved: RetrievedChunk) -> "Source":
        chunk = retrieved.chunk
        return cls(
            chunk_id=chunk.chunk_id,
            document_id=chunk.document_id,
            source=chunk.source,
            ordinal=chunk.ordinal,
            score=retrieved.score,
        )


@dataclass(frozen=True)
class GeneratedText:
    """Raw output of a single provider call."""

    text: str
    input_tokens: int
    output_tokens: int
    provider_id: str


@dataclass(frozen=True)
class Answer:
    """Grounded answer with provenance and token/cost accounting."""

    text: str
    sources: tuple[Source, ...]
    input_tokens: int
    output_tokens: int
    cost: float
    provider_id: str
    query_id: str
    cached: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "sources", tuple(self.sources))

    def as_cached(self) -> "Answer":
        return replace(self, cached=True)

    def to_dict(self) -> dict[str, Any]:
        return {
            "text": self.text,
            "sources": [
                {
                    "chunk_id": source.chunk_id,
                    "document_id": source.document_id,
                    "source": source.source,
                    "ordinal": source.ordinal,
                    "score": source.score,
                }
                for source in self.sources
            ],
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "cost": self.cost,
            "provider_id": self.provider_id,
            "query_id": self.query_id,
            "cached": self.cached,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Answer":
        sources = tuple(
            Source(
                chunk_id=str(item["chunk_id"]),
                document_id=str(item["document_id"]),
                source=str(item["source"]),
                ordinal=int(item["ordinal"]),
                score=float(item["score"]),
            )
            for item in payload.get("sources", [])
        )
        return cls(
            text=str(payload["text"]),
            sources=sources,
            input_tokens=int(payload["input_tokens"]),
            output_tokens=int(payload["output_tokens"]),
            cost=float(payload["cost"]),
            provider_id=str(payload["provider_id"]),
            query_id=str(payload["query_id"]),
            cached=bool(payload.get("cached", False)),
        )


@dataclass(frozen=True)
class AnswerOptions:
    """Per-request options accepted by ``QueryService.answer``.

    ``deadline`` is in seconds; ``None`` falls back to the configured request
    deadline. ``require_grounding`` overrides the configured policy for
    answering without retrieved context. Setting ``cancel_event`` cancels the
    request cooperatively.
    """

    provider_hint: str | None = None
    use_cache: bool = True
    top_k: int | None = None
    deadline: float | None = None
    require_grounding: bool | None = None
    cancel_event: asyncio.Event | None = None


@dataclass(frozen=True)
class CostEvent:
    """Token/cost record emitted to the cost ledger after a generation."""

    provider_id: str
    input_tokens: int
    output_tokens: int
    cost: float
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
