"""Retrieval on top of the embedding service and corpus index."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Protocol, Sequence

from ragengine.embeddings.service import EmbeddingService
from ragengine.embeddings.store import CorpusIndex
from ragengine.metrics.observability import PipelineMetrics, get_logger
from ragengine.models import RetrievedChunk, RetrievedContext

TIMEOUT = "timeout"
ERROR = "error"


@dataclass(frozen=True)
class RetrievalConfig:
    """Configuration for retrieval."""

    top_k: int = 5
    max_top_k: int | None = 10
    timeout_seconds: float = 2.0


class Retriever(Protocol):
    """Retrieve ranked context for a question."""

    async def retrieve(
        self,
        question: str,
        *,
        top_k: int | None = None,
        timeout: float | None = None,
    ) -> RetrievedContext:
        """Return the top-k chunks, or an empty degraded context on failure."""


class VectorRetriever:
    """Embeds the question and queries the corpus index.

    Results are returned as ranked by the index. A timeout or any index or
    embedding failure yields an empty context with ``failure`` set; the caller
    decides whether answering without grounding is acceptable.
    """

    _logger = get_logger("retrieval")

    def __init__(self, embedder: EmbeddingService, index: CorpusIndex, config: RetrievalConfig | None = None) -> None:
        self._embedder = embedder
        self._index = index
        self._config = config or RetrievalConfig()

    async def retrieve(
        self,
        question: str,
        *,
        top_k: int | None = None,
        timeout: float | None = None,
    ) -> RetrievedContext:
        limit = self._limit(top_k)
        timeout = self._config.timeout_seconds if timeout is None else timeout
        start = time.perf_counter()
        try:
            items = await asyncio.wait_for(asyncio.to_thread(self._search, question, limit), timeout)
            context = RetrievedContext(items=tuple(items[:limit]))
        except asyncio.TimeoutError:
            PipelineMetrics.observe_retrieval_failure(TIMEOUT)
            self._logger.warning(
                "retrieval.timeout",
                condition="RetrievalTimeout",
                timeout_seconds=timeout,
                top_k=limit,
            )
            return RetrievedContext.empty(TIMEOUT)
        except Exception as exc:
            PipelineMetrics.observe_retrieval_failure(ERROR)
            self._logger.warning("retrieval.failed", error=str(exc), error_type=type(exc).__name__, top_k=limit)
            return RetrievedContext.empty(ERROR)

        duration = time.perf_counter() - start
        PipelineMetrics.observe_retrieval(duration, len(context), (item.score for item in context))
        self._logger.info(
            "retrieval.complete",
            chunk_count=len(context),
            duration_seconds=duration,
            top_k=limit,
        )
        return context

    def _search(self, question: str, limit: int) -> Sequence[RetrievedChunk]:
        vector = self._embedder.embed(question)
        return list(self._index.query(vector, limit))

    def _limit(self, top_k: int | None) -> int:
        limit = top_k or self._config.top_k
        if self._config.max_top_k:
            limit = min(limit, self._config.max_top_k)
        return max(1, limit)


class LexicalReranker:
    """Retriever decorator blending vector scores with query-token overlap.

    Pulls ``candidate_pool`` candidates from the wrapped retriever, re-scores
    them and keeps the best ``top_k``. Degraded contexts pass through untouched.
    """

    def __init__(self, inner: Retriever, *, weight: float = 0.35, candidate_pool: int = 10) -> None:
        self._inner = inner
        self._weight = self._clamp_weight(weight)
        self._candidate_pool = candidate_pool

    async def retrieve(
        self,
        question: str,
        *,
        top_k: int | None = None,
        timeout: float | None = None,
    ) -> RetrievedContext:
        pool = max(top_k or 0, self._candidate_pool)
        context = await self._inner.retrieve(question, top_k=pool, timeout=timeout)
        if context.degraded or context.is_empty:
            return context
        tokens = set(question.lower().split())
        rescored = [
            RetrievedChunk(
                chunk=item.chunk,
                score=(1.0 - self._weight) * item.score + self._weight * _token_overlap_score(tokens, item.chunk.text),
            )
            for item in context
        ]
        rescored.sort(key=lambda item: (-item.score, item.chunk.chunk_id))
        limit = top_k or len(rescored)
        return RetrievedContext(items=tuple(rescored[:limit]))

    @staticmethod
    def _clamp_weight(weight: float) -> float:
        if weight < 0.0:
            return 0.0
        if weight > 1.0:
            return 1.0
        return weight


def _token_overlap_score(query_tokens: set[str], text: str) -> float:
    tokens = set(text.lower().split())
    if not tokens:
        return 0.0
    overlap = len(query_tokens.intersection(tokens))
    return overlap / max(len(query_tokens), 1)
