"""Structured logging and Prometheus metrics for ragengine."""

from __future__ import annotations

import logging
import os
from typing import Iterable

import structlog
from prometheus_client import Counter, Histogram

_configured = False


def configure_logging(level: int | None = None, *, json_output: bool = True) -> None:
    """Route structlog through the stdlib root logger; idempotent.

    ``RAGENGINE_LOG_LEVEL`` sets the level when ``level`` is not given.
    """
    global _configured  # noqa: PLW0603 - module-level guard
    if _configured:
        return
    if level is None:
        level = logging.getLevelName(os.environ.get("RAGENGINE_LOG_LEVEL", "INFO").upper())
        if not isinstance(level, int):
            level = logging.INFO
    logging.basicConfig(level=level, format="%(message)s")
    renderer = structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer()
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    _configured = True


def bind_correlation_id(correlation_id: str) -> str | None:
    """Attach ``correlation_id`` to every log line emitted from the current context.

    Returns the id it replaced so callers sharing a context can restore it.
    """
    previous = current_correlation_id()
    structlog.contextvars.bind_contextvars(correlation_id=correlation_id)
    return previous


def restore_correlation_id(previous: str | None) -> None:
    if previous is None:
        structlog.contextvars.unbind_contextvars("correlation_id")
    else:
        structlog.contextvars.bind_contextvars(correlation_id=previous)


def current_correlation_id() -> str | None:
    return structlog.contextvars.get_contextvars().get("correlation_id")


def get_logger(name: str = "ragengine") -> structlog.BoundLogger:
    configure_logging()
    return structlog.get_logger(name)


def _clamp_score(score: float) -> float:
    if score < 0.0:
        return 0.0
    if score > 1.0:
        return 1.0
    return score


class PipelineMetrics:
    """Prometheus metrics for pipeline stages."""

    ingestion_latency = Histogram(
        "ragengine_ingestion_duration_seconds",
        "Time spent chunking, embedding and indexing a document.",
        buckets=(0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0),
    )
    ingestion_chunks = Histogram(
        "ragengine_ingestion_chunk_count",
        "Chunks produced per indexed document.",
        buckets=(0, 1, 5, 10, 20, 40, 80),
    )
    retrieval_latency = Histogram(
        "ragengine_retrieval_duration_seconds",
        "Time spent retrieving context chunks.",
        buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 2.0, 5.0),
    )
    retrieved_chunk_count = Histogram(
        "ragengine_retrieved_chunk_count",
        "Number of chunks returned by retrieval.",
        buckets=(0, 1, 2, 3, 5, 8, 13),
    )
    retrieval_failures = Counter(
        "ragengine_retrieval_failures_total",
        "Retrievals that degraded to an empty context.",
        ["reason"],
    )
    grounding_score = Histogram(
        "ragengine_grounding_score",
        "Similarity score of retrieved chunks.",
        buckets=(0.0, 0.25, 0.5, 0.75, 1.0),
    )
    cache_lookups = Counter(
        "ragengine_cache_lookups_total",
        "Answer cache lookups by outcome.",
        ["outcome"],
    )
    cache_write_errors = Counter(
        "ragengine_cache_write_errors_total",
        "Answer cache writes that failed and were dropped.",
    )
    generation_latency = Histogram(
        "ragengine_generation_duration_seconds",
        "Time spent generating answers, including retries and fallback.",
        buckets=(0.05, 0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0),
    )
    provider_attempts = Counter(
        "ragengine_provider_attempts_total",
        "Generation attempts by provider and outcome.",
        ["provider_id", "outcome"],
    )
    provider_tokens = Counter(
        "ragengine_provider_tokens_total",
        "Tokens consumed by provider and direction.",
        ["provider_id", "direction"],
    )
    provider_cost = Counter(
        "ragengine_provider_cost_total",
        "Estimated monetary cost by provider.",
        ["provider_id"],
    )
    request_outcomes = Counter(
        "ragengine_request_outcomes_total",
        "Requests by terminal state and error kind.",
        ["state", "kind"],
    )

    @classmethod
    def observe_ingestion(cls, duration_seconds: float, chunk_count: int) -> None:
        cls.ingestion_latency.observe(duration_seconds)
        cls.ingestion_chunks.observe(chunk_count)

    @classmethod
    def observe_retrieval(
        cls,
        duration_seconds: float,
        chunk_count: int,
        scores: Iterable[float],
    ) -> None:
        cls.retrieval_latency.observe(duration_seconds)
        cls.retrieved_chunk_count.observe(chunk_count)
        for score in scores:
            cls.grounding_score.observe(_clamp_score(score))

    @classmethod
    def observe_retrieval_failure(cls, reason: str) -> None:
        cls.retrieval_failures.labels(reason=reason).inc()

    @classmethod
    def observe_cache_lookup(cls, outcome: str) -> None:
        cls.cache_lookups.labels(outcome=outcome).inc()

    @classmethod
    def observe_cache_write_error(cls) -> None:
        cls.cache_write_errors.inc()

    @classmethod
    def observe_generation(cls, duration_seconds: float) -> None:
        cls.generation_latency.observe(duration_seconds)

    @classmethod
    def observe_provider_attempt(cls, provider_id: str, outcome: str) -> None:
        cls.provider_attempts.labels(provider_id=provider_id, outcome=outcome).inc()

    @classmethod
    def observe_cost(cls, provider_id: str, input_tokens: int, output_tokens: int, cost: float) -> None:
        cls.provider_tokens.labels(provider_id=provider_id, direction="input").inc(input_tokens)
        cls.provider_tokens.labels(provider_id=provider_id, direction="output").inc(output_tokens)
        cls.provider_cost.labels(provider_id=provider_id).inc(cost)

    @classmethod
    def observe_request(cls, state: str, kind: str = "") -> None:
        cls.request_outcomes.labels(state=state, kind=kind).inc()


__all__ = [
    "PipelineMetrics",
    "bind_correlation_id",
    "configure_logging",
    "current_correlation_id",
    "get_logger",
    "restore_correlation_id",
]
