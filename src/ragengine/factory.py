"""Wiring of engine components from ``Settings``."""

from __future__ import annotations

from dataclasses import dataclass

import chromadb

from ragengine.cache import AnswerCache, CacheBackend, InMemoryCacheBackend, SQLiteCacheBackend
from ragengine.config import Settings, get_settings
from ragengine.embeddings import (
    ChromaCorpusIndex,
    CorpusIndex,
    EmbeddingConfig,
    EmbeddingService,
    HuggingFaceEmbeddingBackend,
    InMemoryCorpusIndex,
)
from ragengine.generation import BackoffPolicy, ProviderChain, build_providers
from ragengine.ingestion import Chunker, DocumentIndexer
from ragengine.metrics.observability import configure_logging, get_logger
from ragengine.retrieval import LexicalReranker, RetrievalConfig, Retriever, VectorRetriever
from ragengine.services import CostLedger, LoggingCostLedger, PromptBuilder, PromptBuilderConfig, QueryConfig, QueryService


@dataclass(frozen=True)
class EngineDependencies:
    settings: Settings
    chunker: Chunker
    embedder: EmbeddingService
    index: CorpusIndex
    indexer: DocumentIndexer
    retriever: Retriever
    cache: AnswerCache | None
    providers: ProviderChain
    ledger: CostLedger
    query_service: QueryService

    def start(self) -> None:
        """Start background work; must be called from a running event loop."""
        interval = self.settings.cache_sweep_interval_seconds
        if self.cache is not None and interval:
            self.cache.start_sweeper(interval)

    async def aclose(self) -> None:
        await self.query_service.aclose()
        if self.cache is not None:
            self.cache.backend.close()


def _build_index(settings: Settings) -> CorpusIndex:
    if settings.index_backend == "memory":
        return InMemoryCorpusIndex()
    chroma_client = None
    if settings.chroma_host:
        chroma_client = chromadb.HttpClient(
            host=settings.chroma_host,
            port=settings.chroma_port or 8000,
            ssl=settings.chroma_ssl,
        )
    return ChromaCorpusIndex(
        collection_name=settings.chroma_collection,
        client=chroma_client,
        persist_directory=None if chroma_client else settings.chroma_persist_dir,
    )


def _build_cache(settings: Settings) -> AnswerCache | None:
    backend: CacheBackend
    if settings.cache_backend == "none":
        return None
    if settings.cache_backend == "sqlite":
        backend = SQLiteCacheBackend(settings.cache_path)
    else:
        backend = InMemoryCacheBackend()
    return AnswerCache(
        backend,
        default_ttl=settings.cache_ttl_seconds,
        timeout=settings.cache_timeout_seconds,
    )


def build_dependencies(settings: Settings | None = None, *, ledger: CostLedger | None = None) -> EngineDependencies:
    settings = settings or get_settings()
    configure_logging()

    chunker = Chunker(chunk_size=settings.chunk_size, chunk_overlap=settings.chunk_overlap)
    embedder = HuggingFaceEmbeddingBackend(
        EmbeddingConfig(
            model=settings.embedding_model,
            dim=settings.embedding_dim,
            use_model=settings.use_model_embeddings,
            normalize=True,
        ),
    )
    index = _build_index(settings)
    indexer = DocumentIndexer(chunker, embedder, index)

    retriever: Retriever = VectorRetriever(
        embedder,
        index,
        RetrievalConfig(
            top_k=settings.top_k,
            max_top_k=settings.max_top_k,
            timeout_seconds=settings.retrieval_timeout_seconds,
        ),
    )
    if settings.rerank_lexical:
        retriever = LexicalReranker(
            retriever,
            weight=settings.lexical_blend_weight,
            candidate_pool=settings.max_top_k,
        )

    providers = ProviderChain(
        build_providers(settings.ordered_providers),
        BackoffPolicy(
            max_retries=settings.max_retries,
            base_delay=settings.backoff_base_seconds,
            max_delay=settings.backoff_max_seconds,
        ),
        timeout=settings.provider_timeout_seconds,
    )
    cache = _build_cache(settings)
    ledger = ledger or LoggingCostLedger()
    query_service = QueryService(
        retriever,
        providers,
        cache=cache,
        prompt_builder=PromptBuilder(PromptBuilderConfig(system_prompt=settings.system_prompt)),
        ledger=ledger,
        config=QueryConfig(
            top_k=settings.top_k,
            allow_ungrounded=settings.allow_ungrounded_answers,
            retrieval_timeout=settings.retrieval_timeout_seconds,
            request_deadline=settings.request_deadline_seconds,
            max_new_tokens=settings.max_new_tokens,
            cache_ttl=settings.cache_ttl_seconds,
        ),
    )
    get_logger("factory").info(
        "engine.configured",
        index_backend=settings.index_backend,
        cache_backend=settings.cache_backend,
        providers=providers.provider_ids,
    )
    return EngineDependencies(
        settings=settings,
        chunker=chunker,
        embedder=embedder,
        index=index,
        indexer=indexer,
        retriever=retriever,
        cache=cache,
        providers=providers,
        ledger=ledger,
        query_service=query_service,
    )


__all__ = ["EngineDependencies", "build_dependencies"]
