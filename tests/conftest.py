from __future__ import annotations

import asyncio
from types import SimpleNamespace
from typing import AsyncIterator, Sequence

import pytest

from ragengine.cache import AnswerCache, InMemoryCacheBackend
from ragengine.config import ProviderSettings
from ragengine.embeddings import EmbeddingConfig, HashEmbeddingBackend, InMemoryCorpusIndex
from ragengine.errors import ProviderError
from ragengine.generation import BackoffPolicy, GenerationProvider, ProviderChain, TemplateProvider
from ragengine.ingestion import Chunker, DocumentIndexer
from ragengine.models import Document, GeneratedText
from ragengine.retrieval import VectorRetriever
from ragengine.services import InMemoryCostLedger, QueryConfig, QueryService


class FakeClock:
    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Stand-in for ``asyncio.sleep`` that records backoff delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class ScriptedProvider(GenerationProvider):
    """Provider with scripted failures, latency and output."""

    kind = "scripted"

    def __init__(
        self,
        provider_id: str,
        *,
        text: str = "scripted answer",
        fail_with: type[ProviderError] | None = None,
        failures: Sequence[ProviderError] = (),
        delay: float = 0.0,
        stream_delay: float = 0.0,
        input_price_per_1k: float = 0.0,
        output_price_per_1k: float = 0.0,
    ) -> None:
        super().__init__(
            ProviderSettings(
                provider_id=provider_id,
                input_price_per_1k=input_price_per_1k,
                output_price_per_1k=output_price_per_1k,
            )
        )
        self.text = text
        self.fail_with = fail_with
        self.failures = list(failures)
        self.delay = delay
        self.stream_delay = stream_delay
        self.calls = 0
        self.stream_closed = False

    def _maybe_fail(self) -> None:
        if self.fail_with is not None:
            raise self.fail_with(self.provider_id, "scripted failure")
        if self.failures:
            raise self.failures.pop(0)

    async def generate(self, prompt: str, max_tokens: int) -> GeneratedText:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        self._maybe_fail()
        return GeneratedText(
            text=self.text,
            input_tokens=self.count_tokens(prompt),
            output_tokens=self.count_tokens(self.text),
            provider_id=self.provider_id,
        )

    async def stream(self, prompt: str, max_tokens: int) -> AsyncIterator[str]:
        self.calls += 1
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            self._maybe_fail()
            for index, word in enumerate(self.text.split(" ")):
                await asyncio.sleep(self.stream_delay)
                yield word if index == 0 else f" {word}"
        finally:
            self.stream_closed = True


FACTS = {
    "python.txt": "Python was created in 1991 by Guido van Rossum. It emphasises code readability.",
    "rust.txt": "Rust was started by Graydon Hoare at Mozilla. It focuses on memory safety.",
}


@pytest.fixture
def corpus():
    embedder = HashEmbeddingBackend(EmbeddingConfig(dim=256))
    index = InMemoryCorpusIndex()
    indexer = DocumentIndexer(Chunker(chunk_size=200, chunk_overlap=40), embedder, index)
    return SimpleNamespace(
        embedder=embedder,
        index=index,
        indexer=indexer,
        retriever=VectorRetriever(embedder, index),
    )


@pytest.fixture
def indexed_corpus(corpus):
    corpus.indexer.index_documents([Document.from_text(text, source) for source, text in FACTS.items()])
    return corpus


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def make_service(recording_sleep):
    """Build a QueryService over the given corpus with in-memory collaborators."""

    def factory(
        corpus,
        providers: Sequence[GenerationProvider] | None = None,
        *,
        cache: AnswerCache | None = None,
        use_cache: bool = True,
        observer=None,
        max_retries: int = 3,
        provider_timeout: float = 5.0,
        **config,
    ) -> SimpleNamespace:
        providers = providers or [TemplateProvider(ProviderSettings(provider_id="template"))]
        if cache is None and use_cache:
            cache = AnswerCache(InMemoryCacheBackend())
        ledger = InMemoryCostLedger()
        chain = ProviderChain(
            providers,
            BackoffPolicy(max_retries=max_retries, base_delay=0.5, max_delay=8.0),
            timeout=provider_timeout,
            sleep=recording_sleep,
        )
        service = QueryService(
            corpus.retriever,
            chain,
            cache=cache,
            ledger=ledger,
            config=QueryConfig(**config),
            observer=observer,
        )
        return SimpleNamespace(service=service, cache=cache, ledger=ledger, chain=chain)

    return factory
