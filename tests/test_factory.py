from __future__ import annotations

from pathlib import Path

import pytest

from ragengine.config import ProviderSettings, Settings
from ragengine.embeddings import ChromaCorpusIndex, InMemoryCorpusIndex
from ragengine.factory import build_dependencies
from ragengine.cache import SQLiteCacheBackend
from ragengine.models import Answer, Document
from ragengine.retrieval import LexicalReranker
from ragengine.services import InMemoryCostLedger, LoggingCostLedger


@pytest.mark.asyncio
async def test_default_engine_answers_from_ingested_documents():
    ledger = InMemoryCostLedger()
    deps = build_dependencies(Settings(environment="test"), ledger=ledger)
    deps.indexer.index_document(
        Document.from_text("Python was created by Guido van Rossum in 1991.", "python.txt")
    )

    answer = await deps.query_service.answer("Who created Python?")
    await deps.aclose()

    assert isinstance(answer, Answer)
    assert "Guido" in answer.text
    assert isinstance(deps.index, InMemoryCorpusIndex)
    assert deps.providers.provider_ids == ["template"]
    assert len(ledger.events) == 1
    assert ledger.total_cost() == 0.0


@pytest.mark.asyncio
async def test_engine_with_sqlite_cache_and_chroma_index(tmp_path: Path):
    settings = Settings(
        environment="test",
        index_backend="chroma",
        chroma_persist_dir=tmp_path / "chroma",
        cache_backend="sqlite",
        cache_path=tmp_path / "cache.sqlite3",
        cache_timeout_seconds=2.0,
        rerank_lexical=True,
        providers=(
            ProviderSettings(provider_id="backup", priority=2),
            ProviderSettings(provider_id="main", priority=1, input_price_per_1k=0.01),
        ),
    )
    deps = build_dependencies(settings)
    deps.start()
    deps.indexer.index_document(Document.from_text("Python was created by Guido van Rossum.", "python.txt"))

    first = await deps.query_service.answer("Who created Python?")
    await deps.query_service.drain()
    second = await deps.query_service.answer("Who created Python?")
    await deps.aclose()

    assert isinstance(deps.index, ChromaCorpusIndex)
    assert isinstance(deps.cache.backend, SQLiteCacheBackend)
    assert isinstance(deps.retriever, LexicalReranker)
    assert isinstance(deps.ledger, LoggingCostLedger)
    assert deps.providers.provider_ids == ["main", "backup"]
    assert isinstance(first, Answer) and isinstance(second, Answer)
    assert first.provider_id == "main"
    assert first.cost > 0
    assert second.cached is True


def test_cache_can_be_disabled():
    deps = build_dependencies(Settings(environment="test", cache_backend="none"))

    assert deps.cache is None
