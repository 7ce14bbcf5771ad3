from __future__ import annotations

import time
from pathlib import Path

import pytest

from conftest import FakeClock
from ragengine.cache import AnswerCache, InMemoryCacheBackend, SQLiteCacheBackend, cache_key, normalize_question
from ragengine.errors import CacheError
from ragengine.models import Answer, Source


def _answer(text: str = "Guido van Rossum created Python. [1]") -> Answer:
    return Answer(
        text=text,
        sources=(Source(chunk_id="d1-0", document_id="d1", source="python.txt", ordinal=0, score=0.8125),),
        input_tokens=42,
        output_tokens=7,
        cost=0.00123,
        provider_id="template",
        query_id="q1",
    )


def test_normalize_question_collapses_whitespace_and_case():
    assert normalize_question("  Who   CREATED\tPython? \n") == "who created python?"


def test_cache_key_depends_on_provider():
    assert cache_key("Who created Python?", "a") == cache_key(" who created  python? ", "a")
    assert cache_key("Who created Python?", "a") != cache_key("Who created Python?", "b")


@pytest.mark.asyncio
async def test_round_trip_returns_equal_answer():
    cache = AnswerCache(InMemoryCacheBackend())
    answer = _answer()

    await cache.put("Who created Python?", "template", answer)

    assert await cache.get("who created python?", "template") == answer
    assert await cache.get("who created python?", "other") is None


@pytest.mark.asyncio
async def test_entries_expire_after_ttl():
    clock = FakeClock()
    cache = AnswerCache(InMemoryCacheBackend(clock=clock), default_ttl=10)
    await cache.put("q", "p", _answer())

    clock.advance(9)
    assert await cache.get("q", "p") is not None
    clock.advance(1)
    assert await cache.get("q", "p") is None


@pytest.mark.asyncio
async def test_explicit_ttl_overrides_default():
    clock = FakeClock()
    cache = AnswerCache(InMemoryCacheBackend(clock=clock), default_ttl=3600)
    await cache.put("q", "p", _answer(), ttl=1)

    clock.advance(1)
    assert await cache.get("q", "p") is None


@pytest.mark.asyncio
async def test_non_positive_ttl_is_rejected():
    cache = AnswerCache(InMemoryCacheBackend())

    with pytest.raises(CacheError):
        await cache.put("q", "p", _answer(), ttl=0)


@pytest.mark.asyncio
async def test_backend_write_failure_raises_cache_error():
    class BrokenWrites(InMemoryCacheBackend):
        def set(self, key: str, value: str, ttl: float) -> None:
            raise OSError("read-only")

    cache = AnswerCache(BrokenWrites())

    with pytest.raises(CacheError):
        await cache.put("q", "p", _answer())


@pytest.mark.asyncio
async def test_corrupt_entry_reads_as_miss():
    backend = InMemoryCacheBackend()
    backend.set(cache_key("q", "p"), "{not json", 60)
    cache = AnswerCache(backend)

    assert await cache.get("q", "p") is None


@pytest.mark.asyncio
async def test_slow_backend_reads_as_miss():
    class SlowReads(InMemoryCacheBackend):
        blocking = True

        def get(self, key: str) -> str | None:
            time.sleep(0.2)
            return super().get(key)

    cache = AnswerCache(SlowReads(), timeout=0.02)
    await cache.put("q", "p", _answer())

    assert await cache.get("q", "p") is None


@pytest.mark.asyncio
async def test_invalidate_removes_entry():
    cache = AnswerCache(InMemoryCacheBackend())
    await cache.put("q", "p", _answer())

    await cache.invalidate("Q", "p")

    assert await cache.get("q", "p") is None


@pytest.mark.asyncio
async def test_sweep_evicts_expired_entries():
    clock = FakeClock()
    backend = InMemoryCacheBackend(clock=clock)
    cache = AnswerCache(backend, default_ttl=5)
    await cache.put("q1", "p", _answer())
    await cache.put("q2", "p", _answer(), ttl=60)

    clock.advance(10)

    assert await cache.sweep() == 1
    assert len(backend) == 1


@pytest.mark.asyncio
async def test_sqlite_backend_persists_and_expires(tmp_path: Path):
    clock = FakeClock()
    path = tmp_path / "cache.sqlite3"
    backend = SQLiteCacheBackend(path, clock=clock)
    cache = AnswerCache(backend, default_ttl=30, timeout=2.0)
    answer = _answer()

    await cache.put("Who created Python?", "template", answer)
    backend.close()

    reopened = SQLiteCacheBackend(path, clock=clock)
    cache = AnswerCache(reopened, timeout=2.0)
    assert await cache.get("who created python?", "template") == answer

    clock.advance(30)
    assert await cache.get("who created python?", "template") is None
    reopened.close()


def test_sqlite_sweep_counts_evictions(tmp_path: Path):
    clock = FakeClock()
    backend = SQLiteCacheBackend(tmp_path / "cache.sqlite3", clock=clock)
    backend.set("a", "1", 1)
    backend.set("b", "2", 100)

    clock.advance(5)

    assert backend.sweep() == 1
    assert backend.get("b") == "2"
    backend.close()
