"""Content-addressed answer cache."""

from __future__ import annotations

import asyncio
import contextlib
import hashlib
import json
from typing import Any, Callable, TypeVar

from ragengine.cache.backends import CacheBackend
from ragengine.errors import CacheError
from ragengine.metrics.observability import PipelineMetrics, get_logger
from ragengine.models import Answer

T = TypeVar("T")

_KEY_SEPARATOR = "\x1f"


def normalize_question(question: str) -> str:
    """Trim, lowercase and collapse internal whitespace."""
    return " ".join(question.split()).lower()


def cache_key(question: str, provider_id: str) -> str:
    material = f"{normalize_question(question)}{_KEY_SEPARATOR}{provider_id}"
    return hashlib.sha256(material.encode("utf-8")).hexdigest()


class AnswerCache:
    """Answer cache keyed by normalized question and provider id.

    Reads never take longer than ``timeout`` seconds; a slow, failing or
    corrupt entry is reported as a miss. Writes raise ``CacheError`` so the
    caller can log and drop them.
    """

    _logger = get_logger("cache")

    def __init__(
        self,
        backend: CacheBackend,
        *,
        default_ttl: float = 3600.0,
        timeout: float = 0.05,
        write_timeout: float = 1.0,
    ) -> None:
        self._backend = backend
        self._default_ttl = default_ttl
        self._timeout = timeout
        self._write_timeout = write_timeout
        self._sweeper: asyncio.Task[None] | None = None

    @property
    def backend(self) -> CacheBackend:
        return self._backend

    async def get(self, question: str, provider_id: str) -> Answer | None:
        key = cache_key(question, provider_id)
        try:
            raw = await self._call(self._timeout, self._backend.get, key)
        except asyncio.TimeoutError:
            PipelineMetrics.observe_cache_lookup("timeout")
            self._logger.warning("cache.timeout", provider_id=provider_id, timeout_seconds=self._timeout)
            return None
        except Exception as exc:
            PipelineMetrics.observe_cache_lookup("error")
            self._logger.warning("cache.read_failed", provider_id=provider_id, error=str(exc))
            return None
        if raw is None:
            PipelineMetrics.observe_cache_lookup("miss")
            self._logger.debug("cache.miss", provider_id=provider_id)
            return None
        try:
            answer = Answer.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError) as exc:
            PipelineMetrics.observe_cache_lookup("error")
            self._logger.warning("cache.corrupt_entry", provider_id=provider_id, error=str(exc))
            return None
        PipelineMetrics.observe_cache_lookup("hit")
        self._logger.info("cache.hit", provider_id=provider_id, query_id=answer.query_id)
        return answer

    async def put(self, question: str, provider_id: str, answer: Answer, ttl: float | None = None) -> None:
        ttl = self._default_ttl if ttl is None else ttl
        if ttl <= 0:
            raise CacheError(f"Cache TTL must be positive (got {ttl})", provider_id=provider_id)
        key = cache_key(question, provider_id)
        payload = json.dumps(answer.to_dict(), sort_keys=True)
        try:
            await self._call(self._write_timeout, self._backend.set, key, payload, ttl)
        except asyncio.TimeoutError as exc:
            raise CacheError("Cache write timed out", provider_id=provider_id) from exc
        except Exception as exc:
            raise CacheError(f"Cache write failed: {exc}", provider_id=provider_id) from exc
        self._logger.debug("cache.stored", provider_id=provider_id, ttl_seconds=ttl)

    async def invalidate(self, question: str, provider_id: str) -> None:
        await self._call(self._write_timeout, self._backend.delete, cache_key(question, provider_id))

    async def sweep(self) -> int:
        evicted = await asyncio.to_thread(self._backend.sweep)
        if evicted:
            self._logger.info("cache.swept", evicted=evicted)
        return evicted

    def start_sweeper(self, interval: float) -> None:
        """Run ``sweep`` every ``interval`` seconds until ``stop_sweeper``."""
        if self._sweeper is not None and not self._sweeper.done():
            return
        self._sweeper = asyncio.create_task(self._sweep_forever(interval))

    async def stop_sweeper(self) -> None:
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._sweeper
        self._sweeper = None

    async def _sweep_forever(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await self.sweep()
            except Exception as exc:
                self._logger.warning("cache.sweep_failed", error=str(exc))

    async def _call(self, timeout: float, func: Callable[..., T], *args: Any) -> T:
        if not self._backend.blocking:
            return func(*args)
        return await asyncio.wait_for(asyncio.to_thread(func, *args), timeout)
