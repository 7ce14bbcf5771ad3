"""Retry and fallback across an ordered list of generation providers."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Sequence

from ragengine.errors import GenerationUnavailable, InvalidConfiguration, ProviderError, ProviderTimeout
from ragengine.generation.base import GenerationProvider
from ragengine.metrics.observability import PipelineMetrics, get_logger
from ragengine.models import GeneratedText

AttemptCallback = Callable[[str], None]

_NOTHING = object()


@dataclass(frozen=True)
class BackoffPolicy:
    """Exponential backoff between attempts against one provider.

    ``max_retries`` is the number of attempts made against a provider before
    falling back to the next one.
    """

    max_retries: int = 3
    base_delay: float = 0.5
    max_delay: float = 8.0

    def __post_init__(self) -> None:
        if self.max_retries < 1:
            raise InvalidConfiguration(f"max_retries must be at least 1 (got {self.max_retries})")
        if self.base_delay < 0 or self.max_delay < 0:
            raise InvalidConfiguration("Backoff delays must not be negative")

    def delay(self, attempt: int) -> float:
        return min(self.base_delay * (2**attempt), self.max_delay)


@dataclass(frozen=True)
class GenerationOutcome:
    """Successful generation plus the accounting derived from it."""

    generated: GeneratedText
    cost: float
    attempt_count: int

    @property
    def provider_id(self) -> str:
        return self.generated.provider_id


class ProviderStream:
    """Open stream from the provider that won retry/fallback.

    Fallback stops once the first increment has been received; a later failure
    surfaces as a ``ProviderError``.
    """

    def __init__(
        self,
        provider: GenerationProvider,
        stream,
        first: object,
        timeout: float,
    ) -> None:
        self.provider = provider
        self._stream = stream
        self._pending = first
        self._timeout = timeout
        self._closed = first is _NOTHING

    def __aiter__(self) -> "ProviderStream":
        return self

    async def __anext__(self) -> str:
        if self._pending is not _NOTHING:
            piece, self._pending = self._pending, _NOTHING
            return piece  # type: ignore[return-value]
        if self._closed:
            raise StopAsyncIteration
        try:
            return await asyncio.wait_for(self._stream.__anext__(), self._timeout)
        except StopAsyncIteration:
            self._closed = True
            raise
        except asyncio.TimeoutError as exc:
            await self.aclose()
            raise ProviderTimeout(self.provider.provider_id, f"no increment within {self._timeout}s") from exc
        except ProviderError:
            await self.aclose()
            raise
        except Exception as exc:
            await self.aclose()
            raise ProviderError(self.provider.provider_id, f"{type(exc).__name__}: {exc}", retryable=False) from exc

    async def aclose(self) -> None:
        self._pending = _NOTHING
        if self._closed:
            return
        self._closed = True
        await self._stream.aclose()


class ProviderChain:
    """Primary provider followed by fallbacks, each retried with backoff.

    Retryable failures (timeouts, rate limits, transient server errors) are
    retried on the same provider up to ``policy.max_retries`` attempts with
    ``policy.delay(attempt)`` between them. Non-retryable failures move to the
    next provider at once. When every provider is exhausted the chain raises
    ``GenerationUnavailable``.
    """

    _logger = get_logger("generation")

    def __init__(
        self,
        providers: Sequence[GenerationProvider],
        policy: BackoffPolicy | None = None,
        *,
        timeout: float = 30.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if not providers:
            raise InvalidConfiguration("ProviderChain requires at least one provider")
        ids = [provider.provider_id for provider in providers]
        if len(set(ids)) != len(ids):
            raise InvalidConfiguration(f"Duplicate provider ids in chain: {ids}")
        self._providers = list(providers)
        self._policy = policy or BackoffPolicy()
        self._timeout = timeout
        self._sleep = sleep

    @property
    def provider_ids(self) -> list[str]:
        return [provider.provider_id for provider in self._providers]

    def get(self, provider_id: str) -> GenerationProvider:
        for provider in self._providers:
            if provider.provider_id == provider_id:
                return provider
        raise InvalidConfiguration(f"Unknown provider {provider_id!r}; configured: {self.provider_ids}")

    def order(self, hint: str | None = None) -> list[GenerationProvider]:
        """Providers in attempt order, the hinted one first."""
        if hint is None:
            return list(self._providers)
        preferred = self.get(hint)
        return [preferred] + [provider for provider in self._providers if provider is not preferred]

    async def generate(
        self,
        prompt: str,
        max_tokens: int,
        *,
        hint: str | None = None,
        on_attempt: AttemptCallback | None = None,
    ) -> GenerationOutcome:
        attempts = 0
        last_error: ProviderError | None = None
        start = time.perf_counter()
        for provider in self.order(hint):
            for attempt in range(self._policy.max_retries):
                attempts += 1
                if on_attempt is not None:
                    on_attempt(provider.provider_id)
                try:
                    generated = await asyncio.wait_for(provider.generate(prompt, max_tokens), self._timeout)
                except asyncio.TimeoutError:
                    error: ProviderError = ProviderTimeout(provider.provider_id, f"no response within {self._timeout}s")
                except ProviderError as exc:
                    error = exc
                except Exception as exc:
                    error = ProviderError(provider.provider_id, f"{type(exc).__name__}: {exc}", retryable=False)
                else:
                    PipelineMetrics.observe_provider_attempt(provider.provider_id, "success")
                    PipelineMetrics.observe_generation(time.perf_counter() - start)
                    self._logger.info(
                        "generation.complete",
                        provider_id=provider.provider_id,
                        attempt_count=attempts,
                        input_tokens=generated.input_tokens,
                        output_tokens=generated.output_tokens,
                    )
                    cost = provider.cost(generated.input_tokens, generated.output_tokens)
                    return GenerationOutcome(generated=generated, cost=cost, attempt_count=attempts)

                last_error = error
                if not await self._after_failure(provider, attempt, error):
                    break
            self._log_fallback(provider, last_error)

        raise GenerationUnavailable(
            f"All providers exhausted after {attempts} attempts: {last_error}",
            provider_id=last_error.provider_id if last_error else None,
            attempt_count=attempts,
        )

    async def open_stream(
        self,
        prompt: str,
        max_tokens: int,
        *,
        hint: str | None = None,
        on_attempt: AttemptCallback | None = None,
    ) -> ProviderStream:
        """Open a stream, applying retry/fallback until a first increment arrives."""
        attempts = 0
        last_error: ProviderError | None = None
        for provider in self.order(hint):
            for attempt in range(self._policy.max_retries):
                attempts += 1
                if on_attempt is not None:
                    on_attempt(provider.provider_id)
                stream = provider.stream(prompt, max_tokens)
                try:
                    first: object = await asyncio.wait_for(stream.__anext__(), self._timeout)
                except StopAsyncIteration:
                    return self._opened(provider, stream, _NOTHING, attempts)
                except asyncio.TimeoutError:
                    error: ProviderError = ProviderTimeout(provider.provider_id, f"no increment within {self._timeout}s")
                except ProviderError as exc:
                    error = exc
                except Exception as exc:
                    error = ProviderError(provider.provider_id, f"{type(exc).__name__}: {exc}", retryable=False)
                else:
                    return self._opened(provider, stream, first, attempts)

                await stream.aclose()
                last_error = error
                if not await self._after_failure(provider, attempt, error):
                    break
            self._log_fallback(provider, last_error)

        raise GenerationUnavailable(
            f"All providers exhausted after {attempts} attempts: {last_error}",
            provider_id=last_error.provider_id if last_error else None,
            attempt_count=attempts,
        )

    def _opened(self, provider: GenerationProvider, stream, first: object, attempts: int) -> ProviderStream:
        PipelineMetrics.observe_provider_attempt(provider.provider_id, "success")
        self._logger.info("generation.stream_open", provider_id=provider.provider_id, attempt_count=attempts)
        return ProviderStream(provider, stream, first, self._timeout)

    async def _after_failure(self, provider: GenerationProvider, attempt: int, error: ProviderError) -> bool:
        """Record a failed attempt; sleep and return True when the same provider should be retried."""
        outcome = "retryable_error" if error.retryable else "fatal_error"
        PipelineMetrics.observe_provider_attempt(provider.provider_id, outcome)
        if not error.retryable:
            self._logger.warning(
                "provider.failed",
                provider_id=provider.provider_id,
                error=error.message,
                error_type=type(error).__name__,
                retryable=False,
            )
            return False
        if attempt + 1 >= self._policy.max_retries:
            self._logger.warning(
                "provider.retries_exhausted",
                provider_id=provider.provider_id,
                error=error.message,
                attempts=attempt + 1,
            )
            return False
        delay = self._policy.delay(attempt)
        self._logger.info(
            "provider.retry",
            provider_id=provider.provider_id,
            error=error.message,
            error_type=type(error).__name__,
            attempt=attempt + 1,
            delay_seconds=delay,
        )
        await self._sleep(delay)
        return True

    def _log_fallback(self, provider: GenerationProvider, error: ProviderError | None) -> None:
        self._logger.warning(
            "provider.exhausted",
            provider_id=provider.provider_id,
            error=error.message if error else None,
        )
