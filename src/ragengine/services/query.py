"""Query orchestration: cache check, retrieval, prompt, generation, caching."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, AsyncIterator, Callable
from uuid import NAMESPACE_URL, uuid4, uuid5

from ragengine.cache.service import AnswerCache, normalize_question
from ragengine.config import DEFAULT_SYSTEM_PROMPT
from ragengine.errors import (
    CacheError,
    Cancelled,
    DeadlineExceeded,
    GenerationUnavailable,
    InvalidConfiguration,
    ProviderError,
    RagEngineError,
    RetrievalFailed,
    StructuredError,
)
from ragengine.generation.chain import ProviderChain, ProviderStream
from ragengine.metrics.observability import (
    PipelineMetrics,
    bind_correlation_id,
    get_logger,
    restore_correlation_id,
)
from ragengine.models import Answer, AnswerOptions, CostEvent, RetrievedContext, Source
from ragengine.retrieval.service import Retriever
from ragengine.services.ledger import CostLedger


class RequestState(str, Enum):
    """States of a single request, in their only permitted order."""

    CACHE_CHECK = "CacheCheck"
    RETRIEVING = "Retrieving"
    PROMPT_BUILDING = "PromptBuilding"
    GENERATING = "Generating"
    CACHING = "Caching"
    COMPLETED = "Completed"
    FAILED = "Failed"

    @property
    def terminal(self) -> bool:
        return self in (RequestState.COMPLETED, RequestState.FAILED)


@dataclass(frozen=True)
class PromptBuilderConfig:
    """Configuration for prompt construction."""

    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    citation_prefix: str = "["
    citation_suffix: str = "]"
    empty_context: str = "(no context available)"


class PromptBuilder:
    """Renders instructions, labelled context and question into one prompt."""

    def __init__(self, config: PromptBuilderConfig | None = None) -> None:
        self._config = config or PromptBuilderConfig()
        template = self._config.system_prompt
        if "{context}" not in template or "{question}" not in template:
            raise InvalidConfiguration("Prompt template must contain {context} and {question} placeholders")
        try:
            template.format(context="", question="")
        except (KeyError, IndexError, ValueError) as exc:
            raise InvalidConfiguration(f"Invalid prompt template: {exc}") from exc

    def build_context(self, context: RetrievedContext) -> str:
        if context.is_empty:
            return ""
        lines = []
        for index, item in enumerate(context, start=1):
            prefix = f"{self._config.citation_prefix}{index}{self._config.citation_suffix}"
            lines.append(f"{prefix} {item.chunk.text}\nSource: {item.chunk.source}")
        return "\n\n".join(lines)

    def build(self, question: str, context: RetrievedContext) -> str:
        block = self.build_context(context) or self._config.empty_context
        return self._config.system_prompt.format(context=block, question=question.strip())


@dataclass(frozen=True)
class QueryConfig:
    """Request-level policy for the orchestrator."""

    top_k: int = 5
    allow_ungrounded: bool = False
    retrieval_timeout: float = 2.0
    request_deadline: float = 60.0
    max_new_tokens: int = 512
    cache_ttl: float | None = None


@dataclass
class _Request:
    question: str
    options: AnswerOptions
    request_id: str
    logger: Any
    cache_provider_id: str | None = None
    state: RequestState | None = None
    attempt_count: int = 0
    last_provider_id: str | None = None

    def record_attempt(self, provider_id: str) -> None:
        self.attempt_count += 1
        self.last_provider_id = provider_id


class AnswerStream:
    """Async iterator over answer text increments.

    Once iteration ends ``result`` holds the final ``Answer`` or a
    ``StructuredError``. Closing the stream early (``aclose``, ``cancel`` or
    leaving an ``async with`` block) releases the provider, fails the request
    with ``Cancelled`` and caches nothing.
    """

    def __init__(self, service: "QueryService", request: _Request, deadline: float) -> None:
        self.result: Answer | StructuredError | None = None
        self._service = service
        self._request = request
        self._increments = service._stream(request, self, deadline)

    @property
    def state(self) -> RequestState | None:
        return self._request.state

    def __aiter__(self) -> "AnswerStream":
        return self

    async def __anext__(self) -> str:
        return await self._increments.__anext__()

    async def aclose(self) -> None:
        await self._increments.aclose()
        if self.result is None:
            self.result = self._service._fail(self._request, Cancelled("Stream closed before completion"))

    async def cancel(self) -> None:
        await self.aclose()

    async def __aenter__(self) -> "AnswerStream":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()


class QueryService:
    """Orchestrates cache, retrieval and generation for incoming questions.

    Each call to ``answer`` runs the state machine
    ``CacheCheck -> Retrieving -> PromptBuilding -> Generating -> Caching ->
    Completed`` in its own task under the request deadline; any failure ends
    in ``Failed`` and is returned as a ``StructuredError``. Cache writes run
    as detached background tasks, so they survive cancellation of the request
    that produced the answer.
    """

    def __init__(
        self,
        retriever: Retriever,
        providers: ProviderChain,
        *,
        cache: AnswerCache | None = None,
        prompt_builder: PromptBuilder | None = None,
        ledger: CostLedger | None = None,
        config: QueryConfig | None = None,
        observer: Callable[[RequestState], None] | None = None,
    ) -> None:
        self._retriever = retriever
        self._providers = providers
        self._cache = cache
        self._prompt_builder = prompt_builder or PromptBuilder()
        self._ledger = ledger
        self._config = config or QueryConfig()
        self._observer = observer
        self._pending: set[asyncio.Task[None]] = set()
        self._logger = get_logger("query")

    async def answer(self, question: str, options: AnswerOptions | None = None) -> Answer | StructuredError:
        options = options or AnswerOptions()
        request = self._new_request(question, options)
        deadline = self._deadline(options)
        task = asyncio.create_task(self._run(request))
        cancel_waiter = asyncio.create_task(options.cancel_event.wait()) if options.cancel_event else None
        waiters = {task} if cancel_waiter is None else {task, cancel_waiter}
        try:
            done, _ = await asyncio.wait(waiters, timeout=deadline, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            await self._abandon(task)
            self._fail(request, Cancelled("Request cancelled by caller"))
            raise
        finally:
            if cancel_waiter is not None:
                cancel_waiter.cancel()

        if task in done:
            return task.result()
        await self._abandon(task)
        if cancel_waiter is not None and cancel_waiter in done:
            return self._fail(request, Cancelled("Request cancelled by caller"))
        return self._fail(request, DeadlineExceeded(f"Request exceeded its {deadline}s deadline"))

    def answer_stream(self, question: str, options: AnswerOptions | None = None) -> AnswerStream:
        options = options or AnswerOptions()
        return AnswerStream(self, self._new_request(question, options), self._deadline(options))

    async def drain(self) -> None:
        """Wait for background cache writes to finish."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def aclose(self) -> None:
        await self.drain()
        if self._cache is not None:
            await self._cache.stop_sweeper()

    def _new_request(self, question: str, options: AnswerOptions) -> _Request:
        request_id = uuid4().hex
        return _Request(
            question=question,
            options=options,
            request_id=request_id,
            logger=self._logger.bind(request_id=request_id),
        )

    def _deadline(self, options: AnswerOptions) -> float:
        return self._config.request_deadline if options.deadline is None else max(0.0, options.deadline)

    async def _run(self, request: _Request) -> Answer | StructuredError:
        bind_correlation_id(request.request_id)
        try:
            prepared = await self._prepare(request)
            if isinstance(prepared, Answer):
                return prepared
            prompt, context = prepared
            self._transition(request, RequestState.GENERATING)
            outcome = await self._providers.generate(
                prompt,
                self._config.max_new_tokens,
                hint=request.options.provider_hint,
                on_attempt=request.record_attempt,
            )
            generated = outcome.generated
            return self._finish(
                request,
                context,
                text=generated.text,
                provider_id=generated.provider_id,
                input_tokens=generated.input_tokens,
                output_tokens=generated.output_tokens,
                cost=outcome.cost,
            )
        except RagEngineError as exc:
            return self._fail(request, exc)

    async def _prepare(self, request: _Request) -> Answer | tuple[str, RetrievedContext]:
        """Run CacheCheck, Retrieving and PromptBuilding; a cache hit completes the request."""
        self._transition(request, RequestState.CACHE_CHECK)
        request.cache_provider_id = self._providers.order(request.options.provider_hint)[0].provider_id
        if request.options.use_cache and self._cache is not None:
            cached = await self._cache.get(request.question, request.cache_provider_id)
            if cached is not None:
                answer = cached.as_cached()
                self._transition(request, RequestState.COMPLETED)
                PipelineMetrics.observe_request(RequestState.COMPLETED.value)
                request.logger.info("request.completed", cached=True, provider_id=answer.provider_id)
                return answer

        self._transition(request, RequestState.RETRIEVING)
        context = await self._retrieve(request)

        self._transition(request, RequestState.PROMPT_BUILDING)
        return self._prompt_builder.build(request.question, context), context

    async def _retrieve(self, request: _Request) -> RetrievedContext:
        top_k = request.options.top_k or self._config.top_k
        context = await self._retriever.retrieve(request.question, top_k=top_k, timeout=self._config.retrieval_timeout)
        if not context.is_empty:
            return context
        reason = context.failure or "no_results"
        require_grounding = request.options.require_grounding
        if require_grounding is None:
            require_grounding = not self._config.allow_ungrounded
        if require_grounding:
            raise RetrievalFailed(f"No context retrieved ({reason}) and grounding is required")
        request.logger.warning("retrieval.ungrounded", reason=reason)
        return context

    async def _stream(self, request: _Request, handle: AnswerStream, deadline: float) -> AsyncIterator[str]:
        loop = asyncio.get_running_loop()
        expires_at = loop.time() + deadline

        def remaining() -> float:
            return max(0.0, expires_at - loop.time())

        previous_id = bind_correlation_id(request.request_id)
        provider_stream: ProviderStream | None = None
        pieces: list[str] = []
        try:
            try:
                prepared = await asyncio.wait_for(self._prepare(request), remaining())
                if isinstance(prepared, Answer):
                    handle.result = prepared
                    yield prepared.text
                    return
                prompt, context = prepared
                self._transition(request, RequestState.GENERATING)
                provider_stream = await asyncio.wait_for(
                    self._providers.open_stream(
                        prompt,
                        self._config.max_new_tokens,
                        hint=request.options.provider_hint,
                        on_attempt=request.record_attempt,
                    ),
                    remaining(),
                )
                while True:
                    try:
                        piece = await asyncio.wait_for(provider_stream.__anext__(), remaining())
                    except StopAsyncIteration:
                        break
                    pieces.append(piece)
                    yield piece
            except asyncio.TimeoutError as exc:
                raise DeadlineExceeded(f"Stream exceeded its {deadline}s deadline") from exc
            except ProviderError as exc:
                raise GenerationUnavailable(str(exc), provider_id=exc.provider_id) from exc

            provider = provider_stream.provider
            text = "".join(pieces)
            input_tokens = provider.count_tokens(prompt)
            output_tokens = provider.count_tokens(text)
            handle.result = self._finish(
                request,
                context,
                text=text,
                provider_id=provider.provider_id,
                input_tokens=input_tokens,
                output_tokens=output_tokens,
                cost=provider.cost(input_tokens, output_tokens),
            )
        except RagEngineError as exc:
            handle.result = self._fail(request, exc)
        except (GeneratorExit, asyncio.CancelledError):
            if handle.result is None:
                handle.result = self._fail(request, Cancelled("Stream cancelled by caller"))
            raise
        finally:
            if provider_stream is not None:
                await provider_stream.aclose()
            restore_correlation_id(previous_id)

    def _finish(
        self,
        request: _Request,
        context: RetrievedContext,
        *,
        text: str,
        provider_id: str,
        input_tokens: int,
        output_tokens: int,
        cost: float,
    ) -> Answer:
        answer = Answer(
            text=text,
            sources=tuple(Source.from_retrieved(item) for item in context),
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cost=cost,
            provider_id=provider_id,
            query_id=uuid5(NAMESPACE_URL, normalize_question(request.question)).hex,
        )
        self._record_cost(request, CostEvent(provider_id, input_tokens, output_tokens, cost))

        self._transition(request, RequestState.CACHING)
        self._schedule_cache_write(request, answer)

        self._transition(request, RequestState.COMPLETED)
        PipelineMetrics.observe_request(RequestState.COMPLETED.value)
        request.logger.info(
            "request.completed",
            cached=False,
            provider_id=provider_id,
            attempt_count=request.attempt_count,
            source_count=len(answer.sources),
            cost=cost,
        )
        return answer

    def _fail(self, request: _Request, exc: RagEngineError) -> StructuredError:
        error = exc.to_structured()
        error = replace(
            error,
            provider_id=error.provider_id or request.last_provider_id,
            attempt_count=max(error.attempt_count, request.attempt_count),
        )
        if request.state is not None and request.state.terminal:
            return error
        self._transition(request, RequestState.FAILED)
        PipelineMetrics.observe_request(RequestState.FAILED.value, error.kind.value)
        request.logger.warning(
            "request.failed",
            kind=error.kind.value,
            message=error.message,
            provider_id=error.provider_id,
            attempt_count=error.attempt_count,
            retryable=error.retryable,
        )
        return error

    def _transition(self, request: _Request, state: RequestState) -> None:
        request.state = state
        request.logger.debug("request.state", state=state.value)
        if self._observer is not None:
            self._observer(state)

    def _record_cost(self, request: _Request, event: CostEvent) -> None:
        PipelineMetrics.observe_cost(event.provider_id, event.input_tokens, event.output_tokens, event.cost)
        if self._ledger is None:
            return
        try:
            self._ledger.record(event)
        except Exception as exc:
            request.logger.warning("ledger.record_failed", provider_id=event.provider_id, error=str(exc))

    def _schedule_cache_write(self, request: _Request, answer: Answer) -> None:
        if self._cache is None or request.cache_provider_id is None:
            return
        task = asyncio.create_task(self._write_cache(request, answer))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _write_cache(self, request: _Request, answer: Answer) -> None:
        try:
            await self._cache.put(request.question, request.cache_provider_id, answer, ttl=self._config.cache_ttl)
        except CacheError as exc:
            PipelineMetrics.observe_cache_write_error()
            request.logger.warning("cache.write_failed", error=exc.message)

    @staticmethod
    async def _abandon(task: asyncio.Task) -> None:
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
