"""Remote chat-completion provider built on LiteLLM."""

from __future__ import annotations

from typing import Any, AsyncIterator

import litellm
from litellm import exceptions as litellm_errors

from ragengine.config import ProviderSettings
from ragengine.errors import (
    InvalidProviderRequest,
    ProviderAuthenticationError,
    ProviderError,
    ProviderRateLimited,
    ProviderTimeout,
    ProviderUnavailable,
)
from ragengine.generation.base import GenerationProvider
from ragengine.models import GeneratedText

DEFAULT_MODEL = "openai/gpt-4o-mini"

# Checked in order: subclasses before their bases.
_ERROR_MAP: tuple[tuple[type[Exception], type[ProviderError]], ...] = (
    (litellm_errors.Timeout, ProviderTimeout),
    (litellm_errors.RateLimitError, ProviderRateLimited),
    (litellm_errors.AuthenticationError, ProviderAuthenticationError),
    (litellm_errors.PermissionDeniedError, ProviderAuthenticationError),
    (litellm_errors.ContextWindowExceededError, InvalidProviderRequest),
    (litellm_errors.BadRequestError, InvalidProviderRequest),
    (litellm_errors.NotFoundError, InvalidProviderRequest),
    (litellm_errors.ServiceUnavailableError, ProviderUnavailable),
    (litellm_errors.InternalServerError, ProviderUnavailable),
    (litellm_errors.APIConnectionError, ProviderUnavailable),
)


def classify_error(provider_id: str, exc: Exception) -> ProviderError:
    """Map a LiteLLM exception onto the retryable/non-retryable taxonomy."""
    for litellm_type, error_type in _ERROR_MAP:
        if isinstance(exc, litellm_type):
            return error_type(provider_id, str(exc))
    status_code = getattr(exc, "status_code", None)
    if isinstance(status_code, int) and status_code >= 500:
        return ProviderUnavailable(provider_id, str(exc))
    return ProviderError(provider_id, f"{type(exc).__name__}: {exc}", retryable=False)


class LiteLLMProvider(GenerationProvider):
    """Calls any model LiteLLM supports (OpenAI, Anthropic, Gemini, Bedrock, ...).

    Retries are owned by ``ProviderChain``; LiteLLM's own retry loop is turned
    off with ``num_retries=0``.

    Example:
        provider = LiteLLMProvider(
            ProviderSettings(provider_id="openai", kind="litellm", model="openai/gpt-4o-mini")
        )
        generated = await provider.generate("Hello", max_tokens=64)
    """

    kind = "litellm"

    def __init__(self, config: ProviderSettings) -> None:
        super().__init__(config)
        self.model = config.model or DEFAULT_MODEL

    def _count_native_tokens(self, text: str) -> int:
        return int(litellm.token_counter(model=self.model, text=text))

    def _completion_kwargs(self, prompt: str, max_tokens: int) -> dict[str, Any]:
        return {
            "model": self.model,
            "messages": [{"role": "user", "content": prompt}],
            "max_tokens": max_tokens,
            "temperature": self.config.temperature,
            "drop_params": True,
            "num_retries": 0,
        }

    async def generate(self, prompt: str, max_tokens: int) -> GeneratedText:
        try:
            response = await litellm.acompletion(**self._completion_kwargs(prompt, max_tokens))
        except Exception as exc:
            raise classify_error(self.provider_id, exc) from exc

        if not response.choices:
            raise ProviderUnavailable(self.provider_id, f"LLM returned no choices for model {self.model}")
        content = response.choices[0].message.content
        if content is None:
            raise ProviderUnavailable(self.provider_id, f"LLM returned None content for model {self.model}")
        text = str(content).strip()

        usage = getattr(response, "usage", None)
        input_tokens = getattr(usage, "prompt_tokens", None) or self.count_tokens(prompt)
        output_tokens = getattr(usage, "completion_tokens", None) or self.count_tokens(text)
        return GeneratedText(
            text=text,
            input_tokens=int(input_tokens),
            output_tokens=int(output_tokens),
            provider_id=self.provider_id,
        )

    async def stream(self, prompt: str, max_tokens: int) -> AsyncIterator[str]:
        try:
            response = await litellm.acompletion(stream=True, **self._completion_kwargs(prompt, max_tokens))
        except Exception as exc:
            raise classify_error(self.provider_id, exc) from exc
        try:
            async for part in response:
                if not part.choices:
                    continue
                delta = part.choices[0].delta.content
                if delta:
                    yield delta
        except ProviderError:
            raise
        except Exception as exc:
            raise classify_error(self.provider_id, exc) from exc
        finally:
            close = getattr(response, "aclose", None)
            if close is not None:
                await close()
