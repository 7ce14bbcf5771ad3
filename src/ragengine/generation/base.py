"""Provider interface shared by every generation backend."""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from typing import AsyncGenerator, ClassVar

from ragengine.config import ProviderSettings
from ragengine.models import GeneratedText


def count_whitespace_tokens(text: str) -> int:
    return len(text.split())


def count_character_tokens(text: str) -> int:
    """Rough estimate of four characters per token."""
    return math.ceil(len(text) / 4)


class GenerationProvider(ABC):
    """A generative backend selected by its ``kind`` tag.

    ``generate`` and ``stream`` raise ``ProviderError`` subclasses; whether an
    error is retryable is carried by the exception type. ``cost`` is a pure
    function of the configured per-1K-token prices.
    """

    kind: ClassVar[str]

    def __init__(self, config: ProviderSettings) -> None:
        self.config = config

    @property
    def provider_id(self) -> str:
        return self.config.provider_id

    def count_tokens(self, text: str) -> int:
        strategy = self.config.token_counter
        if strategy == "whitespace":
            return count_whitespace_tokens(text)
        if strategy == "characters":
            return count_character_tokens(text)
        return self._count_native_tokens(text)

    def _count_native_tokens(self, text: str) -> int:
        return count_character_tokens(text)

    def cost(self, input_tokens: int, output_tokens: int) -> float:
        input_cost = (input_tokens / 1000) * self.config.input_price_per_1k
        output_cost = (output_tokens / 1000) * self.config.output_price_per_1k
        return round(input_cost + output_cost, 6)

    @abstractmethod
    async def generate(self, prompt: str, max_tokens: int) -> GeneratedText:
        """Produce a complete answer for ``prompt``."""

    @abstractmethod
    def stream(self, prompt: str, max_tokens: int) -> AsyncGenerator[str, None]:
        """Yield the answer incrementally; closing the iterator releases the backend."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}(provider_id={self.provider_id!r})"
