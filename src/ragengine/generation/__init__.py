"""Generation providers and the retry/fallback chain."""

from .base import GenerationProvider, count_character_tokens, count_whitespace_tokens
from .chain import BackoffPolicy, GenerationOutcome, ProviderChain, ProviderStream
from .litellm_backend import LiteLLMProvider, classify_error
from .registry import PROVIDER_TYPES, build_provider, build_providers
from .template import NO_CONTEXT_ANSWER, TemplateProvider
from .transformers_backend import TransformersProvider

__all__ = [
    "BackoffPolicy",
    "GenerationOutcome",
    "GenerationProvider",
    "LiteLLMProvider",
    "NO_CONTEXT_ANSWER",
    "PROVIDER_TYPES",
    "ProviderChain",
    "ProviderStream",
    "TemplateProvider",
    "TransformersProvider",
    "build_provider",
    "build_providers",
    "classify_error",
    "count_character_tokens",
    "count_whitespace_tokens",
]
