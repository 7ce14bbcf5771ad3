"""Static provider selection from configuration."""

from __future__ import annotations

from typing import Dict, Sequence

from ragengine.config import ProviderSettings
from ragengine.errors import InvalidConfiguration
from ragengine.generation.base import GenerationProvider
from ragengine.generation.litellm_backend import LiteLLMProvider
from ragengine.generation.template import TemplateProvider
from ragengine.generation.transformers_backend import TransformersProvider

PROVIDER_TYPES: Dict[str, type[GenerationProvider]] = {
    TemplateProvider.kind: TemplateProvider,
    TransformersProvider.kind: TransformersProvider,
    LiteLLMProvider.kind: LiteLLMProvider,
}


def build_provider(config: ProviderSettings) -> GenerationProvider:
    provider_type = PROVIDER_TYPES.get(config.kind)
    if provider_type is None:
        raise InvalidConfiguration(f"Unknown provider kind {config.kind!r} for {config.provider_id!r}")
    return provider_type(config)


def build_providers(configs: Sequence[ProviderSettings]) -> list[GenerationProvider]:
    """Build providers in fallback order (ascending ``priority``, then declaration order)."""

    if not configs:
        raise InvalidConfiguration("At least one generation provider must be configured")
    seen: set[str] = set()
    for config in configs:
        if config.provider_id in seen:
            raise InvalidConfiguration(f"Duplicate provider id {config.provider_id!r}")
        seen.add(config.provider_id)
    ordered = sorted(configs, key=lambda config: config.priority)
    return [build_provider(config) for config in ordered]
