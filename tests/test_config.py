from __future__ import annotations

import pytest
from pydantic import ValidationError

from ragengine.config import DEFAULT_SYSTEM_PROMPT, ProviderSettings, Settings, get_settings


def test_defaults_embedding_model_and_dim():
    settings = get_settings({})
    assert settings.embedding_model == "BAAI/bge-small-en-v1.5"
    assert settings.embedding_dim == 384


def test_chunking_and_retrieval_defaults():
    settings = get_settings({})
    assert (settings.chunk_size, settings.chunk_overlap) == (600, 100)
    assert settings.top_k == 5
    assert settings.allow_ungrounded_answers is False
    assert "{context}" in settings.system_prompt
    assert settings.system_prompt == DEFAULT_SYSTEM_PROMPT


def test_override_does_not_touch_cached_settings():
    cached = get_settings()
    override = get_settings({"top_k": 9, "environment": "test"})
    assert override.top_k == 9
    assert override.is_test
    assert get_settings() is cached


def test_environment_variables_are_read(monkeypatch):
    monkeypatch.setenv("RAGENGINE_MAX_RETRIES", "5")
    monkeypatch.setenv("RAGENGINE_CACHE_BACKEND", "sqlite")
    settings = Settings()
    assert settings.max_retries == 5
    assert settings.cache_backend == "sqlite"


def test_providers_are_ordered_by_priority():
    settings = Settings(
        providers=(
            ProviderSettings(provider_id="remote", kind="litellm", priority=5),
            ProviderSettings(provider_id="local", priority=1),
            ProviderSettings(provider_id="backup", priority=5),
        )
    )
    assert [provider.provider_id for provider in settings.ordered_providers] == ["local", "remote", "backup"]


def test_provider_prices_must_not_be_negative():
    with pytest.raises(ValidationError):
        ProviderSettings(provider_id="bad", input_price_per_1k=-1)


@pytest.mark.parametrize(
    "providers",
    [
        (),
        (ProviderSettings(provider_id="same"), ProviderSettings(provider_id="same", kind="litellm")),
    ],
)
def test_provider_list_must_be_non_empty_and_unique(providers):
    with pytest.raises(ValidationError):
        Settings(providers=providers)
