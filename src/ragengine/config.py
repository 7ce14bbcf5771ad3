"""Runtime configuration for the ragengine services."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_SYSTEM_PROMPT = (
    "You are a retrieval augmented assistant. Answer the question using only the provided context. "
    "Cite sources using [index] references. If the context is empty, say you do not have enough information.\n\n"
    "Context:\n{context}\n\n"
    "Question: {question}\n"
    "Answer:"
)


class ProviderSettings(BaseModel):
    """Static description of one generation backend."""

    model_config = ConfigDict(frozen=True)

    provider_id: str
    kind: Literal["template", "transformers", "litellm"] = "template"
    model: str | None = None
    input_price_per_1k: float = Field(default=0.0, ge=0.0)
    output_price_per_1k: float = Field(default=0.0, ge=0.0)
    token_counter: Literal["whitespace", "characters", "native"] = "whitespace"
    priority: int = 0
    temperature: float = 0.3
    device: str | None = None


class Settings(BaseSettings):
    """Environment-backed configuration model."""

    model_config = SettingsConfigDict(env_prefix="ragengine_", env_file=".env", case_sensitive=False)

    environment: Literal["dev", "test", "prod"] = "dev"

    # Chunking
    chunk_size: int = 600
    chunk_overlap: int = 100

    # Embeddings
    embedding_model: str = "BAAI/bge-small-en-v1.5"
    embedding_dim: int = 384
    use_model_embeddings: bool = False

    # Corpus index
    index_backend: Literal["memory", "chroma"] = "memory"
    chroma_persist_dir: Path | None = None
    chroma_collection: str = "ragengine-default"
    chroma_host: str | None = None
    chroma_port: int | None = None
    chroma_ssl: bool = False

    # Retrieval
    top_k: int = 5
    max_top_k: int = 10
    retrieval_timeout_seconds: float = 2.0
    allow_ungrounded_answers: bool = False
    rerank_lexical: bool = False
    lexical_blend_weight: float = 0.35

    # Answer cache
    cache_backend: Literal["memory", "sqlite", "none"] = "memory"
    cache_path: Path = Path("./.ragengine-cache.sqlite3")
    cache_ttl_seconds: float = 3600.0
    cache_timeout_seconds: float = 0.05
    cache_sweep_interval_seconds: float | None = None

    # Generation
    providers: tuple[ProviderSettings, ...] = (ProviderSettings(provider_id="template"),)
    max_new_tokens: int = 512
    provider_timeout_seconds: float = 30.0
    max_retries: int = 3
    backoff_base_seconds: float = 0.5
    backoff_max_seconds: float = 8.0

    # Request
    request_deadline_seconds: float = 60.0
    system_prompt: str = DEFAULT_SYSTEM_PROMPT

    @field_validator("providers")
    @classmethod
    def _unique_provider_ids(cls, providers: tuple[ProviderSettings, ...]) -> tuple[ProviderSettings, ...]:
        if not providers:
            raise ValueError("at least one provider must be configured")
        ids = [provider.provider_id for provider in providers]
        duplicates = sorted({provider_id for provider_id in ids if ids.count(provider_id) > 1})
        if duplicates:
            raise ValueError(f"duplicate provider ids: {duplicates}")
        return providers

    @property
    def is_test(self) -> bool:
        return self.environment == "test"

    @property
    def ordered_providers(self) -> tuple[ProviderSettings, ...]:
        """Providers in fallback order; ties keep declaration order."""
        return tuple(sorted(self.providers, key=lambda provider: provider.priority))


@lru_cache(maxsize=1)
def _cached_settings() -> Settings:
    return Settings()


def get_settings(override: Optional[dict[str, object]] = None) -> Settings:
    """Return settings, optionally overriding values without mutating cache."""

    if override:
        return Settings(**override)
    return _cached_settings()
