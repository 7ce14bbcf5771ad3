"""Error taxonomy shared by the ragengine components."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Kinds of failure a request can end with."""

    INVALID_CONFIGURATION = "InvalidConfiguration"
    RETRIEVAL_FAILED = "RetrievalFailed"
    GENERATION_UNAVAILABLE = "GenerationUnavailable"
    DEADLINE_EXCEEDED = "DeadlineExceeded"
    CANCELLED = "Cancelled"
    CACHE_ERROR = "CacheError"


_RETRYABLE_KINDS = frozenset({ErrorKind.DEADLINE_EXCEEDED, ErrorKind.GENERATION_UNAVAILABLE})


class RagEngineError(Exception):
    """Base class for errors raised inside the engine."""

    kind: ErrorKind = ErrorKind.INVALID_CONFIGURATION

    def __init__(self, message: str, *, provider_id: str | None = None, attempt_count: int = 0) -> None:
        super().__init__(message)
        self.message = message
        self.provider_id = provider_id
        self.attempt_count = attempt_count

    def to_structured(self) -> "StructuredError":
        return StructuredError(
            kind=self.kind,
            message=self.message,
            provider_id=self.provider_id,
            attempt_count=self.attempt_count,
        )


class InvalidConfiguration(RagEngineError):
    """Raised for chunking, prompt or provider misconfiguration."""

    kind = ErrorKind.INVALID_CONFIGURATION


class RetrievalFailed(RagEngineError):
    """Raised when grounding is mandatory and no context could be retrieved."""

    kind = ErrorKind.RETRIEVAL_FAILED


class GenerationUnavailable(RagEngineError):
    """Raised when every configured provider has been exhausted."""

    kind = ErrorKind.GENERATION_UNAVAILABLE


class DeadlineExceeded(RagEngineError):
    """Raised when the per-request deadline expires."""

    kind = ErrorKind.DEADLINE_EXCEEDED


class Cancelled(RagEngineError):
    """Raised when the caller cancels a request."""

    kind = ErrorKind.CANCELLED


class CacheError(RagEngineError):
    """Raised by the answer cache when a write fails. Never reaches callers."""

    kind = ErrorKind.CACHE_ERROR


class CorpusIndexError(RuntimeError):
    """Raised when the corpus index cannot serve an upsert or query."""


class ProviderError(RuntimeError):
    """Failure reported by a generation provider."""

    retryable: bool = False

    def __init__(self, provider_id: str, message: str, *, retryable: bool | None = None) -> None:
        super().__init__(f"{provider_id}: {message}")
        self.provider_id = provider_id
        self.message = message
        if retryable is not None:
            self.retryable = retryable


class ProviderTimeout(ProviderError):
    retryable = True


class ProviderRateLimited(ProviderError):
    retryable = True


class ProviderUnavailable(ProviderError):
    """Transient server-side failure (5xx, connection reset)."""

    retryable = True


class InvalidProviderRequest(ProviderError):
    retryable = False


class ProviderAuthenticationError(ProviderError):
    retryable = False


@dataclass(frozen=True)
class StructuredError:
    """Error value returned across the public ``answer`` boundary."""

    kind: ErrorKind
    message: str
    provider_id: str | None = None
    attempt_count: int = 0

    @property
    def retryable(self) -> bool:
        """Whether the caller may retry the whole request."""
        return self.kind in _RETRYABLE_KINDS

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "provider_id": self.provider_id,
            "attempt_count": self.attempt_count,
            "retryable": self.retryable,
        }


__all__ = [
    "CacheError",
    "Cancelled",
    "CorpusIndexError",
    "DeadlineExceeded",
    "ErrorKind",
    "GenerationUnavailable",
    "InvalidConfiguration",
    "InvalidProviderRequest",
    "ProviderAuthenticationError",
    "ProviderError",
    "ProviderRateLimited",
    "ProviderTimeout",
    "ProviderUnavailable",
    "RagEngineError",
    "RetrievalFailed",
    "StructuredError",
]
