"""Answer cache and its storage backends."""

from .backends import CacheBackend, CacheEntry, InMemoryCacheBackend, SQLiteCacheBackend
from .service import AnswerCache, cache_key, normalize_question

__all__ = [
    "AnswerCache",
    "CacheBackend",
    "CacheEntry",
    "InMemoryCacheBackend",
    "SQLiteCacheBackend",
    "cache_key",
    "normalize_question",
]
