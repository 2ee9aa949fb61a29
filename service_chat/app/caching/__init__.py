"""
Chat API caching package.

Provides the in-process response cache used by the chat service to avoid
repeated backend reads of session lists, message history and permission
checks. Entries are short-lived and must be invalidated explicitly by the
handlers that mutate the underlying data.
"""

from .memory_cache import CacheEntry, MemoryCache
from .cache_aside import CACHE_HIT, CACHE_MISS, get_cache_status, reset_cache_status, with_cache
from .invalidation import CacheInvalidation
from .cache_manager import ChatCacheManager

__all__ = [
    "CACHE_HIT",
    "CACHE_MISS",
    "CacheEntry",
    "CacheInvalidation",
    "ChatCacheManager",
    "MemoryCache",
    "get_cache_status",
    "reset_cache_status",
    "with_cache",
]
