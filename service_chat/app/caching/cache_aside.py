"""
Cache-aside wrapper for async data fetches.
"""

import functools
from contextvars import ContextVar
from typing import Any, Awaitable, Callable, Iterable, Optional, TYPE_CHECKING, TypeVar

from shared.logging import get_logger
from .memory_cache import MemoryCache, DEFAULT_TTL_SECONDS

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


CACHE_HIT = "HIT"
CACHE_MISS = "MISS"

R = TypeVar("R")

# Outcome of the most recent cached lookup in the current request context.
cache_status_var: ContextVar[Optional[str]] = ContextVar("cache_status", default=None)

logger = get_logger("chat.cache.aside")


def get_cache_status() -> Optional[str]:
    """Return ``"HIT"``, ``"MISS"`` or ``None`` if no cached call ran."""
    return cache_status_var.get()


def reset_cache_status() -> None:
    cache_status_var.set(None)


def with_cache(
    fn: Callable[..., Awaitable[R]],
    key_fn: Callable[..., str],
    ttl_seconds: float = DEFAULT_TTL_SECONDS,
    *,
    cache: MemoryCache,
    metrics: Optional["MetricsCollector"] = None,
    cache_type: str = "default",
    tags_fn: Optional[Callable[..., Iterable[str]]] = None,
    on_result: Optional[Callable[[str], None]] = None,
) -> Callable[..., Awaitable[R]]:
    """
    Wrap ``fn`` so results are served from ``cache`` while fresh.

    ``key_fn`` and ``tags_fn`` receive the same arguments as ``fn``. On a
    miss ``fn`` is awaited and its result stored for ``ttl_seconds``, unless
    one of its tags was invalidated while ``fn`` was running; the caller
    still gets the result but it is not cached. If ``fn`` raises, the
    exception propagates and nothing is stored.

    Concurrent misses on the same key are not de-duplicated: each caller
    that misses runs ``fn`` and the last one to finish wins the slot.
    """

    @functools.wraps(fn)
    async def wrapper(*args: Any, **kwargs: Any) -> R:
        key = key_fn(*args, **kwargs)

        cached = cache.get(key)
        if cached is not None:
            _record(CACHE_HIT, cache_type, metrics, on_result)
            logger.debug("Cache hit", cache_type=cache_type, key=key)
            return cached

        tags = tuple(tags_fn(*args, **kwargs)) if tags_fn else ()
        generation = cache.generation(tags)

        result = await fn(*args, **kwargs)

        stored = cache.set_if_current(key, result, ttl_seconds, tags, generation)
        _record(CACHE_MISS, cache_type, metrics, on_result)
        if stored:
            logger.debug("Cache miss", cache_type=cache_type, key=key, ttl=ttl_seconds)
        else:
            logger.debug("Result invalidated during fetch, not cached", cache_type=cache_type, key=key)
        return result

    wrapper.cache = cache  # type: ignore[attr-defined]
    wrapper.key_fn = key_fn  # type: ignore[attr-defined]
    return wrapper


def _record(
    status: str,
    cache_type: str,
    metrics: Optional["MetricsCollector"],
    on_result: Optional[Callable[[str], None]],
) -> None:
    cache_status_var.set(status)
    if on_result is not None:
        on_result(status)
    if metrics is None:
        return
    if status == CACHE_HIT:
        metrics.record_cache_hit(cache_type)
    else:
        metrics.record_cache_miss(cache_type)
