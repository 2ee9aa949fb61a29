"""
Chat cache manager: cached backend reads plus their invalidation helpers.
"""

import asyncio
from typing import Any, Dict, List, Optional, TYPE_CHECKING

from shared.logging import get_logger
from . import keys
from .cache_aside import CACHE_HIT, with_cache
from .invalidation import CacheInvalidation
from .memory_cache import MemoryCache

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from ..adapters.session_store import SessionStore
    from shared.metrics import MetricsCollector


DEFAULT_MAX_SIZE = 500
DEFAULT_SESSIONS_TTL = 30
DEFAULT_MESSAGES_TTL = 60
DEFAULT_PERMISSION_TTL = 60
DEFAULT_CLEANUP_INTERVAL = 60


class ChatCacheManager:
    """Owns the process-wide response cache for the chat service."""

    def __init__(
        self,
        store: "SessionStore",
        *,
        cache: Optional[MemoryCache] = None,
        metrics: Optional["MetricsCollector"] = None,
        max_size: int = DEFAULT_MAX_SIZE,
        sessions_ttl: float = DEFAULT_SESSIONS_TTL,
        messages_ttl: float = DEFAULT_MESSAGES_TTL,
        permission_ttl: float = DEFAULT_PERMISSION_TTL,
        cleanup_interval: float = DEFAULT_CLEANUP_INTERVAL,
    ):
        self.store = store
        self.metrics = metrics
        self.cache = cache if cache is not None else MemoryCache(max_size=max_size, name="chat")
        self.invalidation = CacheInvalidation(self.cache, metrics)
        self.cleanup_interval = cleanup_interval
        self.logger = get_logger("chat.cache_manager")

        self._hits = 0
        self._misses = 0
        self._cleanup_task: Optional[asyncio.Task] = None

        self.get_user_sessions = with_cache(
            self._fetch_user_sessions,
            keys.user_sessions_key,
            sessions_ttl,
            cache=self.cache,
            metrics=metrics,
            cache_type=keys.USER_SESSIONS,
            tags_fn=lambda user_id, page, limit: [keys.entity_tag(keys.USER_SESSIONS, user_id)],
            on_result=self._count,
        )
        self.get_message_history = with_cache(
            self._fetch_message_history,
            keys.message_history_key,
            messages_ttl,
            cache=self.cache,
            metrics=metrics,
            cache_type=keys.MESSAGE_HISTORY,
            tags_fn=lambda session_id, page, limit: [keys.entity_tag(keys.MESSAGE_HISTORY, session_id)],
            on_result=self._count,
        )
        self.check_session_permission = with_cache(
            self._fetch_session_permission,
            keys.session_permission_key,
            permission_ttl,
            cache=self.cache,
            metrics=metrics,
            cache_type=keys.SESSION_PERMISSION,
            tags_fn=lambda user_id, session_id: [keys.session_permission_key(user_id, session_id)],
            on_result=self._count,
        )

    async def _fetch_user_sessions(self, user_id: str, page: int, limit: int) -> List[Dict[str, Any]]:
        return await self.store.list_sessions(user_id, page, limit)

    async def _fetch_message_history(self, session_id: str, page: int, limit: int) -> List[Dict[str, Any]]:
        return await self.store.list_messages(session_id, page, limit)

    async def _fetch_session_permission(self, user_id: str, session_id: str) -> Dict[str, Any]:
        session = await self.store.get_session(user_id, session_id)
        if session is None:
            return {"has_permission": False, "error": "Access to this session is denied", "status": 403}
        return {"has_permission": True}

    def _count(self, status: str) -> None:
        if status == CACHE_HIT:
            self._hits += 1
        else:
            self._misses += 1

    # Invalidation shortcuts used by mutating handlers

    def invalidate_user_sessions(self, user_id: str) -> int:
        return self.invalidation.invalidate_user_sessions(user_id)

    def invalidate_message_history(self, session_id: str) -> int:
        return self.invalidation.invalidate_message_history(session_id)

    def invalidate_session_permission(self, user_id: str, session_id: str) -> bool:
        return self.invalidation.invalidate_session_permission(user_id, session_id)

    def invalidate_session(self, user_id: str, session_id: str) -> None:
        """Everything a deleted session can leave behind."""
        self.invalidate_user_sessions(user_id)
        self.invalidate_message_history(session_id)
        self.invalidate_session_permission(user_id, session_id)

    # Lifecycle

    async def start(self) -> None:
        """Start the periodic expiry sweep."""
        if self._cleanup_task is not None and not self._cleanup_task.done():
            return
        self._cleanup_task = asyncio.create_task(self._cleanup_loop())
        self.logger.info("Cache cleanup started", interval=self.cleanup_interval)

    async def stop(self) -> None:
        """Stop the sweep and drop all cached entries."""
        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            self._cleanup_task = None
        self.cache.clear()
        self.logger.info("Cache cleanup stopped")

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self.cleanup_interval)
            try:
                self.run_cleanup()
            except Exception as exc:  # pragma: no cover - keep the sweep alive
                self.logger.error("Cache cleanup failed", error=str(exc))

    def run_cleanup(self) -> int:
        """Sweep expired entries once."""
        removed = self.cache.cleanup()
        if self.metrics:
            self.metrics.set_gauge("cache_entries", len(self.cache), cache=self.cache.name)
        if removed:
            self.logger.info("Expired cache entries swept", removed=removed, remaining=len(self.cache))
        return removed

    def get_cache_stats(self) -> Dict[str, Any]:
        """Cache contents plus hit/miss counters since start."""
        stats = self.cache.get_stats()
        total = self._hits + self._misses
        stats.update({
            "hits": self._hits,
            "misses": self._misses,
            "total_requests": total,
            "hit_rate": self._hits / total if total else 0.0,
        })
        return stats
