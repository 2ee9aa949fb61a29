"""
Named invalidation helpers used by mutating route handlers.
"""

from typing import Optional, TYPE_CHECKING

from shared.logging import get_logger
from . import keys
from .memory_cache import MemoryCache

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


class CacheInvalidation:
    """Remove cached reads that a mutation has made stale."""

    def __init__(self, cache: MemoryCache, metrics: Optional["MetricsCollector"] = None):
        self.cache = cache
        self.metrics = metrics
        self.logger = get_logger("chat.cache.invalidation")

    def invalidate_user_sessions(self, user_id: str) -> int:
        """Drop every cached session-list page for ``user_id``."""
        removed = self._invalidate_family(
            keys.entity_tag(keys.USER_SESSIONS, user_id),
            keys.user_sessions_prefix(user_id),
        )
        self._record("user_sessions", removed, user_id=user_id)
        return removed

    def invalidate_message_history(self, session_id: str) -> int:
        """Drop every cached message-history page for ``session_id``."""
        removed = self._invalidate_family(
            keys.entity_tag(keys.MESSAGE_HISTORY, session_id),
            keys.message_history_prefix(session_id),
        )
        self._record("message_history", removed, session_id=session_id)
        return removed

    def invalidate_session_permission(self, user_id: str, session_id: str) -> bool:
        """Drop the cached permission check for one user/session pair."""
        key = keys.session_permission_key(user_id, session_id)
        # The entry is tagged with its own key so an in-flight check is not stored.
        removed = self.cache.invalidate_tag(key) > 0
        removed = self.cache.delete(key) or removed
        self._record("session_permission", int(removed), user_id=user_id, session_id=session_id)
        return removed

    def clear_all(self) -> None:
        self.cache.clear()
        self._record("all", 0)

    def _invalidate_family(self, tag: str, prefix: str) -> int:
        # The tag index covers entries stored through the cached queries;
        # the prefix sweep also catches entries set directly without tags.
        removed = self.cache.invalidate_tag(tag)
        removed += self.cache.delete_prefix(prefix)
        return removed

    def _record(self, scope: str, removed: int, **context) -> None:
        self.logger.info("Cache invalidated", scope=scope, removed=removed, **context)
        if self.metrics:
            self.metrics.record_invalidation(scope)
