"""
Cache key construction.

Keys are ``<namespace>:<part>:<part>...``. The separator is reserved: a part
that contains it (or is empty) is rejected instead of escaped, so distinct
parameter tuples can never collide on the same key.
"""

from typing import Any

from shared.errors import CacheKeyError


SEPARATOR = ":"

USER_SESSIONS = "user_sessions"
MESSAGE_HISTORY = "message_history"
SESSION_PERMISSION = "session_permission"


def _encode_part(part: Any) -> str:
    if isinstance(part, bool):
        # bool is an int subclass; keep True distinct from 1
        text = "true" if part else "false"
    else:
        text = str(part)

    if not text:
        raise CacheKeyError("Cache key parts must be non-empty", details={"part": text})
    if SEPARATOR in text:
        raise CacheKeyError(
            f"Cache key parts must not contain '{SEPARATOR}'",
            details={"part": text},
        )
    return text


def make_key(namespace: str, *parts: Any) -> str:
    """Join a namespace and its parameters into a cache key."""
    return SEPARATOR.join([_encode_part(namespace)] + [_encode_part(part) for part in parts])


def make_prefix(namespace: str, *parts: Any) -> str:
    """Prefix matching every key that starts with exactly these parts."""
    return make_key(namespace, *parts) + SEPARATOR


def entity_tag(namespace: str, entity_id: Any) -> str:
    """Reverse-index tag grouping all keys of one entity in a namespace."""
    return make_key(namespace, entity_id)


def user_sessions_key(user_id: str, page: int, limit: int) -> str:
    return make_key(USER_SESSIONS, user_id, page, limit)


def user_sessions_prefix(user_id: str) -> str:
    return make_prefix(USER_SESSIONS, user_id)


def message_history_key(session_id: str, page: int, limit: int) -> str:
    return make_key(MESSAGE_HISTORY, session_id, page, limit)


def message_history_prefix(session_id: str) -> str:
    return make_prefix(MESSAGE_HISTORY, session_id)


def session_permission_key(user_id: str, session_id: str) -> str:
    return make_key(SESSION_PERMISSION, user_id, session_id)
