"""
Chat API service: sessions and messages with an in-process response cache.
"""

import uuid
from typing import Any, Dict, Literal, Optional, Tuple

from fastapi import Depends, Query, Response
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, ConfigDict, Field, field_validator

from shared.base_service import BaseService
from shared.config import ServiceConfig
from shared.errors import AuthenticationError, AuthorizationError, ValidationError
from shared.logging import set_user_context
from .adapters.session_store import SessionStore
from .caching.cache_aside import get_cache_status, reset_cache_status
from .caching.cache_manager import ChatCacheManager
from .caching.headers import apply_cache_headers
from .caching.memory_cache import MemoryCache


class SessionCreateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    title: str = Field(min_length=1)

    @field_validator("title")
    @classmethod
    def strip_title(cls, value: str) -> str:
        return _non_blank(value, "title", 200)


class SessionUpdateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    action: Optional[Literal["delete"]] = None
    title: Optional[str] = None

    @field_validator("title")
    @classmethod
    def strip_title(cls, value: Optional[str]) -> Optional[str]:
        return None if value is None else _non_blank(value, "title", 200)


class MessageCreateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    session_id: str
    role: Literal["user", "ai"]
    content: str
    work_stage: Optional[str] = Field(default=None, max_length=100)

    @field_validator("content")
    @classmethod
    def strip_content(cls, value: str) -> str:
        return _non_blank(value, "content", 10000)


def _non_blank(value: str, field: str, max_length: int) -> str:
    stripped = value.strip()
    if not stripped:
        raise ValueError(f"{field} must not be blank")
    if len(stripped) > max_length:
        raise ValueError(f"{field} must be at most {max_length} characters")
    return stripped


def _require_uuid(value: str, field: str = "session_id") -> str:
    try:
        uuid.UUID(value)
    except (ValueError, AttributeError, TypeError):
        raise ValidationError("Invalid session id", details={field: value}) from None
    return value


def _clamp_page(page: int, limit: int, max_limit: int) -> Tuple[int, int]:
    return max(1, page), min(max_limit, max(1, limit))


def _success(data: Any, status_code: int = 200) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": True, "data": data})


bearer_scheme = HTTPBearer(auto_error=False)


class ChatService(BaseService):
    """Chat API service implementation."""

    def __init__(self, store: Optional[SessionStore] = None, config: Optional[ServiceConfig] = None):
        super().__init__("chat", 8000, config=config)
        self.store = store or SessionStore(
            self.config.backend_url,
            self.config.backend_api_key,
            timeout=self.config.backend_timeout,
        )
        self.cache_manager = ChatCacheManager(
            self.store,
            cache=MemoryCache(
                max_size=self.config.cache_max_size,
                default_ttl=self.config.cache_default_ttl,
                name="chat",
            ),
            metrics=self.metrics,
            sessions_ttl=self.config.sessions_cache_ttl,
            messages_ttl=self.config.messages_cache_ttl,
            permission_ttl=self.config.permission_cache_ttl,
            cleanup_interval=self.config.cache_cleanup_interval,
        )

        self._setup_chat_routes()
        self.app.state.chat_service = self

    async def on_startup(self) -> None:
        await self.cache_manager.start()

    async def on_shutdown(self) -> None:
        await self.cache_manager.stop()

    async def _check_dependencies(self) -> Dict[str, Any]:
        stats = self.cache_manager.cache.get_stats()
        return {"cache": {"size": stats["size"], "max_size": stats["max_size"]}}

    async def _current_user(
        self,
        credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    ) -> Dict[str, Any]:
        if credentials is None or not credentials.credentials:
            raise AuthenticationError("Missing bearer token")

        user = await self.store.get_user(credentials.credentials)
        if not user or not user.get("id"):
            raise AuthenticationError("Invalid or expired token")

        set_user_context(user_id=user["id"])
        return user

    async def _require_permission(self, user_id: str, session_id: str) -> None:
        result = await self.cache_manager.check_session_permission(user_id, session_id)
        if not result.get("has_permission"):
            raise AuthorizationError(
                result.get("error", "Access to this session is denied"),
                details={"session_id": session_id},
            )

    def _setup_chat_routes(self):
        """Set up session and message routes."""
        current_user = self._current_user

        @self.app.get("/api/sessions")
        async def list_sessions(
            response: Response,
            page: int = Query(1),
            limit: int = Query(self.config.sessions_page_size),
            user: Dict[str, Any] = Depends(current_user),
        ):
            """List the caller's sessions, most recently updated first."""
            page, limit = _clamp_page(page, limit, self.config.sessions_max_page_size)
            reset_cache_status()
            sessions = await self.cache_manager.get_user_sessions(user["id"], page, limit)

            apply_cache_headers(response, "short", get_cache_status())
            return {
                "success": True,
                "data": {
                    "sessions": sessions or [],
                    "pagination": {"page": page, "limit": limit, "has_more": len(sessions) == limit},
                },
            }

        @self.app.post("/api/sessions")
        async def create_session(
            body: SessionCreateRequest,
            user: Dict[str, Any] = Depends(current_user),
        ):
            """Create a session for the caller."""
            session = await self.store.create_session(user["id"], body.title)
            self.cache_manager.invalidate_user_sessions(user["id"])
            return _success(session, status_code=201)

        @self.app.post("/api/sessions/{session_id}")
        async def update_or_delete_session(
            session_id: str,
            body: SessionUpdateRequest,
            user: Dict[str, Any] = Depends(current_user),
        ):
            """Rename a session, or delete it with ``{"action": "delete"}``."""
            _require_uuid(session_id)
            set_user_context(session_id=session_id)
            await self._require_permission(user["id"], session_id)

            if body.action == "delete":
                await self.store.delete_session(user["id"], session_id)
                self.cache_manager.invalidate_session(user["id"], session_id)
                return _success({"message": "Session deleted", "deleted_session_id": session_id})

            if body.title is None:
                raise ValidationError("No fields to update")

            session = await self.store.update_session(user["id"], session_id, body.title)
            self.cache_manager.invalidate_user_sessions(user["id"])
            self.cache_manager.invalidate_session_permission(user["id"], session_id)
            return _success(session)

        @self.app.get("/api/messages")
        async def list_messages(
            response: Response,
            session_id: str = Query(...),
            page: int = Query(1),
            limit: int = Query(self.config.messages_page_size),
            user: Dict[str, Any] = Depends(current_user),
        ):
            """Message history of one of the caller's sessions."""
            _require_uuid(session_id)
            set_user_context(session_id=session_id)
            page, limit = _clamp_page(page, limit, self.config.messages_max_page_size)
            await self._require_permission(user["id"], session_id)

            reset_cache_status()
            messages = await self.cache_manager.get_message_history(session_id, page, limit)

            apply_cache_headers(response, "short", get_cache_status())
            return {
                "success": True,
                "data": {
                    "session_id": session_id,
                    "messages": messages or [],
                    "pagination": {"page": page, "limit": limit, "has_more": len(messages) == limit},
                },
            }

        @self.app.post("/api/messages")
        async def create_message(
            body: MessageCreateRequest,
            user: Dict[str, Any] = Depends(current_user),
        ):
            """Append a message to one of the caller's sessions."""
            _require_uuid(body.session_id)
            set_user_context(session_id=body.session_id)
            await self._require_permission(user["id"], body.session_id)

            message = await self.store.create_message(
                body.session_id, body.role, body.content, body.work_stage
            )
            self.cache_manager.invalidate_message_history(body.session_id)
            # the session's updated_at moved, so list order changed
            self.cache_manager.invalidate_user_sessions(user["id"])
            return _success(message, status_code=201)

        @self.app.get("/api/cache/stats")
        async def cache_stats(
            response: Response,
            user: Dict[str, Any] = Depends(current_user),
        ):
            """Cache diagnostics."""
            apply_cache_headers(response, "none")
            return {"success": True, "data": self.cache_manager.get_cache_stats()}


def create_app(store: Optional[SessionStore] = None, config: Optional[ServiceConfig] = None):
    """Create FastAPI application."""
    service = ChatService(store=store, config=config)
    return service.app


if __name__ == "__main__":
    service = ChatService()
    service.run()
