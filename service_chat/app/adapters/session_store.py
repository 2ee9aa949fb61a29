"""
Backend-as-a-service client for chat sessions and messages.

Talks to a PostgREST-style REST API (``/rest/v1``) and its auth endpoint
(``/auth/v1/user``). Pagination uses the ``Range`` header with
``offset = (page - 1) * limit``.
"""

from typing import Any, Dict, List, Optional

import httpx

from shared.logging import get_logger
from shared.errors import AuthenticationError, ExternalServiceError, NotFoundError


SESSION_COLUMNS = "id,user_id,title,created_at,updated_at"
MESSAGE_COLUMNS = "role,content,work_stage,timestamp"


class SessionStore:
    """Client for the chat_sessions / chat_messages tables."""

    def __init__(
        self,
        backend_url: str,
        api_key: Optional[str] = None,
        *,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = backend_url.rstrip('/')
        self.api_key = api_key
        self.timeout = timeout
        self.transport = transport
        self.logger = get_logger("chat.session_store")

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self.transport)

    def _headers(self, token: Optional[str] = None, **extra: str) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["apikey"] = self.api_key
        bearer = token or self.api_key
        if bearer:
            headers["Authorization"] = f"Bearer {bearer}"
        headers.update(extra)
        return headers

    @staticmethod
    def _range(page: int, limit: int) -> Dict[str, str]:
        offset = (page - 1) * limit
        return {"Range-Unit": "items", "Range": f"{offset}-{offset + limit - 1}"}

    async def get_user(self, token: str) -> Dict[str, Any]:
        """Resolve an access token to the authenticated user."""
        try:
            async with self._client() as client:
                response = await client.get(
                    f"{self.base_url}/auth/v1/user",
                    headers=self._headers(token),
                )
        except httpx.HTTPError as e:
            self.logger.error("Backend auth HTTP error", error=str(e))
            raise ExternalServiceError("backend", "unavailable", details={"http_error": str(e)})

        if response.status_code == 200:
            return response.json()
        if response.status_code in (401, 403):
            raise AuthenticationError("Invalid or expired token")
        raise self._error(response, "get_user")

    async def list_sessions(self, user_id: str, page: int, limit: int) -> List[Dict[str, Any]]:
        """Sessions owned by ``user_id``, most recently updated first."""
        params = {
            "select": SESSION_COLUMNS,
            "user_id": f"eq.{user_id}",
            "order": "updated_at.desc",
        }
        return await self._get_rows("chat_sessions", params, self._range(page, limit))

    async def get_session(self, user_id: str, session_id: str) -> Optional[Dict[str, Any]]:
        """The session if ``user_id`` owns it, otherwise ``None``."""
        params = {
            "select": "id,user_id",
            "id": f"eq.{session_id}",
            "user_id": f"eq.{user_id}",
        }
        rows = await self._get_rows("chat_sessions", params)
        return rows[0] if rows else None

    async def create_session(self, user_id: str, title: str) -> Dict[str, Any]:
        rows = await self._write(
            "POST",
            "chat_sessions",
            {"select": SESSION_COLUMNS},
            {"user_id": user_id, "title": title},
        )
        return rows[0]

    async def update_session(self, user_id: str, session_id: str, title: str) -> Dict[str, Any]:
        params = {
            "select": SESSION_COLUMNS,
            "id": f"eq.{session_id}",
            "user_id": f"eq.{user_id}",
        }
        rows = await self._write("PATCH", "chat_sessions", params, {"title": title})
        if not rows:
            raise NotFoundError("Session not found", details={"session_id": session_id})
        return rows[0]

    async def delete_session(self, user_id: str, session_id: str) -> None:
        """Delete a session; its messages go with it via cascade."""
        params = {"id": f"eq.{session_id}", "user_id": f"eq.{user_id}"}
        await self._write("DELETE", "chat_sessions", params)

    async def list_messages(self, session_id: str, page: int, limit: int) -> List[Dict[str, Any]]:
        """Messages of a session in chronological order."""
        params = {
            "select": MESSAGE_COLUMNS,
            "session_id": f"eq.{session_id}",
            "order": "timestamp.asc",
        }
        return await self._get_rows("chat_messages", params, self._range(page, limit))

    async def create_message(
        self,
        session_id: str,
        role: str,
        content: str,
        work_stage: Optional[str] = None,
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {"session_id": session_id, "role": role, "content": content}
        if work_stage is not None:
            body["work_stage"] = work_stage
        rows = await self._write("POST", "chat_messages", {"select": "id," + MESSAGE_COLUMNS}, body)
        return rows[0]

    async def _get_rows(
        self,
        table: str,
        params: Dict[str, str],
        extra_headers: Optional[Dict[str, str]] = None,
    ) -> List[Dict[str, Any]]:
        url = f"{self.base_url}/rest/v1/{table}"
        try:
            async with self._client() as client:
                response = await client.get(url, params=params, headers=self._headers(**(extra_headers or {})))
        except httpx.HTTPError as e:
            self.logger.error("Backend HTTP error", table=table, error=str(e))
            raise ExternalServiceError("backend", "unavailable", details={"http_error": str(e)})

        # 206 is a partial (ranged) result
        if response.status_code in (200, 206):
            return response.json() or []
        if response.status_code == 416:
            # range past the last row
            return []
        raise self._error(response, f"select {table}")

    async def _write(
        self,
        method: str,
        table: str,
        params: Dict[str, str],
        body: Optional[Dict[str, Any]] = None,
    ) -> List[Dict[str, Any]]:
        url = f"{self.base_url}/rest/v1/{table}"
        headers = self._headers(Prefer="return=representation")
        try:
            async with self._client() as client:
                response = await client.request(method, url, params=params, json=body, headers=headers)
        except httpx.HTTPError as e:
            self.logger.error("Backend HTTP error", table=table, method=method, error=str(e))
            raise ExternalServiceError("backend", "unavailable", details={"http_error": str(e)})

        if response.status_code in (200, 201):
            return response.json() or []
        if response.status_code == 204:
            return []
        raise self._error(response, f"{method.lower()} {table}")

    def _error(self, response: httpx.Response, operation: str) -> ExternalServiceError:
        self.logger.error(
            "Backend request failed",
            operation=operation,
            status_code=response.status_code,
        )
        return ExternalServiceError(
            "backend",
            f"{operation} failed with status {response.status_code}",
            details={"status_code": response.status_code},
        )
