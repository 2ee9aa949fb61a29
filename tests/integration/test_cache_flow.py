"""
Integration tests for cached reads and invalidation across handlers.
"""

import asyncio

import pytest
from fastapi.testclient import TestClient

from service_chat.app.caching.cache_aside import CACHE_MISS, get_cache_status
from service_chat.app.caching.cache_manager import ChatCacheManager
from service_chat.app.caching.memory_cache import MemoryCache
from service_chat.app.main import ChatService
from shared.test_helpers import FakeClock, FakeSessionStore, TestDataFactory


class TestCacheFlow:
    """End-to-end cache flows."""

    @pytest.fixture
    def user(self):
        return TestDataFactory.create_test_user("u1")

    @pytest.fixture
    def store(self, user):
        store = FakeSessionStore()
        store.add_user(user)
        store.add_session(TestDataFactory.create_session(user.user_id, "Existing"))
        return store

    @pytest.mark.asyncio
    async def test_create_then_refetch_is_a_miss(self, store, user):
        """Handler A reads, handler B creates and invalidates, handler A reads fresh."""
        manager = ChatCacheManager(store)

        listing = await manager.get_user_sessions(user.user_id, 1, 20)
        assert len(listing) == 1

        await store.create_session(user.user_id, "New one")
        manager.invalidate_user_sessions(user.user_id)

        refreshed = await manager.get_user_sessions(user.user_id, 1, 20)
        assert refreshed is not listing
        assert len(refreshed) == 2
        assert store.calls["list_sessions"] == 2

    @pytest.mark.asyncio
    async def test_read_overtaken_by_create_is_not_cached(self, store, user):
        """A list read in flight while a session is created must not be served afterwards."""
        manager = ChatCacheManager(store)
        original = store.list_sessions
        rows_read = asyncio.Event()
        release = asyncio.Event()

        async def slow_list_sessions(user_id, page, limit):
            rows = await original(user_id, page, limit)
            rows_read.set()
            await release.wait()
            return rows

        store.list_sessions = slow_list_sessions
        pending = asyncio.create_task(manager.get_user_sessions(user.user_id, 1, 20))
        await rows_read.wait()

        await store.create_session(user.user_id, "Created mid-read")
        manager.invalidate_user_sessions(user.user_id)
        release.set()
        assert len(await pending) == 1

        store.list_sessions = original
        listing = await manager.get_user_sessions(user.user_id, 1, 20)

        assert get_cache_status() == CACHE_MISS
        assert len(listing) == 2

    @pytest.mark.asyncio
    async def test_forgotten_invalidation_serves_stale_until_ttl(self, store, user):
        """A mutation without invalidation stays invisible until expiry."""
        clock = FakeClock()
        manager = ChatCacheManager(store, cache=MemoryCache(clock=clock), sessions_ttl=30)

        listing = await manager.get_user_sessions(user.user_id, 1, 20)
        await store.create_session(user.user_id, "Invisible for now")

        clock.advance(29)
        stale = await manager.get_user_sessions(user.user_id, 1, 20)
        assert stale is listing
        assert len(stale) == 1

        clock.advance(2)
        fresh = await manager.get_user_sessions(user.user_id, 1, 20)
        assert len(fresh) == 2

    @pytest.mark.asyncio
    async def test_invalidation_leaves_other_entries(self, store, user):
        """Invalidating sessions keeps the permission entry for the same user."""
        manager = ChatCacheManager(store)
        manager.cache.set(f"user_sessions:{user.user_id}:1:20", [{"id": "x"}], 30)
        manager.cache.set(f"session_permission:{user.user_id}:s1", {"has_permission": True}, 60)

        manager.invalidate_user_sessions(user.user_id)

        assert manager.cache.get(f"user_sessions:{user.user_id}:1:20") is None
        assert manager.cache.get(f"session_permission:{user.user_id}:s1") == {"has_permission": True}

    def test_http_flow(self, store, user):
        """Read, mutate and read again through the HTTP routes."""
        service = ChatService(store=store)
        headers = {"Authorization": f"Bearer {user.token}"}

        with TestClient(service.app) as client:
            first = client.get("/api/sessions", headers=headers)
            cached = client.get("/api/sessions", headers=headers)
            created = client.post("/api/sessions", json={"title": "Fresh"}, headers=headers)
            session_id = created.json()["data"]["id"]
            client.post(
                "/api/messages",
                json={"session_id": session_id, "role": "user", "content": "hi"},
                headers=headers,
            )
            messages = client.get(f"/api/messages?session_id={session_id}", headers=headers)
            after = client.get("/api/sessions", headers=headers)

        assert first.headers["X-Cache"] == "MISS"
        assert cached.headers["X-Cache"] == "HIT"
        assert created.status_code == 201
        assert [m["content"] for m in messages.json()["data"]["messages"]] == ["hi"]
        assert after.headers["X-Cache"] == "MISS"
        assert {s["id"] for s in after.json()["data"]["sessions"]} >= {session_id}
