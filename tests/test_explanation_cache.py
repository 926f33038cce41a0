"""Unit tests for the Redis-backed explanation cache."""
import json

import pytest
from unittest.mock import AsyncMock

from app.services.explanation_cache import ExplanationCache, pair_key


@pytest.fixture
def redis_client():
    client = AsyncMock()
    client.get.return_value = None
    return client


class TestPairKey:
    def test_order_independent(self):
        assert pair_key("user_a", "user_b") == pair_key("user_b", "user_a")

    def test_prefix(self):
        assert pair_key("b", "a") == "tastemate:explanation:a:b"


class TestGet:
    @pytest.mark.asyncio
    async def test_hit(self, redis_client):
        redis_client.get.return_value = json.dumps({"explanation": "Hi", "tags": ["A"]})
        cache = ExplanationCache(redis_client=redis_client)

        assert await cache.get("user_b", "user_a") == {"explanation": "Hi", "tags": ["A"]}
        redis_client.get.assert_awaited_once_with("tastemate:explanation:user_a:user_b")

    @pytest.mark.asyncio
    async def test_miss(self, redis_client):
        assert await ExplanationCache(redis_client=redis_client).get("a", "b") is None

    @pytest.mark.asyncio
    async def test_invalid_entry_is_miss(self, redis_client):
        redis_client.get.return_value = json.dumps({"tags": ["A"]})
        assert await ExplanationCache(redis_client=redis_client).get("a", "b") is None

    @pytest.mark.asyncio
    async def test_redis_error_is_miss(self, redis_client):
        redis_client.get.side_effect = ConnectionError("redis down")
        assert await ExplanationCache(redis_client=redis_client).get("a", "b") is None

    @pytest.mark.asyncio
    async def test_disabled_without_url(self):
        cache = ExplanationCache()
        assert not cache.enabled
        assert await cache.get("a", "b") is None
        assert await cache.put("a", "b", {"explanation": "x"}) is False
        assert await cache.ping() is False


class TestPut:
    @pytest.mark.asyncio
    async def test_setex_with_ttl(self, redis_client):
        cache = ExplanationCache(redis_client=redis_client, ttl_seconds=60)
        stored = await cache.put("user_b", "user_a", {"explanation": "Hi", "tags": []})

        assert stored is True
        redis_client.setex.assert_awaited_once_with(
            "tastemate:explanation:user_a:user_b",
            60,
            json.dumps({"explanation": "Hi", "tags": []}),
        )

    @pytest.mark.asyncio
    async def test_redis_error_returns_false(self, redis_client):
        redis_client.setex.side_effect = ConnectionError("redis down")
        cache = ExplanationCache(redis_client=redis_client)
        assert await cache.put("a", "b", {"explanation": "Hi"}) is False


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_ping_propagates_errors(self, redis_client):
        redis_client.ping.side_effect = ConnectionError("redis down")
        with pytest.raises(ConnectionError):
            await ExplanationCache(redis_client=redis_client).ping()

    @pytest.mark.asyncio
    async def test_close(self, redis_client):
        cache = ExplanationCache(redis_client=redis_client)
        await cache.close()
        redis_client.aclose.assert_awaited_once()
        assert not cache.enabled
