"""
Tastemate — Explanation cache (Redis).

Stores generated compatibility explanations keyed by the *unordered* user
pair, so A→B and B→A share one entry.  Caching is best-effort: every Redis
error is logged and reported as a miss (``get``) or ``False`` (``put``).
"""

from __future__ import annotations

import json
from typing import Any

import structlog

from app.config import get_settings

logger = structlog.get_logger("tastemate.explanation_cache")

_REDIS_KEY_PREFIX = "tastemate:explanation:"


def pair_key(user_a_id: str, user_b_id: str) -> str:
    """Order-independent Redis key for a user pair."""
    first, second = sorted((user_a_id, user_b_id))
    return f"{_REDIS_KEY_PREFIX}{first}:{second}"


class ExplanationCache:
    """Best-effort Redis cache for match explanations."""

    def __init__(
        self,
        redis_client: Any | None = None,
        ttl_seconds: int | None = None,
    ) -> None:
        """
        Parameters
        ----------
        redis_client:
            An ``redis.asyncio`` client.  When ``None`` one is created lazily
            from ``REDIS_URL``; if that is empty the cache is disabled.
        ttl_seconds:
            Entry lifetime.  Defaults to ``EXPLANATION_CACHE_TTL_SECONDS``.
        """
        settings = get_settings()
        self._redis = redis_client
        self._redis_url = settings.REDIS_URL
        self._ttl = ttl_seconds or settings.EXPLANATION_CACHE_TTL_SECONDS

    async def _get_redis(self) -> Any | None:
        """Return an async Redis client, creating it on first call."""
        if self._redis is None and self._redis_url:
            import redis.asyncio as aioredis

            self._redis = aioredis.from_url(
                self._redis_url,
                decode_responses=True,
                socket_connect_timeout=5,
            )
            logger.info("explanation_cache_redis_connected")
        return self._redis

    async def get(self, user_a_id: str, user_b_id: str) -> dict | None:
        """Return the cached explanation for the pair, or ``None``."""
        redis_key = pair_key(user_a_id, user_b_id)
        log = logger.bind(redis_key=redis_key)

        try:
            redis = await self._get_redis()
            if redis is None:
                return None

            raw = await redis.get(redis_key)
            if raw is None:
                log.debug("explanation_cache_miss")
                return None

            cached = json.loads(raw)
            if not isinstance(cached, dict) or not cached.get("explanation"):
                log.warning("explanation_cache_entry_invalid")
                return None

            log.debug("explanation_cache_hit")
            return cached
        except Exception as exc:
            log.warning("explanation_cache_get_failed", error=str(exc))
            return None

    async def put(self, user_a_id: str, user_b_id: str, explanation: dict) -> bool:
        """Store ``explanation`` for the pair.  Returns ``False`` on failure."""
        redis_key = pair_key(user_a_id, user_b_id)
        log = logger.bind(redis_key=redis_key)

        try:
            redis = await self._get_redis()
            if redis is None:
                return False

            await redis.setex(redis_key, self._ttl, json.dumps(explanation))
            log.debug("explanation_cached", ttl_seconds=self._ttl)
            return True
        except Exception as exc:
            log.warning("explanation_cache_put_failed", error=str(exc))
            return False

    @property
    def enabled(self) -> bool:
        return self._redis is not None or bool(self._redis_url)

    async def ping(self) -> bool:
        """Round-trip to Redis.  Errors propagate to the caller (health checks).

        Returns ``False`` when no Redis is configured.
        """
        redis = await self._get_redis()
        if redis is None:
            return False
        await redis.ping()
        return True

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
