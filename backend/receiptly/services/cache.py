"""Lightweight Redis cache for per-user chart data.

Usage guidelines:
- Only cache non-sensitive, per-user data (keys are namespaced with the user id).
- Keep TTLs short (``CHART_CACHE_TTL``) to preserve freshness.
- Invalidate on mutations (create, update, delete).

The cache is best effort: Redis errors are logged and treated as a miss.
Without ``REDIS_URL`` the application runs with no cache at all.
"""
from __future__ import annotations

import json
import logging
from typing import Any, Optional

from redis import asyncio as aioredis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)


def chart_key(user_id: str) -> str:
    return f"receipts:chart:{user_id}"


class ChartCache:
    """Wraps an async Redis client owned by the application lifespan."""

    def __init__(self, client: aioredis.Redis, ttl: int = 60) -> None:
        self._client = client
        self.ttl = ttl

    @classmethod
    def from_url(cls, url: str, ttl: int = 60) -> "ChartCache":
        return cls(aioredis.from_url(url, decode_responses=True), ttl=ttl)

    async def get_json(self, key: str) -> Optional[Any]:
        try:
            raw = await self._client.get(key)
            if raw is None:
                return None
            return json.loads(raw)
        except (RedisError, ValueError) as exc:
            logger.debug("[cache] get failed key=%s err=%s", key, exc)
            return None

    async def set_json(self, key: str, value: Any) -> None:
        try:
            await self._client.set(key, json.dumps(value), ex=self.ttl)
        except (RedisError, TypeError) as exc:
            logger.debug("[cache] set failed key=%s err=%s", key, exc)

    async def get_chart(self, user_id: str) -> Optional[list]:
        return await self.get_json(chart_key(user_id))

    async def set_chart(self, user_id: str, entries: list) -> None:
        await self.set_json(chart_key(user_id), entries)

    async def invalidate(self, user_id: str) -> None:
        try:
            await self._client.delete(chart_key(user_id))
        except RedisError as exc:
            logger.debug("[cache] invalidate failed user=%s err=%s", user_id, exc)

    async def close(self) -> None:
        try:
            await self._client.aclose()
        except RedisError as exc:  # pragma: no cover - shutdown path
            logger.debug("[cache] close failed err=%s", exc)
