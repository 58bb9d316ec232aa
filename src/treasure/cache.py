"""Redis-backed cache for plan detail, search pages and the filter dictionary.

Keys are content-derived so equal requests share an entry. Any enrollment
or payment-status change drops every ``plans:*`` entry.
"""

from __future__ import annotations

import hashlib
import json
import logging
from typing import Any

import redis.asyncio as aioredis

logger = logging.getLogger(__name__)

PLAN_KEY_PATTERN = "plans:*"
FILTERS_KEY = "plans:filters"


def search_key(normalized_request: dict[str, Any]) -> str:
    """Stable key for a search request (sorted keys, None values dropped)."""
    material = json.dumps(
        {k: v for k, v in normalized_request.items() if v is not None},
        sort_keys=True,
        default=str,
    )
    return f"plans:search:{hashlib.sha256(material.encode()).hexdigest()}"


def detail_key(plan_id: object) -> str:
    return f"plans:detail:{plan_id}"


class PlanCache:
    """JSON cache over Redis. A None client turns every call into a miss/no-op."""

    def __init__(self, redis_client: aioredis.Redis | None, ttl_seconds: int = 300) -> None:
        self.redis = redis_client
        self.ttl_seconds = ttl_seconds

    async def get(self, key: str) -> Any | None:  # noqa: ANN401
        if self.redis is None:
            return None
        try:
            raw = await self.redis.get(key)
        except aioredis.RedisError:
            logger.warning("Cache read failed for %s", key, exc_info=True)
            return None
        return json.loads(raw) if raw else None

    async def set(self, key: str, value: Any) -> None:  # noqa: ANN401
        if self.redis is None:
            return
        try:
            await self.redis.set(key, json.dumps(value, default=str), ex=self.ttl_seconds)
        except aioredis.RedisError:
            logger.warning("Cache write failed for %s", key, exc_info=True)

    async def invalidate_plans(self) -> int:
        """Delete all plan detail/search/filter entries. Returns keys removed."""
        if self.redis is None:
            return 0
        removed = 0
        try:
            async for key in self.redis.scan_iter(match=PLAN_KEY_PATTERN):
                removed += await self.redis.delete(key)
        except aioredis.RedisError:
            logger.warning("Plan cache invalidation failed", exc_info=True)
        return removed
