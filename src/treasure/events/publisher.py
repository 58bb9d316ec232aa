"""Redis Streams event publisher with bounded retry."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Protocol

import redis.asyncio as aioredis

from treasure.errors import Unavailable
from treasure.events.topics import stream_name

logger = logging.getLogger(__name__)


class EventPublisher(Protocol):
    """Narrow contract the engine needs from the event bus."""

    async def publish(self, topic: str, key: str, payload: dict[str, Any]) -> None: ...


class RedisStreamPublisher:
    """Publish events with XADD, retrying transient failures with backoff.

    Raises Unavailable once ``max_attempts`` is exhausted or when no Redis
    client is configured.
    """

    def __init__(
        self,
        redis_client: aioredis.Redis | None,
        prefix: str = "treasure",
        max_attempts: int = 3,
        backoff_seconds: float = 0.2,
        maxlen: int = 100_000,
    ) -> None:
        self.redis = redis_client
        self.prefix = prefix
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self.maxlen = maxlen

    async def publish(self, topic: str, key: str, payload: dict[str, Any]) -> None:
        if self.redis is None:
            raise Unavailable("Event bus not configured")

        fields = {
            "event": topic,
            "key": key,
            "data": json.dumps(payload, default=str),
        }
        stream = stream_name(self.prefix, topic)
        delay = self.backoff_seconds
        for attempt in range(1, self.max_attempts + 1):
            try:
                await self.redis.xadd(stream, fields, maxlen=self.maxlen, approximate=True)
                return
            except (aioredis.ConnectionError, aioredis.TimeoutError) as exc:
                logger.warning(
                    "Publish to %s failed (attempt %d/%d): %s", stream, attempt, self.max_attempts, exc
                )
                if attempt == self.max_attempts:
                    raise Unavailable(f"Event bus unreachable for {topic}") from exc
                await asyncio.sleep(delay)
                delay *= 2
