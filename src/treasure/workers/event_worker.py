"""arq worker for inbound events, outbox relay and leaderboard regeneration.

Runs as a separate process. Inbound topics are read from Redis Streams with
XREADGROUP; every entry is acknowledged once its handler has run, whether
the handler applied it or dropped it as malformed.
"""

from __future__ import annotations

import asyncio
import logging

import redis.asyncio as aioredis
from arq import cron

from treasure.cache import PlanCache
from treasure.config import Settings, get_settings
from treasure.database import close_db, get_session_factory, init_db
from treasure.db.enums import Difficulty
from treasure.dependencies import build_enrollment_service, build_publisher
from treasure.events.consumers import InboundDispatcher
from treasure.events.outbox import Outbox
from treasure.events.topics import INBOUND_TOPICS, stream_name
from treasure.leaderboard.service import LeaderboardService
from treasure.middleware.logging import setup_logging

logger = logging.getLogger(__name__)


class InboundEventConsumer:
    """Reads inbound topics from Redis Streams and dispatches them."""

    def __init__(
        self,
        redis_client: aioredis.Redis,
        dispatcher: InboundDispatcher,
        prefix: str = "treasure",
        group: str = "treasure-service",
        consumer_name: str = "treasure-worker-1",
    ) -> None:
        self.redis = redis_client
        self.dispatcher = dispatcher
        self.group = group
        self.consumer_name = consumer_name
        self.streams = {stream_name(prefix, topic): topic for topic in INBOUND_TOPICS}
        self._running = False
        self._processed = 0
        self._errors = 0

    async def setup_groups(self) -> None:
        """Create consumer groups for all inbound streams (idempotent)."""
        for stream in self.streams:
            try:
                await self.redis.xgroup_create(stream, self.group, id="0", mkstream=True)
                logger.info("Created consumer group %s for %s", self.group, stream)
            except aioredis.ResponseError as e:
                if "BUSYGROUP" not in str(e):
                    raise

    async def consume(self, count: int = 100, block_ms: int = 5000) -> int:
        """Read and dispatch one batch. Returns the number of entries acknowledged."""
        try:
            events = await self.redis.xreadgroup(
                groupname=self.group,
                consumername=self.consumer_name,
                streams={stream: ">" for stream in self.streams},
                count=count,
                block=block_ms,
            )
        except aioredis.ResponseError as e:
            logger.error("XREADGROUP error: %s", e)
            return 0

        if not events:
            return 0

        processed = 0
        for stream, messages in events:
            stream_str = stream if isinstance(stream, str) else stream.decode()
            topic = self.streams.get(stream_str)
            if topic is None:
                continue

            for msg_id, fields in messages:
                try:
                    await self.dispatcher.dispatch(topic, fields)
                    await self.redis.xack(stream_str, self.group, msg_id)
                    processed += 1
                    self._processed += 1
                except Exception:
                    # Left pending for redelivery
                    self._errors += 1
                    logger.exception("Error handling %s message %s", stream_str, msg_id)

        return processed

    async def run(self) -> None:
        await self.setup_groups()
        self._running = True
        logger.info("Inbound event consumer started (consumer=%s)", self.consumer_name)

        while self._running:
            try:
                await self.consume()
            except Exception:
                logger.exception("Consumer loop error")
                await asyncio.sleep(1)

    def stop(self) -> None:
        """Signal the consumer to stop."""
        self._running = False


def build_dispatcher(redis_client: aioredis.Redis | None, settings: Settings) -> InboundDispatcher:
    publisher = build_publisher(redis_client, settings)
    cache = PlanCache(redis_client, ttl_seconds=settings.plan_cache_ttl_seconds)
    return InboundDispatcher(
        get_session_factory(),
        lambda db: build_enrollment_service(db, publisher, cache, settings),
    )


async def startup(ctx: dict) -> None:  # type: ignore[type-arg]
    """Initialize database, Redis and the inbound consumer on worker startup."""
    settings = get_settings()
    setup_logging(settings)
    await init_db(settings.database_url)

    redis_client = aioredis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=20,
    )
    consumer = InboundEventConsumer(
        redis_client,
        build_dispatcher(redis_client, settings),
        prefix=settings.event_stream_prefix,
        group=settings.consumer_group,
        consumer_name=settings.consumer_name,
    )
    await consumer.setup_groups()

    ctx["settings"] = settings
    ctx["redis"] = redis_client
    ctx["consumer"] = consumer
    ctx["consumer_task"] = asyncio.create_task(consume_events(ctx))
    logger.info("Event worker started (consumer=%s)", settings.consumer_name)


async def shutdown(ctx: dict) -> None:  # type: ignore[type-arg]
    consumer: InboundEventConsumer | None = ctx.get("consumer")
    if consumer:
        consumer.stop()

    task: asyncio.Task[None] | None = ctx.get("consumer_task")
    if task:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    redis_client: aioredis.Redis | None = ctx.get("redis")
    if redis_client:
        await redis_client.aclose()

    await close_db()
    logger.info("Event worker shut down")


async def consume_events(ctx: dict) -> None:  # type: ignore[type-arg]
    """Main consumer loop, started from startup. Runs until shutdown."""
    consumer: InboundEventConsumer = ctx["consumer"]
    await consumer.run()


async def relay_outbox(ctx: dict) -> int:  # type: ignore[type-arg]
    """Redeliver outbox events left pending after a bus outage."""
    settings: Settings = ctx["settings"]
    outbox = Outbox(build_publisher(ctx["redis"], settings), batch_size=settings.outbox_batch_size)
    async with get_session_factory()() as db:
        delivered = await outbox.relay_quietly(db)
    if delivered:
        logger.info("Relayed %d pending outbox events", delivered)
    return delivered


async def regenerate_leaderboards(ctx: dict) -> dict[str, int]:  # type: ignore[type-arg]
    """Rebuild the OVERALL leaderboard for every tier."""
    counts: dict[str, int] = {}
    async with get_session_factory()() as db:
        service = LeaderboardService(db)
        for difficulty in Difficulty:
            try:
                counts[difficulty.value] = await service.regenerate_overall(difficulty)
            except Exception:
                logger.exception("Leaderboard regeneration failed for %s", difficulty.value)
    logger.info("Regenerated leaderboards: %s", counts)
    return counts


class WorkerSettings:
    """arq worker settings for the event worker."""

    functions = [relay_outbox, regenerate_leaderboards]
    cron_jobs = [
        cron(relay_outbox, second={0, 30}, run_at_startup=True),
        cron(regenerate_leaderboards, minute={0, 15, 30, 45}),
    ]
    on_startup = startup
    on_shutdown = shutdown
    max_jobs = 4
    job_timeout = 300
