"""Shared FastAPI dependencies.

Services receive their collaborators here at construction time. Tests
override ``get_db``, ``get_publisher`` and ``get_plan_cache``.
"""

from collections.abc import AsyncGenerator

import redis.asyncio as aioredis
from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from treasure.cache import PlanCache
from treasure.config import Settings, get_settings
from treasure.database import get_session as _get_session
from treasure.enrollment.service import EnrollmentService
from treasure.events.outbox import Outbox
from treasure.events.publisher import EventPublisher, RedisStreamPublisher
from treasure.leaderboard.service import LeaderboardService
from treasure.pricing import PlanPricingService, PricingPort
from treasure.progress.tracker import TaskProgressTracker
from treasure.progression.level_service import LevelProgressionEvaluator
from treasure.progression.policy_service import PolicyResolver
from treasure.redis_client import get_redis_or_none
from treasure.search.service import SearchService

get_db = _get_session


async def get_redis_dep() -> AsyncGenerator[aioredis.Redis | None, None]:
    """Yield the Redis client (None when Redis is not configured)."""
    yield get_redis_or_none()


def build_publisher(redis_client: aioredis.Redis | None, settings: Settings) -> RedisStreamPublisher:
    return RedisStreamPublisher(
        redis_client,
        prefix=settings.event_stream_prefix,
        max_attempts=settings.event_publish_max_attempts,
        backoff_seconds=settings.event_publish_backoff_seconds,
        maxlen=settings.event_stream_maxlen,
    )


def build_enrollment_service(
    db: AsyncSession,
    publisher: EventPublisher,
    cache: PlanCache,
    settings: Settings,
    pricing: PricingPort | None = None,
) -> EnrollmentService:
    return EnrollmentService(
        db,
        outbox=Outbox(publisher, batch_size=settings.outbox_batch_size),
        pricing=pricing or PlanPricingService(),
        cache=cache,
        settings=settings,
    )


def get_publisher(
    redis_client: aioredis.Redis | None = Depends(get_redis_dep),
    settings: Settings = Depends(get_settings),
) -> EventPublisher:
    return build_publisher(redis_client, settings)


def get_plan_cache(
    redis_client: aioredis.Redis | None = Depends(get_redis_dep),
    settings: Settings = Depends(get_settings),
) -> PlanCache:
    return PlanCache(redis_client, ttl_seconds=settings.plan_cache_ttl_seconds)


def get_outbox(
    publisher: EventPublisher = Depends(get_publisher),
    settings: Settings = Depends(get_settings),
) -> Outbox:
    return Outbox(publisher, batch_size=settings.outbox_batch_size)


def get_pricing() -> PricingPort:
    return PlanPricingService()


def get_enrollment_service(
    db: AsyncSession = Depends(get_db),
    outbox: Outbox = Depends(get_outbox),
    pricing: PricingPort = Depends(get_pricing),
    cache: PlanCache = Depends(get_plan_cache),
    settings: Settings = Depends(get_settings),
) -> EnrollmentService:
    return EnrollmentService(db, outbox=outbox, pricing=pricing, cache=cache, settings=settings)


def get_policy_resolver(db: AsyncSession = Depends(get_db)) -> PolicyResolver:
    return PolicyResolver(db)


def get_level_evaluator(
    db: AsyncSession = Depends(get_db),
    resolver: PolicyResolver = Depends(get_policy_resolver),
) -> LevelProgressionEvaluator:
    return LevelProgressionEvaluator(db, resolver)


def get_leaderboard_service(db: AsyncSession = Depends(get_db)) -> LeaderboardService:
    return LeaderboardService(db)


def get_task_tracker(
    db: AsyncSession = Depends(get_db),
    outbox: Outbox = Depends(get_outbox),
    evaluator: LevelProgressionEvaluator = Depends(get_level_evaluator),
    leaderboard: LeaderboardService = Depends(get_leaderboard_service),
) -> TaskProgressTracker:
    return TaskProgressTracker(db, outbox=outbox, evaluator=evaluator, leaderboard=leaderboard)


def get_search_service(
    db: AsyncSession = Depends(get_db),
    cache: PlanCache = Depends(get_plan_cache),
    settings: Settings = Depends(get_settings),
) -> SearchService:
    return SearchService(db, cache=cache, settings=settings)
