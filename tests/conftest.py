"""Shared test fixtures.

Each test gets its own SQLite file. Transactions start with BEGIN IMMEDIATE
so concurrent sessions serialize on the write lock the way row locks do on
PostgreSQL.
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from treasure.cache import PlanCache
from treasure.config import get_settings
from treasure.db.base import Base
from treasure.db.enums import Difficulty, EnrollmentMode, TimeWindowType
from treasure.db.models import (
    AgeBand,
    Plan,
    PlanDifficulty,
    PlanPrice,
    PlanSlot,
    Subcategory,
    Task,
)
from treasure.dependencies import get_db, get_plan_cache, get_publisher
from treasure.enrollment.service import EnrollmentService
from treasure.errors import Unavailable
from treasure.events.outbox import Outbox
from treasure.main import create_app


class RecordingPublisher:
    """In-memory event bus. Set ``fail`` to simulate an outage."""

    def __init__(self) -> None:
        self.events: list[tuple[str, str, dict[str, Any]]] = []
        self.fail = False

    async def publish(self, topic: str, key: str, payload: dict[str, Any]) -> None:
        if self.fail:
            raise Unavailable("bus down")
        self.events.append((topic, key, payload))

    def topics(self) -> list[str]:
        return [topic for topic, _, _ in self.events]

    def of(self, topic: str) -> list[dict[str, Any]]:
        return [payload for t, _, payload in self.events if t == topic]


@pytest_asyncio.fixture
async def session_maker(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Independent SQLite session factory per test."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'treasure.db'}")

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, _record):  # noqa: ANN001
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn):  # noqa: ANN001
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    try:
        yield factory
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def db(session_maker) -> AsyncGenerator[AsyncSession, None]:
    """A direct database session for setup and assertions."""
    async with session_maker() as session:
        yield session


@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


@pytest.fixture
def make_enrollment_service(publisher):
    """Factory for enrollment services, each on its own session."""

    def _make(session: AsyncSession) -> EnrollmentService:
        return EnrollmentService(session, outbox=Outbox(publisher), settings=get_settings())

    return _make


@pytest_asyncio.fixture
async def client(session_maker, publisher) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client over the app with SQLite, the recording bus and no cache."""
    app = create_app()

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_publisher] = lambda: publisher
    app.dependency_overrides[get_plan_cache] = lambda: PlanCache(None)

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ── Seed helpers ──


async def seed_subcategory(
    session_maker, name: str = "Urban Hunts", age_range: tuple[int, int] = (12, 60)
) -> uuid.UUID:
    async with session_maker() as session:
        band = AgeBand(label=f"{age_range[0]}-{age_range[1]}", min_age=age_range[0], max_age=age_range[1])
        subcategory = Subcategory(name=name, age_bands=[band])
        session.add(subcategory)
        await session.commit()
        return subcategory.id


async def seed_plan(
    session_maker,
    subcategory_id: uuid.UUID | None = None,
    *,
    title: str = "Old Town Hunt",
    city: str | None = "Pune",
    country: str | None = "India",
    latitude: float | None = None,
    longitude: float | None = None,
    difficulties: list[tuple[Difficulty, int]] | None = None,
    crucial_levels: bool = False,
    tasks: int = 2,
    crucial_tasks: int = 0,
    price: Decimal | None = Decimal("500.00"),
    currency: str = "INR",
    components: list[dict] | None = None,
    max_participants: int | None = None,
    slot_capacity: int | None = None,
    mode: EnrollmentMode = EnrollmentMode.PAY_TO_ENROLL,
    time_window_type: TimeWindowType = TimeWindowType.FIXED,
    start_in_days: int = 7,
    plan_id: uuid.UUID | None = None,
) -> dict[str, Any]:
    """Create a plan with difficulties, tasks and an optional price. Returns ids."""
    if subcategory_id is None:
        subcategory_id = await seed_subcategory(session_maker)
    start = datetime.now(timezone.utc) + timedelta(days=start_in_days)

    async with session_maker() as session:
        plan = Plan(
            id=plan_id or uuid.uuid4(),
            subcategory_id=subcategory_id,
            title=title,
            city=city,
            country=country,
            latitude=latitude,
            longitude=longitude,
            time_window_type=time_window_type,
            start_at=start,
            end_at=start + timedelta(hours=4),
            max_participants=max_participants,
            enrollment_mode=mode,
        )
        plan.difficulties = [
            PlanDifficulty(difficulty=tier, level_number=level, is_crucial=crucial_levels)
            for tier, level in (difficulties or [(Difficulty.BEGINNER, 1)])
        ]
        plan.tasks = [
            Task(title=f"Task {index + 1}", crucial=index < crucial_tasks) for index in range(tasks)
        ]
        if price is not None:
            plan.prices = [PlanPrice(currency=currency, base_amount=price, components=components or [])]
        if slot_capacity is not None:
            plan.slot = PlanSlot(capacity=slot_capacity, reserved=0)
        session.add(plan)
        await session.commit()
        return {
            "plan_id": plan.id,
            "subcategory_id": subcategory_id,
            "task_ids": [task.id for task in plan.tasks],
        }
