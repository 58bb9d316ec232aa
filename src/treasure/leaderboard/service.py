"""Leaderboard service: user statistics and OVERALL rankings per tier.

Statistics are derived state. ``refresh_user_statistics`` recomputes a row
from enrollments and task progress, so replays and retries converge on the
same numbers.
"""

from __future__ import annotations

import logging
import uuid
from decimal import Decimal

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from treasure.db.enums import Difficulty, LeaderboardType, TaskStatus
from treasure.db.models import (
    Enrollment,
    LeaderboardEntry,
    PlanDifficulty,
    Task,
    TaskProgress,
    UserLevel,
    UserStatistics,
)
from treasure.enrollment.state_machine import TERMINAL_STATUSES
from treasure.errors import InvalidArgument, NotFound
from treasure.leaderboard.ranking import compute_score, rank_users, rank_window

logger = logging.getLogger(__name__)


async def get_or_create_statistics(db: AsyncSession, user_id: uuid.UUID, difficulty: Difficulty) -> UserStatistics:
    """Get or create the statistics row for a user and tier."""
    stmt = select(UserStatistics).where(
        UserStatistics.user_id == user_id,
        UserStatistics.difficulty == difficulty,
    )
    stats = (await db.execute(stmt)).scalar_one_or_none()
    if stats is not None:
        return stats

    stats = UserStatistics(user_id=user_id, difficulty=difficulty, total_score=Decimal("0"))
    try:
        async with db.begin_nested():
            db.add(stats)
    except IntegrityError:
        stats = (await db.execute(stmt)).scalar_one()
    return stats


async def seed_user_statistics(db: AsyncSession, user_id: uuid.UUID) -> list[UserStatistics]:
    """Ensure a statistics row exists for every tier. Safe to call repeatedly."""
    return [await get_or_create_statistics(db, user_id, difficulty) for difficulty in Difficulty]


async def refresh_user_statistics(db: AsyncSession, user_id: uuid.UUID, difficulty: Difficulty) -> UserStatistics:
    """Recompute a user's statistics for one tier from enrollment history.

    Only enrollments on plans carrying the tier and not CANCELLED/REJECTED
    count. Does not commit.
    """
    difficulty = Difficulty(difficulty)
    tier_plans = select(PlanDifficulty.plan_id).where(PlanDifficulty.difficulty == difficulty)
    result = await db.execute(
        select(Enrollment.id, Enrollment.plan_id).where(
            Enrollment.user_id == user_id,
            Enrollment.status.not_in(list(TERMINAL_STATUSES)),
            Enrollment.plan_id.in_(tier_plans),
        )
    )
    enrollments = result.all()

    task_counts: dict[uuid.UUID, int] = {}
    done: dict[uuid.UUID, tuple] = {}
    if enrollments:
        rows = await db.execute(
            select(Task.plan_id, func.count(Task.id))
            .where(Task.plan_id.in_({row.plan_id for row in enrollments}))
            .group_by(Task.plan_id)
        )
        task_counts = {plan_id: count for plan_id, count in rows}

        rows = await db.execute(
            select(TaskProgress.enrollment_id, func.count(TaskProgress.id), func.max(TaskProgress.updated_at))
            .where(
                TaskProgress.enrollment_id.in_([row.id for row in enrollments]),
                TaskProgress.status == TaskStatus.DONE,
            )
            .group_by(TaskProgress.enrollment_id)
        )
        done = {enrollment_id: (count, last_done) for enrollment_id, count, last_done in rows}

    tasks_completed = 0
    plans_completed = 0
    completed_plan_tasks = 0
    last_done_times = []
    for row in enrollments:
        done_count, last_done = done.get(row.id, (0, None))
        plan_tasks = task_counts.get(row.plan_id, 0)
        tasks_completed += done_count
        if last_done is not None:
            last_done_times.append(last_done)
        if plan_tasks > 0 and done_count >= plan_tasks:
            plans_completed += 1
            completed_plan_tasks += plan_tasks

    level = await db.execute(
        select(UserLevel.highest_level_reached).where(
            UserLevel.user_id == user_id,
            UserLevel.difficulty == difficulty,
        )
    )

    stats = await get_or_create_statistics(db, user_id, difficulty)
    stats.total_plans_enrolled = len(enrollments)
    stats.total_plans_completed = plans_completed
    stats.total_tasks_completed = tasks_completed
    stats.highest_level_reached = level.scalar_one_or_none() or 0
    stats.total_score = compute_score(difficulty, tasks_completed, plans_completed, completed_plan_tasks)
    stats.score_reached_at = max(last_done_times) if last_done_times else None
    await db.flush()
    return stats


class LeaderboardService:
    """OVERALL leaderboards per difficulty tier."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def _ranked_statistics(self, difficulty: Difficulty) -> list[dict]:
        result = await self.db.execute(
            select(UserStatistics).where(UserStatistics.difficulty == difficulty)
        )
        return rank_users([
            {
                "user_id": stats.user_id,
                "total_score": stats.total_score,
                "score_reached_at": stats.score_reached_at,
                "stats": stats,
            }
            for stats in result.scalars()
        ])

    async def regenerate_overall(self, difficulty: Difficulty) -> int:
        """Rebuild every OVERALL entry for a tier. Returns the number of entries."""
        difficulty = Difficulty(difficulty)
        try:
            ranked = await self._ranked_statistics(difficulty)
            await self.db.execute(
                delete(LeaderboardEntry).where(
                    LeaderboardEntry.leaderboard_type == LeaderboardType.OVERALL,
                    LeaderboardEntry.difficulty == difficulty,
                )
            )
            for entry in ranked:
                stats: UserStatistics = entry["stats"]
                self.db.add(
                    LeaderboardEntry(
                        user_id=stats.user_id,
                        difficulty=difficulty,
                        leaderboard_type=LeaderboardType.OVERALL,
                        rank_position=entry["rank"],
                        total_score=stats.total_score,
                        plans_completed=stats.total_plans_completed,
                        tasks_completed=stats.total_tasks_completed,
                        score_reached_at=stats.score_reached_at,
                    )
                )
                _record_rank(stats, entry["rank"])
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info("Regenerated %s leaderboard: %d entries", difficulty.value, len(ranked))
        return len(ranked)

    async def update_user_position(self, user_id: uuid.UUID, difficulty: Difficulty) -> LeaderboardEntry:
        """Refresh one user's statistics and re-stamp the tier's positions in place.

        Only the caller's statistics are recomputed. Every entry in the tier
        gets its rank from the new ordering so positions stay contiguous.
        Does not commit.
        """
        difficulty = Difficulty(difficulty)
        await refresh_user_statistics(self.db, user_id, difficulty)
        ranked = await self._ranked_statistics(difficulty)

        result = await self.db.execute(
            select(LeaderboardEntry)
            .where(
                LeaderboardEntry.leaderboard_type == LeaderboardType.OVERALL,
                LeaderboardEntry.difficulty == difficulty,
            )
            .order_by(LeaderboardEntry.id)
            .with_for_update()
        )
        entries = {entry.user_id: entry for entry in result.scalars()}

        mine = entries.get(user_id)
        if mine is None:
            mine = LeaderboardEntry(
                user_id=user_id,
                difficulty=difficulty,
                leaderboard_type=LeaderboardType.OVERALL,
                rank_position=0,
                total_score=Decimal("0"),
            )
            try:
                async with self.db.begin_nested():
                    self.db.add(mine)
            except IntegrityError:
                mine = (
                    await self.db.execute(
                        select(LeaderboardEntry).where(
                            LeaderboardEntry.leaderboard_type == LeaderboardType.OVERALL,
                            LeaderboardEntry.difficulty == difficulty,
                            LeaderboardEntry.user_id == user_id,
                        )
                    )
                ).scalar_one()
            entries[user_id] = mine

        position = 0
        for ranked_entry in ranked:
            entry = entries.pop(ranked_entry["user_id"], None)
            if entry is None:
                # Users without an entry join on the next regeneration
                continue
            position += 1
            stats: UserStatistics = ranked_entry["stats"]
            entry.rank_position = position
            entry.total_score = stats.total_score
            entry.plans_completed = stats.total_plans_completed
            entry.tasks_completed = stats.total_tasks_completed
            entry.score_reached_at = stats.score_reached_at
            _record_rank(stats, position)

        # Entries whose statistics row is gone
        for stale in entries.values():
            await self.db.delete(stale)

        await self.db.flush()
        return mine

    async def get_users_around_rank(
        self, difficulty: Difficulty, rank: int, context_size: int = 5
    ) -> list[LeaderboardEntry]:
        """Entries with rank in ``[max(1, rank - c), rank + c]``, ordered by rank."""
        if rank < 1:
            raise InvalidArgument("rank must be >= 1")
        if context_size < 0:
            raise InvalidArgument("context_size must be >= 0")
        low, high = rank_window(rank, context_size)
        result = await self.db.execute(
            select(LeaderboardEntry)
            .where(
                LeaderboardEntry.leaderboard_type == LeaderboardType.OVERALL,
                LeaderboardEntry.difficulty == Difficulty(difficulty),
                LeaderboardEntry.rank_position.between(low, high),
            )
            .order_by(LeaderboardEntry.rank_position.asc())
        )
        return list(result.scalars())

    async def get_leaderboard(
        self, difficulty: Difficulty, limit: int = 50, offset: int = 0
    ) -> tuple[list[LeaderboardEntry], int]:
        """Top of the OVERALL board for a tier, plus the total entry count."""
        filters = (
            LeaderboardEntry.leaderboard_type == LeaderboardType.OVERALL,
            LeaderboardEntry.difficulty == Difficulty(difficulty),
        )
        total = (await self.db.execute(select(func.count(LeaderboardEntry.id)).where(*filters))).scalar_one()
        result = await self.db.execute(
            select(LeaderboardEntry)
            .where(*filters)
            .order_by(LeaderboardEntry.rank_position.asc())
            .offset(offset)
            .limit(limit)
        )
        return list(result.scalars()), total

    async def get_user_position(self, difficulty: Difficulty, user_id: uuid.UUID) -> LeaderboardEntry:
        result = await self.db.execute(
            select(LeaderboardEntry).where(
                LeaderboardEntry.leaderboard_type == LeaderboardType.OVERALL,
                LeaderboardEntry.difficulty == Difficulty(difficulty),
                LeaderboardEntry.user_id == user_id,
            )
        )
        entry = result.scalar_one_or_none()
        if entry is None:
            raise NotFound(f"User {user_id} is not ranked on the {Difficulty(difficulty).value} leaderboard")
        return entry

    async def get_user_statistics(self, user_id: uuid.UUID) -> list[UserStatistics]:
        result = await self.db.execute(
            select(UserStatistics).where(UserStatistics.user_id == user_id).order_by(UserStatistics.difficulty)
        )
        return list(result.scalars())


def _record_rank(stats: UserStatistics, rank: int) -> None:
    stats.current_rank = rank
    if stats.best_rank_achieved is None or rank < stats.best_rank_achieved:
        stats.best_rank_achieved = rank
