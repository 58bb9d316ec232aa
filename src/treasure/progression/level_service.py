"""Difficulty-tier level progression.

A level is cleared when the user has finished enough tasks on plans at that
level and, if the policy asks for it, every crucial task there. The stored
``highest_level_reached`` only ever moves up: writes are a conditional
``UPDATE ... WHERE highest_level_reached < :new``.
"""

from __future__ import annotations

import logging
import uuid
from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass

from sqlalchemy import and_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from treasure.db.enums import Difficulty, TaskStatus
from treasure.db.models import Enrollment, PlanDifficulty, Task, TaskProgress, UserLevel, utcnow
from treasure.enrollment.state_machine import TERMINAL_STATUSES
from treasure.progression.policy import ProgressionPolicyDocument
from treasure.progression.policy_service import PolicyResolver

logger = logging.getLogger(__name__)

# Prerequisites always point at an earlier tier
TIER_ORDER = (Difficulty.BEGINNER, Difficulty.INTERMEDIATE, Difficulty.ADVANCED)


@dataclass
class LevelTally:
    """Task counts for one (tier, level) across a user's live enrollments."""

    done: int = 0
    crucial_total: int = 0
    crucial_done: int = 0


def level_cleared(tally: LevelTally | None, required_tasks: int, require_all_crucial: bool) -> bool:
    if tally is None or tally.done < required_tasks:
        return False
    return not require_all_crucial or tally.crucial_done >= tally.crucial_total


def compute_level(
    difficulty: Difficulty,
    tallies: dict[int, LevelTally],
    policy: ProgressionPolicyDocument,
    reached: dict[Difficulty, int],
) -> int:
    """Highest level for one tier given its tallies and the effective policy.

    ``reached`` holds already-known levels of other tiers for the
    prerequisite check. The tier cap also bounds the starting floor.
    """
    cap = policy.cap(difficulty)
    level = policy.starting_level(difficulty)
    if cap is not None:
        level = min(level, cap)

    prerequisite = policy.prerequisite(difficulty)
    if prerequisite is not None and reached.get(prerequisite.difficulty, 0) < prerequisite.min_level:
        return level

    required = policy.required_tasks(difficulty)
    while cap is None or level < cap:
        if not level_cleared(tallies.get(level + 1), required, policy.require_all_crucial):
            break
        level += 1
    return level


class LevelProgressionEvaluator:
    """Recomputes per-tier levels after task completion."""

    def __init__(self, db: AsyncSession, resolver: PolicyResolver | None = None) -> None:
        self.db = db
        self.resolver = resolver or PolicyResolver(db)

    async def get_summary(self, user_id: uuid.UUID) -> dict[Difficulty, int]:
        """Stored level per tier; tiers without a row report 0."""
        result = await self.db.execute(
            select(UserLevel.difficulty, UserLevel.highest_level_reached).where(UserLevel.user_id == user_id)
        )
        summary = {difficulty: 0 for difficulty in TIER_ORDER}
        summary.update({Difficulty(difficulty): level for difficulty, level in result})
        return summary

    async def collect_tallies(self, user_id: uuid.UUID) -> dict[Difficulty, dict[int, LevelTally]]:
        """Per tier and level: done and crucial task counts.

        A task is crucial at a level when the task itself is crucial or the
        plan's difficulty entry for that level is marked crucial.
        """
        result = await self.db.execute(
            select(
                PlanDifficulty.difficulty,
                PlanDifficulty.level_number,
                PlanDifficulty.is_crucial,
                Task.crucial,
                TaskProgress.status,
            )
            .select_from(Enrollment)
            .join(PlanDifficulty, PlanDifficulty.plan_id == Enrollment.plan_id)
            .join(Task, Task.plan_id == Enrollment.plan_id)
            .outerjoin(
                TaskProgress,
                and_(TaskProgress.enrollment_id == Enrollment.id, TaskProgress.task_id == Task.id),
            )
            .where(
                Enrollment.user_id == user_id,
                Enrollment.status.not_in(list(TERMINAL_STATUSES)),
            )
        )

        tallies: dict[Difficulty, dict[int, LevelTally]] = defaultdict(lambda: defaultdict(LevelTally))
        for difficulty, level_number, level_crucial, task_crucial, status in result:
            tally = tallies[Difficulty(difficulty)][level_number]
            is_done = status == TaskStatus.DONE
            if is_done:
                tally.done += 1
            if level_crucial or task_crucial:
                tally.crucial_total += 1
                if is_done:
                    tally.crucial_done += 1
        return tallies

    async def evaluate_on_task_completion(
        self, user_id: uuid.UUID, cohort_refs: Iterable[str] = ()
    ) -> dict[Difficulty, int]:
        """Re-evaluate every tier and persist any increase. Does not commit.

        Returns the per-tier summary after the write. Repeating the call with
        unchanged inputs changes nothing.
        """
        policy = await self.resolver.resolve(user_id, cohort_refs)
        tallies = await self.collect_tallies(user_id)
        stored = await self.get_summary(user_id)

        reached = dict(stored)
        for difficulty in TIER_ORDER:
            computed = compute_level(difficulty, tallies.get(difficulty, {}), policy, reached)
            if computed > stored[difficulty]:
                await self._raise_level(user_id, difficulty, computed)
                logger.info(
                    "User %s %s level %d -> %d", user_id, difficulty.value, stored[difficulty], computed
                )
            reached[difficulty] = max(stored[difficulty], computed)

        return await self.get_summary(user_id)

    async def _raise_level(self, user_id: uuid.UUID, difficulty: Difficulty, level: int) -> None:
        """Compare-and-set-max. Concurrent writers can only push the value up."""
        for _ in range(2):
            result = await self.db.execute(
                update(UserLevel)
                .where(
                    UserLevel.user_id == user_id,
                    UserLevel.difficulty == difficulty,
                    UserLevel.highest_level_reached < level,
                )
                .values(highest_level_reached=level, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount:
                return

            existing = await self.db.execute(
                select(UserLevel.id).where(UserLevel.user_id == user_id, UserLevel.difficulty == difficulty)
            )
            if existing.scalar_one_or_none() is not None:
                # Row already at or above the new level
                return

            try:
                async with self.db.begin_nested():
                    self.db.add(UserLevel(user_id=user_id, difficulty=difficulty, highest_level_reached=level))
                return
            except IntegrityError:
                logger.debug("UserLevel %s/%s inserted concurrently; retrying update", user_id, difficulty.value)
