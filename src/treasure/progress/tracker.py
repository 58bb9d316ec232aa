"""Task progress tracking for enrollments.

Completing a task is idempotent: the first call moves the row to DONE,
emits ``task.completed``, re-evaluates levels and refreshes the user's
leaderboard position. Later calls return the stored row untouched.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from treasure.db.enums import TaskStatus
from treasure.db.models import Enrollment, Task, TaskProgress, utcnow
from treasure.enrollment.state_machine import TERMINAL_STATUSES
from treasure.errors import InvalidState, NotFound
from treasure.events import topics
from treasure.events.outbox import Outbox
from treasure.leaderboard.service import LeaderboardService
from treasure.progression.level_service import LevelProgressionEvaluator

logger = logging.getLogger(__name__)


class TaskProgressTracker:
    """Records task completion and drives level/leaderboard updates."""

    def __init__(
        self,
        db: AsyncSession,
        *,
        outbox: Outbox,
        evaluator: LevelProgressionEvaluator | None = None,
        leaderboard: LeaderboardService | None = None,
    ) -> None:
        self.db = db
        self.outbox = outbox
        self.evaluator = evaluator or LevelProgressionEvaluator(db)
        self.leaderboard = leaderboard or LeaderboardService(db)

    async def _load(self, enrollment_id: uuid.UUID, task_id: uuid.UUID) -> tuple[Enrollment, Task]:
        enrollment = await self.db.get(Enrollment, enrollment_id)
        if enrollment is None:
            raise NotFound(f"Enrollment {enrollment_id} not found")
        task = await self.db.get(Task, task_id)
        if task is None or task.plan_id != enrollment.plan_id:
            raise NotFound(f"Task {task_id} not found on plan {enrollment.plan_id}")
        if enrollment.status in TERMINAL_STATUSES:
            raise InvalidState(f"Enrollment {enrollment_id} is {enrollment.status.value}")
        return enrollment, task

    async def _get_progress(self, enrollment_id: uuid.UUID, task_id: uuid.UUID) -> TaskProgress | None:
        result = await self.db.execute(
            select(TaskProgress)
            .where(TaskProgress.enrollment_id == enrollment_id, TaskProgress.task_id == task_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _get_or_create_progress(self, enrollment_id: uuid.UUID, task_id: uuid.UUID) -> TaskProgress:
        progress = await self._get_progress(enrollment_id, task_id)
        if progress is not None:
            return progress
        progress = TaskProgress(enrollment_id=enrollment_id, task_id=task_id, status=TaskStatus.LOCKED)
        try:
            async with self.db.begin_nested():
                self.db.add(progress)
        except IntegrityError:
            progress = await self._get_progress(enrollment_id, task_id)
        return progress

    async def start_task(self, enrollment_id: uuid.UUID, task_id: uuid.UUID) -> TaskProgress:
        """LOCKED or untouched -> STARTED. STARTED and DONE rows are returned as-is."""
        try:
            await self._load(enrollment_id, task_id)
            progress = await self._get_or_create_progress(enrollment_id, task_id)
            if progress.status == TaskStatus.LOCKED:
                progress.status = TaskStatus.STARTED
                progress.updated_at = utcnow()
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise
        return progress

    async def complete_task(
        self,
        enrollment_id: uuid.UUID,
        task_id: uuid.UUID,
        cohort_refs: Iterable[str] = (),
    ) -> TaskProgress:
        """Mark a task DONE. Re-completion returns the existing row with no side effects."""
        try:
            enrollment, task = await self._load(enrollment_id, task_id)
            progress = await self._get_or_create_progress(enrollment_id, task_id)
            if progress.status == TaskStatus.DONE:
                await self.db.commit()
                return progress

            progress.status = TaskStatus.DONE
            progress.updated_at = utcnow()
            await self.db.flush()

            plan_complete = await self.is_complete(enrollment.id)
            self.outbox.enqueue(self.db, topics.TASK_COMPLETED, str(enrollment.id), {
                "enrollmentId": enrollment.id,
                "taskId": task.id,
                "planId": enrollment.plan_id,
                "userId": enrollment.user_id,
                "crucial": task.crucial,
                "planCompleted": plan_complete,
            })

            levels = await self.evaluator.evaluate_on_task_completion(enrollment.user_id, cohort_refs)
            for difficulty in sorted({row.difficulty for row in enrollment.plan.difficulties}, key=str):
                await self.leaderboard.update_user_position(enrollment.user_id, difficulty)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(
            "Task %s done for enrollment %s (plan complete=%s, levels=%s)",
            task.id, enrollment.id, plan_complete, {d.value: lvl for d, lvl in levels.items()},
        )
        await self.outbox.relay_quietly(self.db)
        return progress

    async def is_complete(self, enrollment_id: uuid.UUID) -> bool:
        """True when every task on the enrollment's plan is DONE."""
        enrollment = await self.db.get(Enrollment, enrollment_id)
        if enrollment is None:
            raise NotFound(f"Enrollment {enrollment_id} not found")
        total = (
            await self.db.execute(select(func.count(Task.id)).where(Task.plan_id == enrollment.plan_id))
        ).scalar_one()
        done = (
            await self.db.execute(
                select(func.count(TaskProgress.id)).where(
                    TaskProgress.enrollment_id == enrollment_id,
                    TaskProgress.status == TaskStatus.DONE,
                )
            )
        ).scalar_one()
        return total > 0 and done >= total

    async def list_progress(self, enrollment_id: uuid.UUID) -> list[TaskProgress]:
        result = await self.db.execute(
            select(TaskProgress).where(TaskProgress.enrollment_id == enrollment_id)
        )
        return list(result.scalars())
