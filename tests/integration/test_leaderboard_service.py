"""Statistics and OVERALL leaderboard behaviour."""

from __future__ import annotations

import uuid
from decimal import Decimal

import pytest

from conftest import seed_plan
from treasure.db.enums import Difficulty
from treasure.errors import InvalidArgument, NotFound
from treasure.events.outbox import Outbox
from treasure.leaderboard.service import LeaderboardService, seed_user_statistics
from treasure.progress.tracker import TaskProgressTracker

BEGINNER = Difficulty.BEGINNER


async def _play(session_maker, make_enrollment_service, publisher, plan, tasks_done: int) -> uuid.UUID:
    """Enroll a fresh user and complete the first ``tasks_done`` tasks."""
    user_id = uuid.uuid4()
    async with session_maker() as session:
        enrollment = await make_enrollment_service(session).enroll(plan["plan_id"], user_id)
    for task_id in plan["task_ids"][:tasks_done]:
        async with session_maker() as session:
            await TaskProgressTracker(session, outbox=Outbox(publisher)).complete_task(enrollment.id, task_id)
    return user_id


@pytest.fixture
async def beginner_plan(session_maker):
    return await seed_plan(session_maker, tasks=3)


@pytest.fixture
async def board(session_maker, make_enrollment_service, publisher, beginner_plan):
    """Five players on a three-task BEGINNER plan, regenerated once."""
    plan = beginner_plan
    players = [
        await _play(session_maker, make_enrollment_service, publisher, plan, done) for done in (3, 2, 1, 1, 0)
    ]
    async with session_maker() as session:
        await LeaderboardService(session).regenerate_overall(BEGINNER)
    return players


class TestStatistics:
    async def test_score_includes_completed_plan_bonus(self, session_maker, board):
        async with session_maker() as session:
            stats = await LeaderboardService(session).get_user_statistics(board[0])
        beginner = next(s for s in stats if s.difficulty == BEGINNER)
        # 3 tasks * 10 + 1 plan * 100 + 3 plan tasks * 5
        assert beginner.total_score == Decimal("145")
        assert beginner.total_plans_completed == 1
        assert beginner.total_tasks_completed == 3
        assert beginner.highest_level_reached == 1

    async def test_seeding_is_idempotent(self, db):
        user_id = uuid.uuid4()
        await seed_user_statistics(db, user_id)
        await seed_user_statistics(db, user_id)
        await db.commit()
        stats = await LeaderboardService(db).get_user_statistics(user_id)
        assert sorted(s.difficulty.value for s in stats) == ["ADVANCED", "BEGINNER", "INTERMEDIATE"]
        assert all(s.total_score == 0 for s in stats)

    async def test_cancelled_enrollments_stop_counting(self, session_maker, make_enrollment_service):
        plan = await seed_plan(session_maker)
        user_id = uuid.uuid4()
        async with session_maker() as session:
            service = make_enrollment_service(session)
            enrollment = await service.enroll(plan["plan_id"], user_id)
            await service.cancel(enrollment.id)
        async with session_maker() as session:
            stats = await LeaderboardService(session).get_user_statistics(user_id)
        assert next(s for s in stats if s.difficulty == BEGINNER).total_plans_enrolled == 0


class TestRanking:
    async def test_full_board_order(self, session_maker, board):
        async with session_maker() as session:
            entries, total = await LeaderboardService(session).get_leaderboard(BEGINNER)
        assert total == 5
        assert [e.rank_position for e in entries] == [1, 2, 3, 4, 5]
        assert [e.user_id for e in entries[:2]] == board[:2]
        assert entries[-1].user_id == board[4]

    async def test_equal_scores_rank_earlier_finisher_first(self, session_maker, board):
        async with session_maker() as session:
            third = await LeaderboardService(session).get_user_position(BEGINNER, board[2])
            fourth = await LeaderboardService(session).get_user_position(BEGINNER, board[3])
        assert third.total_score == fourth.total_score
        assert (third.rank_position, fourth.rank_position) == (3, 4)

    async def test_users_around_rank(self, session_maker, board):
        async with session_maker() as session:
            window = await LeaderboardService(session).get_users_around_rank(BEGINNER, 2, 1)
        assert [e.rank_position for e in window] == [1, 2, 3]

    async def test_window_clamps_at_top(self, session_maker, board):
        async with session_maker() as session:
            window = await LeaderboardService(session).get_users_around_rank(BEGINNER, 1, 2)
        assert [e.rank_position for e in window] == [1, 2, 3]

    async def test_invalid_rank(self, session_maker, board):
        async with session_maker() as session:
            with pytest.raises(InvalidArgument):
                await LeaderboardService(session).get_users_around_rank(BEGINNER, 0, 2)

    async def test_best_rank_is_recorded(self, session_maker, board):
        async with session_maker() as session:
            stats = await LeaderboardService(session).get_user_statistics(board[0])
        beginner = next(s for s in stats if s.difficulty == BEGINNER)
        assert beginner.current_rank == 1
        assert beginner.best_rank_achieved == 1

    async def test_unranked_user(self, session_maker, board):
        async with session_maker() as session:
            with pytest.raises(NotFound):
                await LeaderboardService(session).get_user_position(BEGINNER, uuid.uuid4())

    async def test_incremental_overtake_keeps_ranks_contiguous(
        self, session_maker, make_enrollment_service, publisher, beginner_plan, board
    ):
        """A newcomer finishing the plan moves up without duplicating anyone's rank."""
        newcomer = await _play(session_maker, make_enrollment_service, publisher, beginner_plan, 3)

        async with session_maker() as session:
            service = LeaderboardService(session)
            entries, total = await service.get_leaderboard(BEGINNER)
            window = await service.get_users_around_rank(BEGINNER, 2, 0)
        assert total == 6
        assert [e.rank_position for e in entries] == [1, 2, 3, 4, 5, 6]
        assert [e.user_id for e in entries[:2]] == [board[0], newcomer]
        assert [e.user_id for e in window] == [newcomer]

    async def test_regeneration_is_stable(self, session_maker, board):
        async with session_maker() as session:
            service = LeaderboardService(session)
            before = [(e.user_id, e.rank_position) for e in (await service.get_leaderboard(BEGINNER))[0]]
            await service.regenerate_overall(BEGINNER)
            after = [(e.user_id, e.rank_position) for e in (await service.get_leaderboard(BEGINNER))[0]]
        assert before == after
