"""Deterministic leaderboard scoring and ranking.

Users are ranked by total score DESC, then by the earliest time the score
was reached, then by user id as the final tiebreaker. Users who never
scored sort after everyone with a timestamp.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from treasure.db.enums import Difficulty

TASK_POINTS: dict[Difficulty, int] = {
    Difficulty.BEGINNER: 10,
    Difficulty.INTERMEDIATE: 25,
    Difficulty.ADVANCED: 50,
}

PLAN_POINTS: dict[Difficulty, int] = {
    Difficulty.BEGINNER: 100,
    Difficulty.INTERMEDIATE: 250,
    Difficulty.ADVANCED: 500,
}

# Bonus per task of every completed plan
PLAN_TASK_BONUS = 5


def compute_score(
    difficulty: Difficulty,
    tasks_completed: int,
    plans_completed: int,
    completed_plan_tasks: int = 0,
) -> Decimal:
    """Score for one tier.

    tasks_completed × tier task points + plans_completed × tier plan points
    + PLAN_TASK_BONUS × tasks belonging to completed plans.
    """
    difficulty = Difficulty(difficulty)
    return Decimal(
        tasks_completed * TASK_POINTS[difficulty]
        + plans_completed * PLAN_POINTS[difficulty]
        + completed_plan_tasks * PLAN_TASK_BONUS
    )


def _timestamp(value: datetime | None) -> float:
    if value is None:
        return float("inf")
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.timestamp()


def rank_key(entry: dict[str, Any]) -> tuple[Decimal, float, str]:
    """Sort key: higher score first, earlier score time first, then user id."""
    user_id = entry["user_id"]
    return (
        -Decimal(entry.get("total_score") or 0),
        _timestamp(entry.get("score_reached_at")),
        user_id.hex if isinstance(user_id, uuid.UUID) else str(user_id),
    )


def rank_users(entries: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Sort entries and stamp a 1-indexed ``rank`` on each.

    Input dicts need ``user_id``, ``total_score`` and ``score_reached_at``.
    Ranks are dense positions, never shared.
    """
    ranked = sorted(entries, key=rank_key)
    for position, entry in enumerate(ranked, start=1):
        entry["rank"] = position
    return ranked


def rank_window(rank: int, context_size: int) -> tuple[int, int]:
    """Inclusive rank range ``[max(1, rank - c), rank + c]``."""
    return max(1, rank - context_size), rank + context_size
