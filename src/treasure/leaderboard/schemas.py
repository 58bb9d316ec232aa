"""Pydantic models for leaderboard and statistics endpoints."""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict

from treasure.db.enums import Difficulty


class LeaderboardEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    rank_position: int
    user_id: uuid.UUID
    difficulty: Difficulty
    total_score: Decimal
    plans_completed: int
    tasks_completed: int
    score_reached_at: datetime | None = None


class LeaderboardResponse(BaseModel):
    difficulty: Difficulty
    entries: list[LeaderboardEntryResponse]
    total: int


class UserStatisticsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    difficulty: Difficulty
    total_plans_enrolled: int
    total_plans_completed: int
    total_tasks_completed: int
    highest_level_reached: int
    total_score: Decimal
    current_rank: int | None = None
    best_rank_achieved: int | None = None


class RegenerateResponse(BaseModel):
    difficulty: Difficulty
    entries: int
