"""Leaderboard and user statistics endpoints."""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query

from treasure.db.enums import Difficulty
from treasure.dependencies import get_leaderboard_service
from treasure.leaderboard.schemas import (
    LeaderboardEntryResponse,
    LeaderboardResponse,
    RegenerateResponse,
    UserStatisticsResponse,
)
from treasure.leaderboard.service import LeaderboardService

router = APIRouter(prefix="/api/v1", tags=["Leaderboard"])


@router.get("/leaderboard/{difficulty}", response_model=LeaderboardResponse)
async def get_leaderboard(
    difficulty: Difficulty,
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    service: LeaderboardService = Depends(get_leaderboard_service),
) -> LeaderboardResponse:
    entries, total = await service.get_leaderboard(difficulty, limit, offset)
    return LeaderboardResponse(
        difficulty=difficulty,
        entries=[LeaderboardEntryResponse.model_validate(e) for e in entries],
        total=total,
    )


@router.get("/leaderboard/{difficulty}/around/{rank}", response_model=LeaderboardResponse)
async def get_users_around_rank(
    difficulty: Difficulty,
    rank: int,
    context_size: int = Query(5, ge=0, le=50),
    service: LeaderboardService = Depends(get_leaderboard_service),
) -> LeaderboardResponse:
    entries = await service.get_users_around_rank(difficulty, rank, context_size)
    return LeaderboardResponse(
        difficulty=difficulty,
        entries=[LeaderboardEntryResponse.model_validate(e) for e in entries],
        total=len(entries),
    )


@router.get("/leaderboard/{difficulty}/users/{user_id}", response_model=LeaderboardEntryResponse)
async def get_user_position(
    difficulty: Difficulty,
    user_id: uuid.UUID,
    service: LeaderboardService = Depends(get_leaderboard_service),
) -> LeaderboardEntryResponse:
    return LeaderboardEntryResponse.model_validate(await service.get_user_position(difficulty, user_id))


@router.post("/leaderboard/{difficulty}/regenerate", response_model=RegenerateResponse)
async def regenerate_leaderboard(
    difficulty: Difficulty,
    service: LeaderboardService = Depends(get_leaderboard_service),
) -> RegenerateResponse:
    return RegenerateResponse(difficulty=difficulty, entries=await service.regenerate_overall(difficulty))


@router.get("/users/{user_id}/statistics", response_model=list[UserStatisticsResponse])
async def get_user_statistics(
    user_id: uuid.UUID,
    service: LeaderboardService = Depends(get_leaderboard_service),
) -> list[UserStatisticsResponse]:
    return [UserStatisticsResponse.model_validate(s) for s in await service.get_user_statistics(user_id)]
