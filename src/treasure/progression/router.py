"""Level progression and progression policy endpoints."""

from __future__ import annotations

import uuid
from typing import Any

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from treasure.db.enums import Difficulty, PolicyScope
from treasure.dependencies import get_db, get_level_evaluator, get_policy_resolver
from treasure.progression.level_service import LevelProgressionEvaluator
from treasure.progression.policy_service import PolicyResolver
from treasure.progression.schemas import (
    LevelSummaryResponse,
    PolicyListResponse,
    PolicyResponse,
    SetPolicyRequest,
)

router = APIRouter(prefix="/api/v1", tags=["Progression"])


def _levels(summary: dict[Difficulty, int]) -> dict[str, int]:
    return {difficulty.value: level for difficulty, level in summary.items()}


@router.get("/users/{user_id}/levels", response_model=LevelSummaryResponse)
async def get_levels(
    user_id: uuid.UUID,
    evaluator: LevelProgressionEvaluator = Depends(get_level_evaluator),
) -> LevelSummaryResponse:
    return LevelSummaryResponse(user_id=user_id, levels=_levels(await evaluator.get_summary(user_id)))


@router.post("/users/{user_id}/levels/evaluate", response_model=LevelSummaryResponse)
async def evaluate_levels(
    user_id: uuid.UUID,
    cohort: list[str] = Query(default=[]),
    db: AsyncSession = Depends(get_db),
    evaluator: LevelProgressionEvaluator = Depends(get_level_evaluator),
) -> LevelSummaryResponse:
    """Re-run level evaluation. Idempotent."""
    summary = await evaluator.evaluate_on_task_completion(user_id, cohort)
    await db.commit()
    return LevelSummaryResponse(user_id=user_id, levels=_levels(summary))


@router.get("/users/{user_id}/policy")
async def get_effective_policy(
    user_id: uuid.UUID,
    cohort: list[str] = Query(default=[]),
    resolver: PolicyResolver = Depends(get_policy_resolver),
) -> dict[str, Any]:
    """Effective merged policy for a user and their cohorts."""
    document = await resolver.resolve(user_id, cohort)
    return document.model_dump(mode="json")


@router.get("/policies", response_model=PolicyListResponse)
async def list_policies(
    scope: PolicyScope | None = Query(None),
    active_only: bool = Query(False),
    resolver: PolicyResolver = Depends(get_policy_resolver),
) -> PolicyListResponse:
    policies = await resolver.list_policies(scope, active_only)
    return PolicyListResponse(
        policies=[PolicyResponse.model_validate(p) for p in policies],
        total=len(policies),
    )


@router.put("/policies", response_model=PolicyResponse)
async def set_policy(
    body: SetPolicyRequest,
    resolver: PolicyResolver = Depends(get_policy_resolver),
) -> PolicyResponse:
    """Create or replace a policy by id, or by scope and scope_ref."""
    policy = await resolver.set_policy(
        scope=body.scope,
        scope_ref=body.scope_ref,
        policy=body.policy,
        name=body.name,
        active=body.active,
        policy_id=body.policy_id,
    )
    return PolicyResponse.model_validate(policy)


@router.post("/policies/{policy_id}/deactivate", response_model=PolicyResponse)
async def deactivate_policy(
    policy_id: uuid.UUID,
    resolver: PolicyResolver = Depends(get_policy_resolver),
) -> PolicyResponse:
    return PolicyResponse.model_validate(await resolver.deactivate_policy(policy_id))
